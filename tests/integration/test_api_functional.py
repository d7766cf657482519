from fastapi.testclient import TestClient


def test_api_catalog_retrieve_trace_metrics(monkeypatch) -> None:
    # Import after environment setup to use the deterministic hashing embedder.
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    from catalog_rag.api.main import app

    client = TestClient(app)

    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["llm_configured"] is False

    for tenant_id, product in (
        ("shop-a", {"id": "api-a-1", "name": "Red Shoe", "price": 250, "stock": 3, "category": "shoes"}),
        ("shop-a", {"id": "api-a-2", "name": "Blue Shirt", "price": 120, "stock": 0, "category": "shirts"}),
        ("shop-b", {"id": "api-b-1", "name": "Red Shoe", "price": 199, "stock": 1, "category": "shoes"}),
    ):
        resp = client.put(f"/tenants/{tenant_id}/products", json=product)
        assert resp.status_code == 200
        assert resp.json()["embedded"] is True

    retrieve_resp = client.post(
        "/retrieve",
        json={"query": "red shoe", "tenant_id": "shop-a", "customer_id": "c-1"},
    )
    assert retrieve_resp.status_code == 200
    items = retrieve_resp.json()["items"]
    assert items[0]["product"]["id"] == "api-a-1"
    assert all(item["product"]["tenant_id"] == "shop-a" for item in items)

    follow_up = client.post(
        "/retrieve",
        json={
            "query": "how much?",
            "tenant_id": "shop-a",
            "intent": "price_inquiry",
            "conversation_memory": [
                {"role": "assistant", "content": "The Red Shoe is in stock."},
            ],
        },
    )
    assert follow_up.json()["items"][0]["product"]["name"] == "Red Shoe"

    conflict = client.put(
        "/tenants/shop-b/products",
        json={"id": "api-a-1", "name": "Stolen Shoe", "price": 1},
    )
    assert conflict.status_code == 409

    knowledge = client.post(
        "/knowledge",
        json={"query": "delivery", "tenant_id": "shop-a", "intent": "shipping_info"},
    )
    assert knowledge.status_code == 200
    assert knowledge.json()["items"] == []

    category = client.put("/tenants/shop-a/categories", json={"id": "cat-1", "name": "Shoes"})
    assert category.status_code == 200
    # Without a completion provider category detection is skipped.
    listing = client.post("/category", json={"query": "show me shoes", "tenant_id": "shop-a"})
    assert listing.status_code == 200
    assert listing.json()["items"] == []

    assert client.delete("/products/api-a-2").status_code == 200
    assert client.delete("/products/api-a-2").status_code == 404
    assert client.post("/tenants/shop-a/invalidate").json()["invalidated"] is True

    traces = client.get("/traces").json()["items"]
    assert traces
    trace_resp = client.get(f"/traces/{traces[0]['trace_id']}")
    assert trace_resp.status_code == 200
    assert trace_resp.json()["tenant_id"] == "shop-a"
    assert client.get("/traces/unknown").status_code == 404

    metrics = client.get("/metrics").json()
    assert metrics["total_requests"] >= 2

    invalid = client.post("/retrieve", json={"query": "", "tenant_id": "shop-a"})
    assert invalid.status_code == 422
