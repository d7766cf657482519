"""FastAPI entrypoint for retrieval, catalog maintenance and trace endpoints."""

from __future__ import annotations

import os
from dataclasses import asdict
from typing import Any, Literal

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from catalog_rag.config import EngineConfig
from catalog_rag.errors import TenantIsolationError
from catalog_rag.obs.logging import configure_logging
from catalog_rag.obs.tracing import TraceStore
from catalog_rag.providers.base import CompletionProvider, EmbeddingProvider
from catalog_rag.providers.memory import HashingEmbedder, InMemoryCatalogStore, to_lite_record
from catalog_rag.retrieval.coordinator import RetrievalCoordinator
from catalog_rag.types import Category, FullProductRecord, ProductVariant, Turn


def _create_providers() -> tuple[EmbeddingProvider, CompletionProvider | None]:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return HashingEmbedder(), None

    from catalog_rag.providers.llm import create_openai_providers

    return create_openai_providers(
        model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        embedding_model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
    )


class TurnModel(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class RetrieveRequest(BaseModel):
    query: str = Field(min_length=1)
    tenant_id: str = Field(min_length=1)
    intent: str = "product_inquiry"
    customer_id: str | None = None
    client_address: str | None = None
    conversation_memory: list[TurnModel] = Field(default_factory=list)


class KnowledgeRequest(BaseModel):
    query: str = Field(min_length=1)
    tenant_id: str = Field(min_length=1)
    intent: str = "general_inquiry"
    client_address: str | None = None


class CategoryRequest(BaseModel):
    query: str = Field(min_length=1)
    tenant_id: str = Field(min_length=1)
    client_address: str | None = None


class CategoryUpsertRequest(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    active: bool = True


class VariantModel(BaseModel):
    id: str
    name: str
    type: Literal["color", "size"] | None = None
    price_delta: float = 0.0
    stock: int = Field(default=0, ge=0)
    is_active: bool = True


class ProductRequest(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    price: float = Field(ge=0.0)
    description: str = ""
    stock: int = Field(default=0, ge=0)
    category: str | None = None
    category_id: str | None = None
    variants: list[VariantModel] = Field(default_factory=list)
    images: list[str] = Field(default_factory=list)


configure_logging(
    os.getenv("CATALOG_RAG_LOG_LEVEL", "INFO"),
    json_output=os.getenv("CATALOG_RAG_LOG_JSON", "").lower() in {"1", "true", "yes"},
)

app = FastAPI(title="Catalog Retrieval Engine", version="0.1.0")

_store = InMemoryCatalogStore()
_trace_store = TraceStore()
_embedder, _completion = _create_providers()
_coordinator = RetrievalCoordinator(
    _store,
    embedding_provider=_embedder,
    completion_provider=_completion,
    config=EngineConfig(),
    trace_store=_trace_store,
)


@app.get("/health")
async def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "llm_configured": _completion is not None,
        "embedding_mode": "hashing" if isinstance(_embedder, HashingEmbedder) else "langchain",
        "trace_count": len(_trace_store.list_recent(limit=1000)),
        "caches": _coordinator.stats(),
    }


@app.post("/retrieve")
async def retrieve(request: RetrieveRequest) -> dict[str, Any]:
    results = await _coordinator.retrieve(
        request.query,
        request.intent,
        request.customer_id,
        request.tenant_id,
        client_address=request.client_address,
        conversation_memory=[
            Turn(role=turn.role, content=turn.content) for turn in request.conversation_memory
        ],
    )
    return {"items": [item.to_dict() for item in results]}


@app.post("/knowledge")
async def knowledge(request: KnowledgeRequest) -> dict[str, Any]:
    items = await _coordinator.retrieve_knowledge(
        request.query,
        request.intent,
        request.tenant_id,
        client_address=request.client_address,
    )
    return {"items": [asdict(item) for item in items]}


@app.post("/category")
async def category(request: CategoryRequest) -> dict[str, Any]:
    results = await _coordinator.retrieve_category(
        request.query,
        request.tenant_id,
        client_address=request.client_address,
    )
    return {"items": [item.to_dict() for item in results]}


@app.put("/tenants/{tenant_id}/categories")
async def upsert_category(tenant_id: str, request: CategoryUpsertRequest) -> dict[str, Any]:
    _store.add_category(
        Category(
            id=request.id,
            tenant_id=tenant_id,
            name=request.name,
            description=request.description,
        ),
        active=request.active,
    )
    _coordinator.categories.invalidate_tenant(tenant_id)
    _coordinator.search_cache.invalidate_tenant(tenant_id)
    return {"id": request.id, "tenant_id": tenant_id, "active": request.active}


@app.post("/tenants/{tenant_id}/invalidate")
async def invalidate_tenant(tenant_id: str) -> dict[str, Any]:
    _coordinator.invalidate_tenant(tenant_id)
    return {"tenant_id": tenant_id, "invalidated": True}


@app.put("/tenants/{tenant_id}/products")
async def upsert_product(tenant_id: str, request: ProductRequest) -> dict[str, Any]:
    product = FullProductRecord(
        id=request.id,
        tenant_id=tenant_id,
        name=request.name,
        price=request.price,
        description=request.description,
        stock=request.stock,
        category=request.category,
        category_id=request.category_id,
        variants=tuple(ProductVariant(**variant.model_dump()) for variant in request.variants),
        images=tuple(request.images),
    )
    searchable = to_lite_record(product).searchable_text
    embedding = await _coordinator.embeddings.get_embedding(searchable)
    record = to_lite_record(product, embedding)
    try:
        _coordinator.upsert_product(record)
    except TenantIsolationError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    _store.add_product(product, embedding=embedding)
    return {"id": product.id, "tenant_id": tenant_id, "embedded": embedding is not None}


@app.delete("/products/{product_id}")
async def remove_product(product_id: str) -> dict[str, Any]:
    removed = _coordinator.remove_product(product_id)
    if not removed:
        raise HTTPException(status_code=404, detail=f"Product not indexed: {product_id}")
    _store.remove_product(product_id)
    return {"id": product_id, "removed": True}


@app.get("/traces")
async def traces(limit: int = 20) -> dict[str, Any]:
    records = [asdict(record) for record in _trace_store.list_recent(limit=limit)]
    return {"items": records}


@app.get("/traces/{trace_id}")
async def trace_detail(trace_id: str) -> dict[str, Any]:
    try:
        record = _trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@app.get("/metrics")
async def metrics() -> dict[str, Any]:
    return _trace_store.summary()
