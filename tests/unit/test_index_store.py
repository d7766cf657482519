import asyncio

import pytest

from catalog_rag.config import IndexConfig
from catalog_rag.errors import CatalogLoadError, TenantIsolationError
from catalog_rag.index.store import TenantIndexStore
from catalog_rag.types import LiteProductRecord


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _record(product_id: str, tenant_id: str, name: str = "Item") -> LiteProductRecord:
    return LiteProductRecord(
        id=product_id,
        tenant_id=tenant_id,
        name=name,
        searchable_text=name.lower(),
        price=10.0,
    )


class _FakeStore:
    def __init__(self, products: dict[str, list[LiteProductRecord]]) -> None:
        self.products = products
        self.loads: list[str] = []
        self.failures_left = 0
        self.gate: asyncio.Event | None = None

    async def find_active_products(self, tenant_id: str) -> list[LiteProductRecord]:
        self.loads.append(tenant_id)
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if self.failures_left:
            self.failures_left -= 1
            raise ConnectionError("database unavailable")
        return list(self.products.get(tenant_id, []))


def _index(store: _FakeStore, clock: _Clock | None = None, **overrides: float) -> TenantIndexStore:
    config = IndexConfig(load_backoff_seconds=0.0, **overrides)
    return TenantIndexStore(store, config, clock=clock or _Clock())


@pytest.mark.asyncio
async def test_concurrent_loads_share_one_fetch() -> None:
    store = _FakeStore({"t1": [_record("p1", "t1"), _record("p2", "t1")]})
    index = _index(store)

    await asyncio.gather(*(index.ensure_loaded("t1") for _ in range(10)))

    assert store.loads == ["t1"]
    assert {record.id for record in index.records("t1")} == {"p1", "p2"}
    assert index.is_loaded("t1")


@pytest.mark.asyncio
async def test_loaded_tenant_is_not_refetched_within_ttl() -> None:
    clock = _Clock()
    store = _FakeStore({"t1": [_record("p1", "t1")]})
    index = _index(store, clock)

    await index.ensure_loaded("t1")
    clock.now += 899
    await index.ensure_loaded("t1")
    assert store.loads == ["t1"]

    clock.now += 1
    await index.ensure_loaded("t1")
    assert store.loads == ["t1", "t1"]


@pytest.mark.asyncio
async def test_refresh_replaces_partition_so_deletions_apply() -> None:
    clock = _Clock()
    store = _FakeStore({"t1": [_record("p1", "t1"), _record("p2", "t1")]})
    index = _index(store, clock)
    await index.ensure_loaded("t1")

    store.products["t1"] = [_record("p2", "t1")]
    clock.now += 900
    await index.ensure_loaded("t1")

    assert [record.id for record in index.records("t1")] == ["p2"]
    assert index.get("p1") is None


@pytest.mark.asyncio
async def test_transient_failures_are_retried() -> None:
    store = _FakeStore({"t1": [_record("p1", "t1")]})
    store.failures_left = 2
    index = _index(store)

    await index.ensure_loaded("t1")

    assert len(store.loads) == 3
    assert index.get("p1") is not None


@pytest.mark.asyncio
async def test_exhausted_retries_raise_and_keep_previous_snapshot() -> None:
    clock = _Clock()
    store = _FakeStore({"t1": [_record("p1", "t1")]})
    index = _index(store, clock)
    await index.ensure_loaded("t1")

    clock.now += 901
    store.failures_left = 3
    with pytest.raises(CatalogLoadError) as excinfo:
        await index.ensure_loaded("t1")

    assert excinfo.value.tenant_id == "t1"
    assert excinfo.value.attempts == 3
    assert [record.id for record in index.records("t1")] == ["p1"]
    assert len(store.loads) == 4


@pytest.mark.asyncio
async def test_caller_timeout_does_not_cancel_shared_load() -> None:
    store = _FakeStore({"t1": [_record("p1", "t1")]})
    store.gate = asyncio.Event()
    index = _index(store)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(index.ensure_loaded("t1"), timeout=0.01)

    store.gate.set()
    await index.ensure_loaded("t1")

    assert store.loads == ["t1"]
    assert index.get("p1") is not None


@pytest.mark.asyncio
async def test_foreign_records_are_dropped_at_load() -> None:
    store = _FakeStore({"t1": [_record("p1", "t1"), _record("p9", "t2")]})
    index = _index(store)

    await index.ensure_loaded("t1")

    assert [record.id for record in index.records("t1")] == ["p1"]
    assert index.records("t2") == []


@pytest.mark.asyncio
async def test_clear_only_touches_one_tenant() -> None:
    store = _FakeStore({"t1": [_record("p1", "t1")], "t2": [_record("p2", "t2")]})
    index = _index(store)
    await asyncio.gather(index.ensure_loaded("t1"), index.ensure_loaded("t2"))

    assert index.clear("t1") == 1

    assert index.records("t1") == []
    assert not index.is_loaded("t1")
    assert [record.id for record in index.records("t2")] == ["p2"]
    assert index.is_loaded("t2")


def test_upsert_refuses_to_move_a_product_between_tenants() -> None:
    index = _index(_FakeStore({}))
    index.upsert(_record("p1", "t1", "Red Shoe"))

    with pytest.raises(TenantIsolationError):
        index.upsert(_record("p1", "t2", "Red Shoe"))

    index.upsert(_record("p1", "t1", "Red Shoe v2"))
    assert index.get("p1").name == "Red Shoe v2"
    assert index.records("t2") == []


def test_remove_returns_owner_and_recent_is_newest_first() -> None:
    index = _index(_FakeStore({}))
    for product_id in ("p1", "p2", "p3"):
        index.upsert(_record(product_id, "t1"))

    assert [record.id for record in index.recent("t1", 2)] == ["p3", "p2"]
    assert index.remove("p2") == "t1"
    assert index.remove("p2") is None
    assert index.stats() == {"t1": {"products": 2, "embedded": 0}}
