"""Per-tenant in-memory lite product index."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog
from tenacity import AsyncRetrying, RetryError, stop_after_attempt, wait_fixed

from catalog_rag.config import IndexConfig
from catalog_rag.errors import CatalogLoadError, TenantIsolationError
from catalog_rag.providers.base import CatalogStore
from catalog_rag.types import LiteProductRecord

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class TenantLoadState:
    tenant_id: str
    loaded_at: float
    count: int = 0


class TenantIndexStore:
    """Keeps a refreshable snapshot of each tenant's active products in memory.

    Records are partitioned by tenant so a tenant-scoped scan never visits
    another tenant's records; scans still re-check `tenant_id` per record.

    At most one load per tenant runs at a time. Concurrent `ensure_loaded`
    callers await the same task, and that task is shielded so a caller that
    times out does not cancel a load other callers depend on.
    """

    def __init__(
        self,
        store: CatalogStore,
        config: IndexConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.config = config or IndexConfig()
        self._clock = clock
        self._partitions: dict[str, dict[str, LiteProductRecord]] = {}
        self._owners: dict[str, str] = {}
        self._load_state: dict[str, TenantLoadState] = {}
        self._in_flight: dict[str, asyncio.Task[None]] = {}

    async def ensure_loaded(self, tenant_id: str) -> None:
        """Guarantee a snapshot younger than the TTL, loading it if needed.

        Raises:
            CatalogLoadError: the system of record failed on every attempt.
                The previous snapshot, if any, is left untouched.
        """

        in_flight = self._in_flight.get(tenant_id)
        if in_flight is not None:
            await asyncio.shield(in_flight)
            return

        if not self.needs_refresh(tenant_id):
            return

        task = asyncio.ensure_future(self._load(tenant_id))
        self._in_flight[tenant_id] = task
        task.add_done_callback(lambda _: self._release(tenant_id, task))
        await asyncio.shield(task)

    def needs_refresh(self, tenant_id: str) -> bool:
        state = self._load_state.get(tenant_id)
        if state is None:
            return True
        return self._clock() - state.loaded_at >= self.config.ttl_seconds

    def is_loaded(self, tenant_id: str) -> bool:
        return tenant_id in self._load_state

    async def _load(self, tenant_id: str) -> None:
        started = self._clock()
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.config.load_attempts),
                wait=wait_fixed(self.config.load_backoff_seconds),
                reraise=False,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.info(
                            "tenant_load_retry",
                            tenant_id=tenant_id,
                            attempt=attempt.retry_state.attempt_number,
                        )
                    fetched = await self.store.find_active_products(tenant_id)
        except RetryError as exc:
            cause = exc.last_attempt.exception()
            logger.warning(
                "tenant_load_failed",
                tenant_id=tenant_id,
                attempts=self.config.load_attempts,
                error=str(cause),
            )
            raise CatalogLoadError(tenant_id, self.config.load_attempts) from cause

        partition: dict[str, LiteProductRecord] = {}
        for record in fetched:
            if record.tenant_id != tenant_id:
                logger.error(
                    "tenant_load_foreign_record",
                    tenant_id=tenant_id,
                    record_tenant_id=record.tenant_id,
                    product_id=record.id,
                )
                continue
            owner = self._owners.get(record.id)
            if owner is not None and owner != tenant_id:
                logger.error(
                    "tenant_load_id_conflict",
                    tenant_id=tenant_id,
                    owner_tenant_id=owner,
                    product_id=record.id,
                )
                continue
            partition[record.id] = record

        self._drop_partition(tenant_id)
        self._partitions[tenant_id] = partition
        for product_id in partition:
            self._owners[product_id] = tenant_id
        self._load_state[tenant_id] = TenantLoadState(
            tenant_id=tenant_id, loaded_at=self._clock(), count=len(partition)
        )
        logger.info(
            "tenant_loaded",
            tenant_id=tenant_id,
            count=len(partition),
            latency_ms=round((self._clock() - started) * 1000.0, 2),
        )

    def _release(self, tenant_id: str, task: asyncio.Task[None]) -> None:
        if self._in_flight.get(tenant_id) is task:
            del self._in_flight[tenant_id]
        # Retrieve the exception so an unawaited failure is not reported as lost.
        if not task.cancelled():
            task.exception()

    def clear(self, tenant_id: str) -> int:
        """Drop every record of one tenant and force a reload on next use."""
        removed = self._drop_partition(tenant_id)
        self._load_state.pop(tenant_id, None)
        if removed:
            logger.info("tenant_cleared", tenant_id=tenant_id, removed=removed)
        return removed

    def _drop_partition(self, tenant_id: str) -> int:
        partition = self._partitions.pop(tenant_id, {})
        for product_id in partition:
            if self._owners.get(product_id) == tenant_id:
                del self._owners[product_id]
        return len(partition)

    def upsert(self, record: LiteProductRecord) -> None:
        owner = self._owners.get(record.id)
        if owner is not None and owner != record.tenant_id:
            raise TenantIsolationError(
                f"Product {record.id} belongs to tenant {owner}, not {record.tenant_id}"
            )
        partition = self._partitions.setdefault(record.tenant_id, {})
        existed = record.id in partition
        partition[record.id] = record
        self._owners[record.id] = record.tenant_id
        logger.info(
            "product_updated" if existed else "product_added",
            tenant_id=record.tenant_id,
            product_id=record.id,
        )

    def remove(self, product_id: str) -> str | None:
        """Remove one record and return the tenant it belonged to."""
        tenant_id = self._owners.pop(product_id, None)
        if tenant_id is None:
            logger.debug("product_not_indexed", product_id=product_id)
            return None
        self._partitions.get(tenant_id, {}).pop(product_id, None)
        logger.info("product_removed", tenant_id=tenant_id, product_id=product_id)
        return tenant_id

    def get(self, product_id: str) -> LiteProductRecord | None:
        tenant_id = self._owners.get(product_id)
        if tenant_id is None:
            return None
        return self._partitions.get(tenant_id, {}).get(product_id)

    def records(self, tenant_id: str) -> list[LiteProductRecord]:
        return [
            record
            for record in self._partitions.get(tenant_id, {}).values()
            if record.tenant_id == tenant_id
        ]

    def recent(self, tenant_id: str, limit: int) -> list[LiteProductRecord]:
        """Most recently inserted records first."""
        records = self.records(tenant_id)
        return list(reversed(records))[:limit]

    def stats(self) -> dict[str, dict[str, int]]:
        return {
            tenant_id: {
                "products": len(partition),
                "embedded": sum(1 for r in partition.values() if r.embedding is not None),
            }
            for tenant_id, partition in self._partitions.items()
        }
