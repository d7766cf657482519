"""Exception hierarchy for the retrieval engine."""

from __future__ import annotations


class CatalogRagError(Exception):
    """Base class for retrieval engine errors."""


class CatalogLoadError(CatalogRagError):
    """A tenant's products could not be loaded after all retry attempts."""

    def __init__(self, tenant_id: str, attempts: int) -> None:
        super().__init__(f"Failed to load products for tenant {tenant_id} after {attempts} attempts")
        self.tenant_id = tenant_id
        self.attempts = attempts


class ProviderError(CatalogRagError):
    """An embedding or completion provider returned unusable output."""


class TenantIsolationError(CatalogRagError):
    """A record was about to cross a tenant boundary."""
