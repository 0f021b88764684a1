"""CRM provider adapters."""

from donorsync.config import Settings
from donorsync.services.crm.base import (
    AdapterRegistry,
    HttpProviderAdapter,
    PaginationLimits,
    ProviderAdapter,
    paginate,
)
from donorsync.services.crm.bloomerang import BloomerangAdapter
from donorsync.services.crm.virtuous import VirtuousAdapter


def build_default_registry(settings: Settings) -> AdapterRegistry:
    """Registry with every adapter this deployment supports."""
    options = dict(
        timeout=settings.crm_request_timeout_seconds,
        max_retries=settings.crm_max_retries,
        retry_initial_delay=settings.crm_retry_initial_delay_ms / 1000,
    )
    return AdapterRegistry([
        BloomerangAdapter(**options),
        VirtuousAdapter(**options),
    ])


__all__ = [
    "AdapterRegistry",
    "BloomerangAdapter",
    "HttpProviderAdapter",
    "PaginationLimits",
    "ProviderAdapter",
    "VirtuousAdapter",
    "build_default_registry",
    "paginate",
]
