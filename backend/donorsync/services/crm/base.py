"""Provider adapter contract, registry and shared HTTP plumbing.

An adapter knows how to page raw records out of one CRM and how to map a
raw record into a NormalizedRecord. The coordinator never branches on the
provider; adding a CRM means registering another adapter.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator

import httpx
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from donorsync.exceptions import (
    ProviderAuthError,
    ProviderError,
    ProviderTransientError,
    UnknownProviderError,
)
from donorsync.logging_config import get_logger
from donorsync.schemas.crm import NormalizedRecord, RecordKind


logger = get_logger("crm")

RawRecord = dict[str, Any]
Batch = list[RawRecord]

TRANSIENT_STATUS_CODES = {429, 502, 503, 504}
MAX_RETRY_DELAY_SECONDS = 30.0


class ProviderAdapter(ABC):
    """One CRM data source."""

    provider: str
    display_name: str
    record_kinds: tuple[RecordKind, ...] = (RecordKind.ENTITIES, RecordKind.TRANSACTIONS)
    # Kinds that stop fetching once the per-account record cap is reached
    capped_kinds: tuple[RecordKind, ...] = (RecordKind.ENTITIES,)

    @abstractmethod
    def fetch_batches(
        self, credential: str, kind: RecordKind, batch_size: int
    ) -> Iterator[Batch]:
        """
        Lazily page raw records of one kind.

        The iterator is finite and cannot be restarted. Batch size is a hint.
        An empty batch means the provider is exhausted.

        Raises:
            ProviderAuthError: The credential was rejected.
            ProviderError: Any other unrecoverable provider failure.
        """

    @abstractmethod
    def map_record(self, kind: RecordKind, raw: RawRecord) -> NormalizedRecord:
        """Pure mapping from a raw provider record; must not do I/O."""


class AdapterRegistry:
    """Provider id -> adapter."""

    def __init__(self, adapters: list[ProviderAdapter] | None = None):
        self._adapters: dict[str, ProviderAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: ProviderAdapter) -> None:
        self._adapters[adapter.provider] = adapter

    def get(self, provider: str) -> ProviderAdapter:
        try:
            return self._adapters[provider]
        except KeyError:
            raise UnknownProviderError(provider) from None

    def providers(self) -> list[str]:
        return sorted(self._adapters)

    def __contains__(self, provider: str) -> bool:
        return provider in self._adapters


# ============================================================================
# Pagination
# ============================================================================


@dataclass(frozen=True)
class PaginationLimits:
    """Hard stops for a runaway pager."""

    max_iterations: int = 1000
    max_records: int = 50_000


DEFAULT_PAGINATION_LIMITS = PaginationLimits()


def paginate(
    fetch_page: Callable[[int, int], tuple[Batch, int]],
    batch_size: int,
    limits: PaginationLimits = DEFAULT_PAGINATION_LIMITS,
    label: str = "CRM",
) -> Iterator[Batch]:
    """
    Drive a skip/take endpoint until it runs dry.

    Args:
        fetch_page: Called with (skip, take); returns (results, total).
        batch_size: Page size requested from the provider.
        limits: Safety limits on calls and records.
        label: Prefix for log lines.

    Yields:
        Non-empty pages of raw records, in provider order.
    """
    skip = 0
    iterations = 0

    while True:
        if iterations >= limits.max_iterations:
            logger.warning(f"[{label}] pagination stopped: maximum iterations reached ({limits.max_iterations})")
            return
        if skip >= limits.max_records:
            logger.warning(f"[{label}] pagination stopped: maximum records reached ({limits.max_records})")
            return

        iterations += 1
        results, total = fetch_page(skip, batch_size)
        if results:
            yield results
            skip += len(results)

        if len(results) < batch_size or skip >= total:
            return


# ============================================================================
# HTTP adapters
# ============================================================================


class HttpProviderAdapter(ProviderAdapter):
    """Adapter talking to a JSON REST API with retries on transient failures."""

    base_url: str

    def __init__(
        self,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_initial_delay: float = 1.0,
        pagination_limits: PaginationLimits = DEFAULT_PAGINATION_LIMITS,
    ):
        self._client = client
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_initial_delay = retry_initial_delay
        self.pagination_limits = pagination_limits

    @abstractmethod
    def auth_headers(self, credential: str) -> dict[str, str]: ...

    @abstractmethod
    def fetch_page(
        self,
        client: httpx.Client,
        credential: str,
        kind: RecordKind,
        skip: int,
        take: int,
    ) -> tuple[Batch, int]:
        """Fetch one page; returns (results, total)."""

    @abstractmethod
    def map_entity(self, raw: RawRecord) -> NormalizedRecord: ...

    @abstractmethod
    def map_transaction(self, raw: RawRecord) -> NormalizedRecord: ...

    def map_record(self, kind, raw):
        if kind == RecordKind.ENTITIES:
            return self.map_entity(raw)
        return self.map_transaction(raw)

    def fetch_batches(self, credential, kind, batch_size):
        with self._session() as client:
            yield from paginate(
                lambda skip, take: self.fetch_page(client, credential, kind, skip, take),
                batch_size,
                self.pagination_limits,
                label=f"{self.display_name} {kind.value}",
            )

    @contextmanager
    def _session(self) -> Iterator[httpx.Client]:
        if self._client is not None:
            yield self._client
            return
        with httpx.Client(timeout=self.timeout) as client:
            yield client

    def _retrying(self) -> Retrying:
        return Retrying(
            retry=retry_if_exception_type(ProviderTransientError),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential_jitter(
                initial=self.retry_initial_delay,
                max=MAX_RETRY_DELAY_SECONDS,
                jitter=self.retry_initial_delay * 0.3,
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def request(
        self,
        client: httpx.Client,
        method: str,
        path: str,
        credential: str,
        **kwargs: Any,
    ) -> Any:
        """Send a request, retrying transient failures; returns decoded JSON."""
        return self._retrying()(self._send, client, method, path, credential, **kwargs)

    def _send(self, client, method, path, credential, **kwargs):
        try:
            response = client.request(
                method,
                f"{self.base_url}{path}",
                headers={
                    **self.auth_headers(credential),
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
                **kwargs,
            )
        except httpx.TimeoutException as e:
            raise ProviderTransientError(f"{self.display_name} API request timed out") from e
        except httpx.TransportError as e:
            raise ProviderTransientError(f"{self.display_name} API connection failed: {e}") from e

        if response.is_success:
            return response.json()

        message = self._error_message(response)
        if response.status_code in (401, 403):
            raise ProviderAuthError(message, response.status_code)
        if response.status_code in TRANSIENT_STATUS_CODES:
            raise ProviderTransientError(message, response.status_code)
        raise ProviderError(message, response.status_code)

    def _error_message(self, response: httpx.Response) -> str:
        message = f"{self.display_name} API error: {response.status_code}"
        try:
            body = response.json()
        except ValueError:
            return message
        if isinstance(body, dict):
            return body.get("Message") or body.get("message") or message
        return message
