"""Tests for the shared pager, adapter registry and HTTP error handling."""

import httpx
import pytest

from donorsync.exceptions import (
    ProviderAuthError,
    ProviderError,
    ProviderTransientError,
    UnknownProviderError,
)
from donorsync.schemas.crm import RecordKind
from donorsync.services.crm import AdapterRegistry, BloomerangAdapter, PaginationLimits, paginate


def fake_pages(total, calls):
    def fetch_page(skip, take):
        calls.append((skip, take))
        end = min(skip + take, total)
        return [{"id": i} for i in range(skip, end)], total
    return fetch_page


class TestPaginate:
    def test_pages_until_short_page(self):
        calls = []

        pages = list(paginate(fake_pages(5, calls), batch_size=2))

        assert [len(page) for page in pages] == [2, 2, 1]
        assert calls == [(0, 2), (2, 2), (4, 2)]

    def test_stops_at_total_without_extra_call(self):
        calls = []

        pages = list(paginate(fake_pages(4, calls), batch_size=2))

        assert [len(page) for page in pages] == [2, 2]
        assert calls == [(0, 2), (2, 2)]

    def test_empty_source(self):
        calls = []

        assert list(paginate(fake_pages(0, calls), batch_size=2)) == []
        assert calls == [(0, 2)]

    def test_iteration_limit(self):
        calls = []

        pages = list(paginate(
            fake_pages(100, calls), batch_size=2, limits=PaginationLimits(max_iterations=3)
        ))

        assert len(pages) == 3

    def test_record_limit(self):
        calls = []

        pages = list(paginate(
            fake_pages(100, calls), batch_size=10, limits=PaginationLimits(max_records=25)
        ))

        assert sum(len(page) for page in pages) == 30
        assert len(calls) == 3

    def test_is_lazy(self):
        calls = []
        pages = paginate(fake_pages(10, calls), batch_size=2)

        next(pages)

        assert calls == [(0, 2)]


class TestAdapterRegistry:
    def test_unknown_provider(self):
        registry = AdapterRegistry([BloomerangAdapter()])

        assert registry.get("bloomerang").display_name == "Bloomerang"
        assert "salesforce" not in registry
        with pytest.raises(UnknownProviderError, match="salesforce"):
            registry.get("salesforce")


class TestHttpErrors:
    """Status handling shared by every HTTP adapter, exercised through Bloomerang."""

    def make_adapter(self, handler, max_retries=2):
        self.requests = []

        def record(request):
            self.requests.append(request)
            return handler(request)

        client = httpx.Client(transport=httpx.MockTransport(record))
        return BloomerangAdapter(client=client, max_retries=max_retries, retry_initial_delay=0)

    def fetch(self, adapter):
        return list(adapter.fetch_batches("key", RecordKind.ENTITIES, 50))

    def test_auth_error_is_not_retried(self):
        adapter = self.make_adapter(
            lambda request: httpx.Response(401, json={"Message": "Invalid API key"})
        )

        with pytest.raises(ProviderAuthError) as exc_info:
            self.fetch(adapter)

        assert str(exc_info.value) == "Invalid API key"
        assert exc_info.value.status_code == 401
        assert len(self.requests) == 1

    def test_transient_error_is_retried(self):
        responses = iter([
            httpx.Response(503),
            httpx.Response(429),
            httpx.Response(200, json={"Total": 1, "Results": [{"Id": 1}]}),
        ])
        adapter = self.make_adapter(lambda request: next(responses))

        assert self.fetch(adapter) == [[{"Id": 1}]]
        assert len(self.requests) == 3

    def test_retries_are_bounded(self):
        adapter = self.make_adapter(lambda request: httpx.Response(502), max_retries=2)

        with pytest.raises(ProviderTransientError) as exc_info:
            self.fetch(adapter)

        assert str(exc_info.value) == "Bloomerang API error: 502"
        assert len(self.requests) == 3

    def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        adapter = self.make_adapter(handler, max_retries=1)

        with pytest.raises(ProviderTransientError, match="timed out"):
            self.fetch(adapter)
        assert len(self.requests) == 2

    def test_other_errors_fail_immediately(self):
        adapter = self.make_adapter(lambda request: httpx.Response(500, text="oops"))

        with pytest.raises(ProviderError) as exc_info:
            self.fetch(adapter)

        assert not isinstance(exc_info.value, ProviderTransientError)
        assert exc_info.value.status_code == 500
        assert len(self.requests) == 1
