from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx
import pytest

from converge.adapters.http_resilience import ResilientClient
from converge.adapters.providers import HttpProvider, ProviderSettings, SecretsProvider
from converge.config import MissingConfigurationError
from converge.domain.errors import ProviderError

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

    from converge.config import ResilienceConfig

type Handler = Callable[[httpx.Request], httpx.Response]


@dataclass
class FakeApi:
    """Records requests and answers them with a handler."""

    handler: Handler
    requests: list[httpx.Request] = field(default_factory=list[httpx.Request])

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def client(self, config: ResilienceConfig) -> ResilientClient:
        return ResilientClient(config, transport=httpx.MockTransport(self))


def _settings(name: str = "http", **config: object) -> ProviderSettings:
    return ProviderSettings(
        name=name, config={"base_url": "https://api.test", "max_retries": 0, **config}
    )


def _run[T](provider: HttpProvider | SecretsProvider, call: Coroutine[None, None, T]) -> T:
    async def scenario() -> T:
        try:
            return await call
        finally:
            await provider.aclose()

    return asyncio.run(scenario())


def test_create_posts_the_body_and_returns_the_new_id() -> None:
    api = FakeApi(lambda _request: httpx.Response(201, json={"id": 7, "name": "web"}))
    provider = HttpProvider(_settings(token="s3cret"), client_factory=api.client)

    realized = _run(
        provider,
        provider.create("http_object", {"path": "widgets", "body": {"name": "web"}}),
    )

    assert realized.resource_id == "7"
    assert realized.attributes == {"id": "7", "url": "/widgets/7"}
    request = api.requests[0]
    assert request.method == "POST"
    assert request.url == "https://api.test/widgets"
    assert request.headers["Authorization"] == "Bearer s3cret"
    assert json.loads(request.content) == {"name": "web"}


def test_create_falls_back_to_the_location_header() -> None:
    api = FakeApi(lambda _request: httpx.Response(201, headers={"Location": "/widgets/abc"}))
    provider = HttpProvider(_settings(), client_factory=api.client)

    realized = _run(provider, provider.create("http_object", {"path": "/widgets", "body": {}}))

    assert realized.resource_id == "abc"


def test_read_projects_the_remote_object_onto_sent_keys() -> None:
    api = FakeApi(
        lambda _request: httpx.Response(200, json={"name": "web", "created_at": "2026-01-01"})
    )
    provider = HttpProvider(_settings(), client_factory=api.client)

    live = _run(
        provider,
        provider.read("http_object", "7", {"path": "/widgets", "body": {"name": "web"}}),
    )

    assert live == {"body": {"name": "web"}}
    assert api.requests[0].url.path == "/widgets/7"


def test_read_of_a_missing_object_returns_none() -> None:
    api = FakeApi(lambda _request: httpx.Response(404))
    provider = HttpProvider(_settings(), client_factory=api.client)

    live = _run(provider, provider.read("http_object", "7", {"path": "/widgets", "body": {}}))

    assert live is None


def test_delete_of_a_missing_object_succeeds() -> None:
    api = FakeApi(lambda _request: httpx.Response(404))
    provider = HttpProvider(_settings(), client_factory=api.client)

    _run(provider, provider.delete("http_object", "7", {"path": "/widgets"}))

    assert api.requests[0].method == "DELETE"


@pytest.mark.parametrize(("status", "retryable"), [(503, True), (429, True), (400, False)])
def test_error_statuses_map_to_provider_errors(status: int, retryable: bool) -> None:
    api = FakeApi(lambda _request: httpx.Response(status, text="nope"))
    provider = HttpProvider(_settings(), client_factory=api.client)

    expected = f"PUT /widgets/7 failed with HTTP {status}"
    with pytest.raises(ProviderError, match=expected) as excinfo:
        _run(
            provider,
            provider.update("http_object", "7", {}, {"path": "/widgets", "body": {"a": 1}}),
        )

    assert excinfo.value.retryable is retryable


def test_transport_errors_are_retryable() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    api = FakeApi(refuse)
    provider = HttpProvider(_settings(), client_factory=api.client)

    with pytest.raises(ProviderError) as excinfo:
        _run(provider, provider.read("http_object", "7", {"path": "/widgets"}))

    assert excinfo.value.retryable is True


def test_document_read_passes_query_parameters() -> None:
    api = FakeApi(lambda _request: httpx.Response(200, json=[{"id": 1}]))
    provider = HttpProvider(_settings(), client_factory=api.client)

    values = _run(
        provider,
        provider.read_data("http_document", {"path": "/widgets", "query": {"team": "infra"}}),
    )

    assert values == {"body": [{"id": 1}], "status": 200}
    assert api.requests[0].url.params["team"] == "infra"


def test_base_url_is_required() -> None:
    with pytest.raises(MissingConfigurationError, match="providers.http.base_url"):
        HttpProvider(ProviderSettings(name="http", config={}))


def test_secret_versions_are_read_by_name() -> None:
    api = FakeApi(lambda _request: httpx.Response(200, json={"value": "hunter2", "version": 3}))
    provider = SecretsProvider(_settings("secrets"), client_factory=api.client)

    values = _run(provider, provider.read_data("secrets_version", {"name": "db/password"}))

    assert values == {"value": "hunter2", "version": "3"}
    assert api.requests[0].url.raw_path == b"/secrets/db%2Fpassword/versions/latest"


def test_missing_secret_is_a_provider_error() -> None:
    api = FakeApi(lambda _request: httpx.Response(404))
    provider = SecretsProvider(_settings("secrets"), client_factory=api.client)

    with pytest.raises(ProviderError, match="does not exist"):
        _run(provider, provider.read_data("secrets_version", {"name": "db", "version": "9"}))
