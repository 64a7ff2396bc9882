"""``http`` provider: generic REST objects and JSON documents.

``http_object`` manages one object of a REST collection::

    POST   {path}          create, the response carries the new id
    GET    {path}/{id}     read (404 means the object is gone)
    PUT    {path}/{id}     update in place
    DELETE {path}/{id}     delete (404 counts as deleted)

``body`` is an opaque blob: it is diffed and sent whole.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, ClassVar, cast

import httpx

from converge.adapters.http_resilience import ResilientClient
from converge.config import ResilienceConfig
from converge.domain.errors import ProviderError
from converge.domain.ports import RealizedResource, ResourceSchema

from .base import BaseProvider

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from .base import ProviderSettings

log = logging.getLogger(__name__)

type ClientFactory = Callable[[ResilienceConfig], ResilientClient]

DEFAULT_ID_FIELD = "id"


def check_response(response: httpx.Response, *, action: str) -> None:
    """Map error statuses onto ``ProviderError``; 429 and 5xx are retryable."""

    if response.is_success:
        return
    detail = response.text[:200]
    retryable = response.status_code == 429 or response.status_code >= 500
    raise ProviderError(
        f"{action} failed with HTTP {response.status_code}: {detail}", retryable=retryable
    )


async def send(
    client: ResilientClient, method: str, url: str, *, action: str, **kwargs: object
) -> httpx.Response:
    try:
        return await client.request(method, url, **kwargs)  # pyright: ignore[reportArgumentType]
    except httpx.TransportError as exc:
        raise ProviderError(f"{action} failed: {exc}", retryable=True) from exc


class HttpProvider(BaseProvider):
    name: ClassVar[str] = "http"
    resource_types: ClassVar[Mapping[str, ResourceSchema]] = {
        "http_object": ResourceSchema(
            immutable=frozenset({"path", "id_field"}),
            computed=frozenset({"id", "url"}),
            required=frozenset({"path", "body"}),
        ),
    }
    data_types: ClassVar[Mapping[str, ResourceSchema]] = {
        "http_document": ResourceSchema(
            computed=frozenset({"body", "status"}),
            required=frozenset({"path"}),
        ),
    }

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        client_factory: ClientFactory | None = None,
    ) -> None:
        config = ResilienceConfig.from_block(settings.name, settings.config)
        self._client = (client_factory or ResilientClient)(config)

    async def create(self, resource_type: str, config: Mapping[str, object]) -> RealizedResource:
        self.resource_schema(resource_type)
        path = _collection(config)
        action = f"POST {path}"
        response = await send(self._client, "POST", path, action=action, json=config.get("body"))
        check_response(response, action=action)
        resource_id = _created_id(response, id_field=_id_field(config))
        if resource_id is None:
            raise ProviderError(f"{action} returned no {_id_field(config)!r}")
        return _realized(path, resource_id)

    async def read(
        self,
        resource_type: str,
        resource_id: str,
        attributes: Mapping[str, object],
    ) -> dict[str, object] | None:
        self.resource_schema(resource_type)
        url = f"{_collection(attributes)}/{resource_id}"
        response = await send(self._client, "GET", url, action=f"GET {url}")
        if response.status_code == 404:
            return None
        check_response(response, action=f"GET {url}")
        return {"body": _project(response.json(), attributes.get("body"))}

    async def update(
        self,
        resource_type: str,
        resource_id: str,
        prior: Mapping[str, object],
        config: Mapping[str, object],
    ) -> RealizedResource:
        self.resource_schema(resource_type)
        path = _collection(config)
        url = f"{path}/{resource_id}"
        action = f"PUT {url}"
        response = await send(self._client, "PUT", url, action=action, json=config.get("body"))
        check_response(response, action=action)
        return _realized(path, resource_id)

    async def delete(
        self,
        resource_type: str,
        resource_id: str,
        attributes: Mapping[str, object],
    ) -> None:
        self.resource_schema(resource_type)
        url = f"{_collection(attributes)}/{resource_id}"
        response = await send(self._client, "DELETE", url, action=f"DELETE {url}")
        if response.status_code == 404:
            log.info("%s was already gone", url)
            return
        check_response(response, action=f"DELETE {url}")

    async def read_data(self, data_type: str, config: Mapping[str, object]) -> dict[str, object]:
        self.data_schema(data_type)
        path = _collection(config)
        params = {str(key): str(value) for key, value in _mapping(config.get("query")).items()}
        response = await send(
            self._client, "GET", path, action=f"GET {path}", params=params or None
        )
        check_response(response, action=f"GET {path}")
        try:
            body: object = response.json()
        except ValueError:
            body = response.text
        return {"body": body, "status": response.status_code}

    async def aclose(self) -> None:
        await self._client.aclose()


def _mapping(raw: object) -> Mapping[str, object]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ProviderError(f"Expected a mapping, got {type(raw).__name__}")
    return cast("Mapping[str, object]", raw)


def _collection(config: Mapping[str, object]) -> str:
    path = str(config.get("path", "")).rstrip("/")
    if not path:
        raise ProviderError("path is required")
    return path if path.startswith("/") else f"/{path}"


def _id_field(config: Mapping[str, object]) -> str:
    return str(config.get("id_field") or DEFAULT_ID_FIELD)


def _created_id(response: httpx.Response, *, id_field: str) -> str | None:
    try:
        payload: object = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and id_field in payload:
        return str(cast("dict[str, object]", payload)[id_field])
    location = response.headers.get("Location")
    if location:
        return location.rstrip("/").rsplit("/", 1)[-1]
    return None


def _realized(path: str, resource_id: str) -> RealizedResource:
    return RealizedResource(
        resource_id=resource_id, attributes={"id": resource_id, "url": f"{path}/{resource_id}"}
    )


def _project(remote: object, recorded: object) -> object:
    """Keep only the keys converge sent, so server-added fields are not drift."""

    if isinstance(remote, dict) and isinstance(recorded, dict):
        remote_map = cast("dict[str, object]", remote)
        sent = cast("dict[str, object]", recorded)
        return {key: remote_map[key] for key in sent if key in remote_map}
    return remote
