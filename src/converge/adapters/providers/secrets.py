"""``secrets`` provider: versioned secrets from an HTTP secret store.

``secrets_version`` reads ``GET /secrets/{name}/versions/{version}`` and
expects ``{"value": ..., "version": ...}``. Values are never cached.
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, ClassVar, cast
from urllib.parse import quote

from converge.adapters.http_resilience import ResilientClient
from converge.config import ResilienceConfig
from converge.domain.errors import ProviderError
from converge.domain.ports import ResourceSchema

from .base import BaseProvider
from .http import check_response, send

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .base import ProviderSettings
    from .http import ClientFactory

DEFAULT_VERSION = "latest"


class SecretsProvider(BaseProvider):
    name: ClassVar[str] = "secrets"
    data_types: ClassVar[Mapping[str, ResourceSchema]] = {
        "secrets_version": ResourceSchema(
            computed=frozenset({"value", "version"}),
            sensitive=frozenset({"value"}),
            required=frozenset({"name"}),
        ),
    }

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        client_factory: ClientFactory | None = None,
    ) -> None:
        config = dataclasses.replace(
            ResilienceConfig.from_block(settings.name, settings.config), cache=None
        )
        self._client = (client_factory or ResilientClient)(config)

    async def read_data(self, data_type: str, config: Mapping[str, object]) -> dict[str, object]:
        self.data_schema(data_type)
        name = quote(str(config["name"]), safe="")
        version = quote(str(config.get("version") or DEFAULT_VERSION), safe="")
        url = f"/secrets/{name}/versions/{version}"
        response = await send(self._client, "GET", url, action=f"GET {url}")
        if response.status_code == 404:
            raise ProviderError(f"Secret {config['name']} version {version} does not exist")
        check_response(response, action=f"GET {url}")
        payload: object = response.json()
        if not isinstance(payload, dict) or "value" not in payload:
            raise ProviderError(f"GET {url} returned no secret value")
        secret = cast("dict[str, object]", payload)
        return {"value": secret["value"], "version": str(secret.get("version", version))}

    async def aclose(self) -> None:
        await self._client.aclose()
