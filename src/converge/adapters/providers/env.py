"""``env`` provider: process environment variables as data nodes."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, ClassVar

from converge.domain.errors import ProviderError
from converge.domain.ports import ResourceSchema

from .base import BaseProvider

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .base import ProviderSettings


class EnvProvider(BaseProvider):
    """``env_variable`` reads ``prefix + name``, falling back to ``default``."""

    name: ClassVar[str] = "env"
    data_types: ClassVar[Mapping[str, ResourceSchema]] = {
        "env_variable": ResourceSchema(
            computed=frozenset({"value", "present"}),
            sensitive=frozenset({"value"}),
            required=frozenset({"name"}),
        ),
    }

    def __init__(
        self, settings: ProviderSettings, *, environ: Mapping[str, str] | None = None
    ) -> None:
        self.prefix = settings.string("prefix", "") or ""
        self._environ = environ if environ is not None else os.environ

    async def read_data(self, data_type: str, config: Mapping[str, object]) -> dict[str, object]:
        self.data_schema(data_type)
        key = f"{self.prefix}{config['name']}"
        value = self._environ.get(key)
        if value is None:
            if "default" not in config:
                raise ProviderError(f"Environment variable {key} is not set")
            return {"value": config["default"], "present": False}
        return {"value": value, "present": True}
