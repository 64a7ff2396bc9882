"""``local`` provider: files on the machine running converge."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import stat
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar

from converge.domain.errors import ProviderError
from converge.domain.ports import RealizedResource, ResourceSchema

from .base import BaseProvider

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .base import ProviderSettings

log = logging.getLogger(__name__)

DEFAULT_FILE_PERMISSION = "0644"


class LocalProvider(BaseProvider):
    """Manages ``local_file`` resources and reads ``local_file`` data nodes.

    Relative paths resolve against the provider's ``root`` setting, or the
    document directory when unset. The resource id is the absolute path.
    """

    name: ClassVar[str] = "local"
    resource_types: ClassVar[Mapping[str, ResourceSchema]] = {
        "local_file": ResourceSchema(
            immutable=frozenset({"path"}),
            computed=frozenset({"sha256", "size"}),
            required=frozenset({"path", "content"}),
        ),
    }
    data_types: ClassVar[Mapping[str, ResourceSchema]] = {
        "local_file": ResourceSchema(
            computed=frozenset({"content", "sha256", "size"}),
            required=frozenset({"path"}),
        ),
    }

    def __init__(self, settings: ProviderSettings) -> None:
        root = settings.string("root")
        self.root = (settings.base_dir / root) if root else settings.base_dir

    async def create(self, resource_type: str, config: Mapping[str, object]) -> RealizedResource:
        self.resource_schema(resource_type)
        path = self._resolve(config["path"])
        return await asyncio.to_thread(self._write, path, config)

    async def read(
        self,
        resource_type: str,
        resource_id: str,
        attributes: Mapping[str, object],
    ) -> dict[str, object] | None:
        self.resource_schema(resource_type)
        return await asyncio.to_thread(self._observe, Path(resource_id), attributes)

    async def update(
        self,
        resource_type: str,
        resource_id: str,
        prior: Mapping[str, object],
        config: Mapping[str, object],
    ) -> RealizedResource:
        self.resource_schema(resource_type)
        return await asyncio.to_thread(self._write, Path(resource_id), config)

    async def delete(
        self,
        resource_type: str,
        resource_id: str,
        attributes: Mapping[str, object],
    ) -> None:
        self.resource_schema(resource_type)
        path = Path(resource_id)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as exc:
            raise ProviderError(f"Cannot delete {path}: {exc}") from exc
        log.debug("Deleted %s", path)

    async def read_data(self, data_type: str, config: Mapping[str, object]) -> dict[str, object]:
        self.data_schema(data_type)
        path = self._resolve(config["path"])
        observed = await asyncio.to_thread(self._observe, path, {})
        if observed is None:
            raise ProviderError(f"{path} does not exist")
        return {"path": str(path), **observed}

    def _resolve(self, raw: object) -> Path:
        path = Path(str(raw)).expanduser()
        return path if path.is_absolute() else (self.root / path).resolve()

    def _write(self, path: Path, config: Mapping[str, object]) -> RealizedResource:
        content = str(config.get("content", ""))
        mode = _mode(config.get("file_permission"))
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
            os.chmod(path, mode)
        except OSError as exc:
            raise ProviderError(f"Cannot write {path}: {exc}") from exc
        log.debug("Wrote %s", path)
        # realized content is the text _observe reads back
        return RealizedResource(
            resource_id=str(path), attributes={"content": content, **_fingerprint(content)}
        )

    def _observe(self, path: Path, attributes: Mapping[str, object]) -> dict[str, object] | None:
        try:
            content = path.read_text(encoding="utf-8")
            mode = stat.S_IMODE(path.stat().st_mode)
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise ProviderError(f"Cannot read {path}: {exc}") from exc
        observed: dict[str, object] = {"content": content, **_fingerprint(content)}
        recorded = attributes.get("file_permission")
        if isinstance(recorded, int):
            observed["file_permission"] = mode
        elif recorded is not None:
            observed["file_permission"] = f"{mode:04o}"
        return observed


def _fingerprint(content: str) -> dict[str, object]:
    encoded = content.encode("utf-8")
    return {"sha256": hashlib.sha256(encoded).hexdigest(), "size": len(encoded)}


def _mode(raw: object) -> int:
    # YAML reads an unquoted 0644 as the integer 420
    if raw is None:
        return int(DEFAULT_FILE_PERMISSION, 8)
    if isinstance(raw, int) and not isinstance(raw, bool):
        return raw
    try:
        return int(str(raw), 8)
    except ValueError as exc:
        raise ProviderError(f"file_permission {raw!r} is not an octal mode") from exc
