"""Persistence collaborators for agent memory: JSON files on disk, or a dict."""

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a memory artifact cannot be written or read back."""

    def __init__(self, namespace: str, name: str, message: str) -> None:
        self.namespace = namespace
        self.name = name
        super().__init__(f"[{namespace}/{name}] {message}")


class MemoryStore(ABC):
    """Namespaced key-value blobs. One namespace per agent id."""

    @abstractmethod
    async def save(self, namespace: str, name: str, data: dict[str, Any]) -> None:
        """Write one artifact. Raises StorageError on failure."""
        ...

    @abstractmethod
    async def load(self, namespace: str, name: str) -> dict[str, Any] | None:
        """Read one artifact, or None when it was never written.

        Raises StorageError when the artifact exists but cannot be decoded.
        """
        ...


def _safe(part: str) -> str:
    return re.sub(r"[^\w.-]", "_", part)


class JsonFileStore(MemoryStore):
    """Stores ``<root>/<namespace>/<name>.json``; writes go through a temp file."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    def path_for(self, namespace: str, name: str) -> Path:
        return self._root / _safe(namespace) / f"{_safe(name)}.json"

    def _write(self, path: Path, data: dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
        tmp.replace(path)

    def _read(self, path: Path) -> dict[str, Any] | None:
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    async def save(self, namespace: str, name: str, data: dict[str, Any]) -> None:
        path = self.path_for(namespace, name)
        try:
            await asyncio.to_thread(self._write, path, data)
        except (OSError, TypeError, ValueError) as exc:
            raise StorageError(namespace, name, f"write failed: {exc}") from exc
        logger.debug("Saved %s", path)

    async def load(self, namespace: str, name: str) -> dict[str, Any] | None:
        path = self.path_for(namespace, name)
        try:
            data = await asyncio.to_thread(self._read, path)
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise StorageError(namespace, name, f"read failed: {exc}") from exc
        if data is not None and not isinstance(data, dict):
            raise StorageError(namespace, name, "artifact is not a JSON object")
        return data


class InMemoryStore(MemoryStore):
    """Keeps serialized artifacts in a dict; used when no memory directory is configured."""

    def __init__(self) -> None:
        self.blobs: dict[tuple[str, str], str] = {}

    async def save(self, namespace: str, name: str, data: dict[str, Any]) -> None:
        try:
            self.blobs[(namespace, name)] = json.dumps(data)
        except (TypeError, ValueError) as exc:
            raise StorageError(namespace, name, f"serialize failed: {exc}") from exc

    async def load(self, namespace: str, name: str) -> dict[str, Any] | None:
        blob = self.blobs.get((namespace, name))
        if blob is None:
            return None
        try:
            return json.loads(blob)
        except json.JSONDecodeError as exc:
            raise StorageError(namespace, name, f"decode failed: {exc}") from exc
