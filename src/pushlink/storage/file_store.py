"""
File-based key-value store.

Each namespace is one JSON document under the store directory. Every
mutation rewrites the document through a temporary file that is flushed,
fsynced and atomically renamed over the old one, so a completed ``put``
survives a crash and a reader never sees a half-written document.
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Optional

from ..types import StorageError
from .kv_store import KeyValueStore, Namespace


class FileKeyValueStore(KeyValueStore):
    """
    File-based KeyValueStore.

    Example usage:
        ```python
        store = FileKeyValueStore(Path.home() / ".pushlink")
        await store.put(Namespace.CONFIG, "identity", {...})
        identity = await store.get(Namespace.CONFIG, "identity")
        ```
    """

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)
        self._lock = asyncio.Lock()

    async def get(self, namespace: Namespace, key: str) -> Optional[Any]:
        async with self._lock:
            return self._load(namespace).get(key)

    async def put(self, namespace: Namespace, key: str, value: Any) -> None:
        async with self._lock:
            document = self._load(namespace)
            document[key] = value
            self._write(namespace, document)

    async def get_all(self, namespace: Namespace) -> dict[str, Any]:
        async with self._lock:
            return self._load(namespace)

    async def delete(self, namespace: Namespace, key: str) -> None:
        async with self._lock:
            document = self._load(namespace)
            if key in document:
                del document[key]
                self._write(namespace, document)

    async def clear(self, namespace: Namespace) -> None:
        async with self._lock:
            self._write(namespace, {})

    def _path(self, namespace: Namespace) -> Path:
        return self._directory / f"{namespace.value}.json"

    def _load(self, namespace: Namespace) -> dict[str, Any]:
        path = self._path(namespace)
        if not path.exists():
            return {}
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read namespace {namespace.value}: {e}") from e
        if not isinstance(document, dict):
            raise StorageError(f"Namespace {namespace.value} is not a JSON object")
        return document

    def _write(self, namespace: Namespace, document: dict[str, Any]) -> None:
        path = self._path(namespace)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(document, f, separators=(",", ":"))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Cannot write namespace {namespace.value}: {e}") from e
