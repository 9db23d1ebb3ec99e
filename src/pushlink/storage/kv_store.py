"""Namespaced key-value store interface and in-memory implementation."""

import asyncio
import copy
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional


class Namespace(Enum):
    """Logical namespaces of the persisted store."""
    CONFIG = "config"
    CLIENTS = "clients"
    ASSETS = "assets"
    CHUNKS = "chunks"


class KeyValueStore(ABC):
    """
    Interface for a namespaced asynchronous key-value store.

    Values are JSON-compatible objects. A put is durable before the
    coroutine returns.
    """

    @abstractmethod
    async def get(self, namespace: Namespace, key: str) -> Optional[Any]:
        """Get a value, or None if the key is absent."""
        ...

    @abstractmethod
    async def put(self, namespace: Namespace, key: str, value: Any) -> None:
        """Store a value under a key, replacing any previous value."""
        ...

    @abstractmethod
    async def get_all(self, namespace: Namespace) -> dict[str, Any]:
        """Get every key and value of a namespace."""
        ...

    @abstractmethod
    async def delete(self, namespace: Namespace, key: str) -> None:
        """Delete a key (no-op if absent)."""
        ...

    @abstractmethod
    async def clear(self, namespace: Namespace) -> None:
        """Delete every key of a namespace."""
        ...


class InMemoryKeyValueStore(KeyValueStore):
    """
    In-memory implementation of KeyValueStore.

    Values are deep-copied on the way in and out so callers cannot mutate
    stored state behind the store's back.
    """

    def __init__(self) -> None:
        self._data: dict[Namespace, dict[str, Any]] = {ns: {} for ns in Namespace}
        self._lock = asyncio.Lock()

    async def get(self, namespace: Namespace, key: str) -> Optional[Any]:
        async with self._lock:
            return copy.deepcopy(self._data[namespace].get(key))

    async def put(self, namespace: Namespace, key: str, value: Any) -> None:
        async with self._lock:
            self._data[namespace][key] = copy.deepcopy(value)

    async def get_all(self, namespace: Namespace) -> dict[str, Any]:
        async with self._lock:
            return copy.deepcopy(self._data[namespace])

    async def delete(self, namespace: Namespace, key: str) -> None:
        async with self._lock:
            self._data[namespace].pop(key, None)

    async def clear(self, namespace: Namespace) -> None:
        async with self._lock:
            self._data[namespace].clear()
