"""pushlink storage module."""

from .kv_store import KeyValueStore, InMemoryKeyValueStore, Namespace
from .file_store import FileKeyValueStore

__all__ = [
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "Namespace",
    "FileKeyValueStore",
]
