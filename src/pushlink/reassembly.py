"""
Reassembly of chunk records into logical messages.

Buffers are kept in the ``chunks`` namespace of a key-value store, keyed by
sender and message id, so that a partially received message survives a
restart of the receiving worker. Once a buffer completes it is replaced by
a tombstone that absorbs late duplicates until the inactivity window ends.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from .chunking import join
from .config import ReassemblyConfig
from .models import ChunkRecord, LogicalMessage
from .storage import KeyValueStore, Namespace
from .types import MalformedChunkError

logger = logging.getLogger(__name__)


class CompletionStatus(Enum):
    """Outcome of ingesting one chunk."""
    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class CompletionResult:
    """Result of ReassemblyStore.ingest."""
    status: CompletionStatus
    sender: Optional[str] = None
    message_id: Optional[int] = None
    message: Optional[LogicalMessage] = None
    reason: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.status == CompletionStatus.COMPLETED

    @property
    def is_rejected(self) -> bool:
        return self.status == CompletionStatus.REJECTED


class ReassemblyStore:
    """
    Accumulates chunk records until each logical message is complete.

    Chunks may arrive in any order and any number of times. A message is
    returned as COMPLETED exactly once; every other chunk of it yields
    PENDING, and inconsistent chunks yield REJECTED without touching the
    buffer.
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[ReassemblyConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._config = config or ReassemblyConfig()
        self._clock = clock or datetime.now
        self._lock = asyncio.Lock()
        self._last_sweep: Optional[datetime] = None

    async def ingest(self, chunk: ChunkRecord) -> CompletionResult:
        """
        Add a chunk to its buffer.

        Args:
            chunk: Decoded chunk record

        Returns:
            COMPLETED with the message when this chunk was the last missing
            one, PENDING otherwise, REJECTED for inconsistent chunks

        Buffers and tombstones of every sender that have been inactive for
        longer than the inactivity window are swept at most once per window
        as a side effect, so the store stays bounded without a separate
        eviction task.
        """
        async with self._lock:
            key = _buffer_key(chunk.sender, chunk.message_id)
            now = self._clock()

            if self._last_sweep is None or now - self._last_sweep > self._config.inactivity_window:
                await self._sweep(now)

            buffer = await self._store.get(Namespace.CHUNKS, key)

            if buffer is not None and self._is_expired(buffer, now):
                await self._store.delete(Namespace.CHUNKS, key)
                buffer = None

            if buffer is None:
                if chunk.total < 1 or not 0 <= chunk.index < chunk.total:
                    return self._reject(chunk, f"index {chunk.index} outside [0, {chunk.total})")
                buffer = {
                    "fr": chunk.sender,
                    "mid": chunk.message_id,
                    "all": chunk.total,
                    "parts": {},
                    "complete": False,
                }
            elif chunk.total != buffer["all"]:
                return self._reject(chunk, f"total {chunk.total} disagrees with {buffer['all']}")
            elif not 0 <= chunk.index < buffer["all"]:
                return self._reject(chunk, f"index {chunk.index} outside [0, {buffer['all']})")
            elif buffer["complete"]:
                return _pending(chunk)

            buffer["parts"][str(chunk.index)] = chunk.data
            buffer["touched"] = now.isoformat()

            if len(buffer["parts"]) < buffer["all"]:
                await self._store.put(Namespace.CHUNKS, key, buffer)
                return _pending(chunk)

            try:
                message = join(_records_of(buffer))
            except MalformedChunkError as e:
                # A complete buffer that does not decode cannot recover
                await self._store.delete(Namespace.CHUNKS, key)
                return self._reject(chunk, e.reason)

            await self._store.put(Namespace.CHUNKS, key, {
                "fr": chunk.sender,
                "mid": chunk.message_id,
                "all": buffer["all"],
                "parts": {},
                "complete": True,
                "touched": now.isoformat(),
            })
            logger.debug(f"Reassembled message {chunk.message_id} from {chunk.sender} ({buffer['all']} chunks)")
            return CompletionResult(
                status=CompletionStatus.COMPLETED,
                sender=chunk.sender,
                message_id=chunk.message_id,
                message=message,
            )

    async def evict_expired(self) -> int:
        """
        Drop buffers and tombstones untouched for longer than the inactivity window.

        Returns:
            Number of evicted entries
        """
        async with self._lock:
            return await self._sweep(self._clock())

    async def evict_peer(self, sender: str) -> int:
        """
        Drop every buffer of one sender.

        Returns:
            Number of evicted entries
        """
        async with self._lock:
            buffers = await self._store.get_all(Namespace.CHUNKS)
            owned = [key for key, buffer in buffers.items() if buffer.get("fr") == sender]
            for key in owned:
                await self._store.delete(Namespace.CHUNKS, key)

        logger.debug(f"Evicted {len(owned)} reassembly buffers of {sender}")
        return len(owned)

    async def pending_count(self) -> int:
        """Number of incomplete buffers."""
        async with self._lock:
            buffers = await self._store.get_all(Namespace.CHUNKS)
        return sum(1 for buffer in buffers.values() if not buffer.get("complete"))

    async def _sweep(self, now: datetime) -> int:
        # Caller holds the lock
        self._last_sweep = now
        buffers = await self._store.get_all(Namespace.CHUNKS)
        expired = [key for key, buffer in buffers.items() if self._is_expired(buffer, now)]
        for key in expired:
            await self._store.delete(Namespace.CHUNKS, key)

        if expired:
            logger.info(f"Evicted {len(expired)} inactive reassembly buffers")
        return len(expired)

    def _is_expired(self, buffer: dict, now: datetime) -> bool:
        touched = buffer.get("touched")
        if touched is None:
            return True
        return now - datetime.fromisoformat(touched) > self._config.inactivity_window

    @staticmethod
    def _reject(chunk: ChunkRecord, reason: str) -> CompletionResult:
        logger.warning(f"Rejected chunk {chunk.chunk_id} of message {chunk.message_id} from {chunk.sender}: {reason}")
        return CompletionResult(
            status=CompletionStatus.REJECTED,
            sender=chunk.sender,
            message_id=chunk.message_id,
            reason=reason,
        )


def _buffer_key(sender: str, message_id: int) -> str:
    return f"{sender}:{message_id}"


def _pending(chunk: ChunkRecord) -> CompletionResult:
    return CompletionResult(
        status=CompletionStatus.PENDING,
        sender=chunk.sender,
        message_id=chunk.message_id,
    )


def _records_of(buffer: dict) -> list[ChunkRecord]:
    return [
        ChunkRecord(
            sender=buffer["fr"],
            chunk_id=0,
            message_id=buffer["mid"],
            index=int(index),
            total=buffer["all"],
            data=data,
        )
        for index, data in buffer["parts"].items()
    ]
