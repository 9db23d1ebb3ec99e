"""
Fragmentation of logical messages into push-sized chunk records.

A logical message is serialized to canonical JSON bytes (sorted keys,
compact separators, UTF-8), cut into slices of at most the chunk budget,
and each slice is carried base64 encoded in a chunk record. The budget is
derived from the encrypted record size so that every encoded chunk still
fits one push message body.
"""

import json
import math
from typing import Iterable, Optional

from .encoding import b64_encode
from .models import MAX_RANDOM_ID, ChunkRecord, LogicalMessage, random_id
from .types import (
    MalformedChunkError,
    RECORD_HEADER_SIZE,
    RECORD_SIZE,
    TAG_SIZE,
)


def serialize_message(message: LogicalMessage) -> bytes:
    """Canonical byte form of a logical message."""
    return json.dumps(
        message.to_json(),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def deserialize_message(data: bytes) -> LogicalMessage:
    """
    Parse the canonical byte form of a logical message.

    Raises:
        MalformedChunkError: If the bytes are not a valid logical message
    """
    try:
        parsed = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedChunkError(f"reassembled payload is not JSON: {e}") from e
    return LogicalMessage.from_json(parsed)


def encode_chunk(chunk: ChunkRecord) -> bytes:
    """Encode a chunk record as the push plaintext."""
    return json.dumps(chunk.to_json(), separators=(",", ":")).encode("utf-8")


def decode_chunk(data: bytes) -> ChunkRecord:
    """
    Decode a push plaintext into a chunk record.

    Raises:
        MalformedChunkError: If the data is not a chunk record
    """
    try:
        parsed = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedChunkError(f"push payload is not JSON: {e}") from e
    return ChunkRecord.from_json(parsed)


def max_chunk_payload_bytes(sender: str, record_size: int = RECORD_SIZE) -> int:
    """
    Largest decoded slice that still fits one push message body.

    The body ceiling is the record size. It holds the record header, the
    tag and the padding delimiter around the encoded chunk record, whose
    JSON envelope is sized with every integer field at its widest.

    Args:
        sender: Sender peer id carried in every chunk
        record_size: Push payload ceiling in bytes

    Returns:
        The chunk budget in bytes
    """
    plaintext_room = record_size - RECORD_HEADER_SIZE - TAG_SIZE - 1
    widest = ChunkRecord(
        sender=sender,
        chunk_id=MAX_RANDOM_ID,
        message_id=MAX_RANDOM_ID,
        index=MAX_RANDOM_ID,
        total=MAX_RANDOM_ID,
        data="",
    )
    base64_room = plaintext_room - len(encode_chunk(widest))
    budget = (base64_room // 4) * 3
    if budget <= 0:
        raise ValueError(f"Record size {record_size} leaves no room for chunk data")
    return budget


def split(message: LogicalMessage, max_chunk_payload: int, sender: str) -> list[ChunkRecord]:
    """
    Split a logical message into chunk records.

    Args:
        message: Message to fragment
        max_chunk_payload: Largest decoded slice per chunk
        sender: Sender peer id

    Returns:
        Chunk records with indices 0..total-1
    """
    if max_chunk_payload <= 0:
        raise ValueError(f"Chunk budget must be positive, got {max_chunk_payload}")

    data = serialize_message(message)
    total = max(1, math.ceil(len(data) / max_chunk_payload))

    return [
        ChunkRecord(
            sender=sender,
            chunk_id=random_id(),
            message_id=message.id,
            index=i,
            total=total,
            data=b64_encode(data[i * max_chunk_payload : (i + 1) * max_chunk_payload]),
        )
        for i in range(total)
    ]


def join(chunks: Iterable[ChunkRecord]) -> Optional[LogicalMessage]:
    """
    Reassemble a logical message from its chunks.

    Chunks may arrive in any order and may repeat; a repeated index
    replaces the earlier one.

    Args:
        chunks: Chunk records of a single (sender, message id)

    Returns:
        The logical message, or None while chunks are missing

    Raises:
        MalformedChunkError: If chunks disagree on sender, message id or total,
            carry an index out of range, or do not decode to a message
    """
    by_index: dict[int, ChunkRecord] = {}
    first: Optional[ChunkRecord] = None

    for chunk in chunks:
        if first is None:
            first = chunk
        elif (chunk.sender, chunk.message_id, chunk.total) != (first.sender, first.message_id, first.total):
            raise MalformedChunkError(
                "chunks disagree on sender, message id or total",
                chunk.message_id,
                chunk.chunk_id,
            )
        if not 0 <= chunk.index < chunk.total:
            raise MalformedChunkError(
                f"index {chunk.index} outside [0, {chunk.total})",
                chunk.message_id,
                chunk.chunk_id,
            )
        by_index[chunk.index] = chunk

    if first is None or len(by_index) < first.total:
        return None

    try:
        data = b"".join(by_index[i].payload for i in range(first.total))
    except ValueError as e:
        raise MalformedChunkError(f"chunk data is not base64: {e}", first.message_id) from e

    message = deserialize_message(data)
    if message.id != first.message_id:
        raise MalformedChunkError(
            f"reassembled id {message.id} does not match chunk message id",
            first.message_id,
        )
    return message
