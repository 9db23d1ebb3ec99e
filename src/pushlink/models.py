"""Models for pushlink peers, logical messages and chunk records."""

import random
from dataclasses import dataclass
from typing import Optional, Union

from .encoding import b64_decode, b64_encode, b64url_decode, b64url_encode
from .keys import VapidKeyPair
from .types import CHUNK_KIND, ContentEncoding, CryptoError, MalformedChunkError


# Random ids are drawn from [1, 2**32 - 1]
MAX_RANDOM_ID = 0xFFFFFFFF


def random_id() -> int:
    """Returns a random message or chunk id."""
    return random.SystemRandom().randint(1, MAX_RANDOM_ID)


class ContentType:
    """Common MIME types for asset transfers."""
    TEXT_PLAIN = "text/plain; charset=utf-8"
    WEBP_IMAGE = "image/webp"
    ZIP_ARCHIVE = "application/zip"


class PayloadType:
    """Logical message type tags."""
    HANDSHAKE = "1"
    HANDSHAKE_ACK = "2"
    ASSET_TRANSFER = "3"


@dataclass(frozen=True)
class PushEndpointCredential:
    """A push subscription and the key material needed to encrypt for it."""
    endpoint: str
    p256dh: bytes  # 65-byte uncompressed point
    auth: bytes  # 16-byte auth secret
    encoding: ContentEncoding = ContentEncoding.AES128GCM

    def to_json(self) -> dict:
        return {
            "pushSubscription": {
                "endpoint": self.endpoint,
                "keys": {
                    "p256dh": b64url_encode(self.p256dh),
                    "auth": b64url_encode(self.auth),
                },
            },
            "encoding": self.encoding.value,
        }

    @classmethod
    def from_json(cls, data: dict) -> "PushEndpointCredential":
        try:
            subscription = data["pushSubscription"]
            keys = subscription["keys"]
            return cls(
                endpoint=subscription["endpoint"],
                p256dh=b64url_decode(keys["p256dh"]),
                auth=b64url_decode(keys["auth"]),
                encoding=ContentEncoding(data.get("encoding", ContentEncoding.AES128GCM.value)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedChunkError(f"invalid push credential: {e}") from e


@dataclass(frozen=True)
class RemotePeer:
    """Everything needed to push messages to the other peer."""
    peer_id: str
    credential: PushEndpointCredential
    vapid_keys: VapidKeyPair

    def to_json(self) -> dict:
        return {
            "id": self.peer_id,
            "credential": self.credential.to_json(),
            "vapidKeys": self.vapid_keys.to_json(),
        }

    @classmethod
    def from_json(cls, data: dict) -> "RemotePeer":
        try:
            return cls(
                peer_id=data["id"],
                credential=PushEndpointCredential.from_json(data["credential"]),
                vapid_keys=VapidKeyPair.from_json(data["vapidKeys"]),
            )
        except (KeyError, TypeError, CryptoError) as e:
            raise MalformedChunkError(f"invalid remote peer record: {e}") from e


@dataclass(frozen=True)
class Handshake:
    """Guest -> Host: the guest's credential and VAPID keys."""
    credential: PushEndpointCredential
    vapid_keys: VapidKeyPair

    type = PayloadType.HANDSHAKE

    def to_json(self) -> dict:
        options = self.credential.to_json()
        options["vapidKeys"] = self.vapid_keys.to_json()
        return {"t": self.type, "o": options}


@dataclass(frozen=True)
class HandshakeAck:
    """Host -> Guest: handshake accepted."""

    type = PayloadType.HANDSHAKE_ACK

    def to_json(self) -> dict:
        return {"t": self.type}


@dataclass(frozen=True)
class AssetTransfer:
    """Host <-> Guest: one asset, base64 encoded, with its MIME type."""
    content_base64: str
    content_type: str

    type = PayloadType.ASSET_TRANSFER

    @classmethod
    def from_bytes(cls, content: bytes, content_type: str) -> "AssetTransfer":
        """Creates an asset transfer from raw content."""
        return cls(content_base64=b64_encode(content), content_type=content_type)

    @property
    def content(self) -> bytes:
        """Decoded asset content."""
        return b64_decode(self.content_base64)

    def to_json(self) -> dict:
        return {"t": self.type, "d": self.content_base64, "c": self.content_type}


MessageBody = Union[Handshake, HandshakeAck, AssetTransfer]


@dataclass(frozen=True)
class LogicalMessage:
    """One complete application-level message before fragmentation."""
    id: int
    body: MessageBody

    @classmethod
    def create(cls, body: MessageBody) -> "LogicalMessage":
        """Creates a message with a fresh random id."""
        return cls(id=random_id(), body=body)

    def to_json(self) -> dict:
        return {"id": self.id, "fullMessage": self.body.to_json()}

    @classmethod
    def from_json(cls, data: dict) -> "LogicalMessage":
        """
        Parse the {id, fullMessage} shape.

        Raises:
            MalformedChunkError: If the shape or type tag is invalid
        """
        if not isinstance(data, dict):
            raise MalformedChunkError("logical message is not an object")

        message_id = data.get("id")
        full = data.get("fullMessage")
        if not _is_int(message_id) or not isinstance(full, dict):
            raise MalformedChunkError("logical message needs integer id and fullMessage object")

        tag = full.get("t")
        try:
            if tag == PayloadType.HANDSHAKE:
                options = full["o"]
                body: MessageBody = Handshake(
                    credential=PushEndpointCredential.from_json(options),
                    vapid_keys=VapidKeyPair.from_json(options["vapidKeys"]),
                )
            elif tag == PayloadType.HANDSHAKE_ACK:
                body = HandshakeAck()
            elif tag == PayloadType.ASSET_TRANSFER:
                if not isinstance(full["d"], str) or not isinstance(full["c"], str):
                    raise MalformedChunkError("asset fields must be strings", message_id)
                body = AssetTransfer(content_base64=full["d"], content_type=full["c"])
            else:
                raise MalformedChunkError(f"unknown payload type {tag!r}", message_id)
        except (KeyError, TypeError, CryptoError) as e:
            raise MalformedChunkError(f"invalid payload fields: {e}", message_id) from e

        return cls(id=message_id, body=body)


@dataclass(frozen=True)
class ChunkRecord:
    """One fragment of a serialized logical message."""
    sender: str
    chunk_id: int
    message_id: int
    index: int
    total: int
    data: str  # base64 of a slice of the serialized message

    kind = CHUNK_KIND

    @property
    def payload(self) -> bytes:
        """Decoded slice bytes."""
        return b64_decode(self.data)

    def to_json(self) -> dict:
        return {
            "t": self.kind,
            "fr": self.sender,
            "id": self.chunk_id,
            "mid": self.message_id,
            "i": self.index,
            "all": self.total,
            "d": self.data,
        }

    @classmethod
    def from_json(cls, data: dict) -> "ChunkRecord":
        """
        Parse the chunk record shape.

        Raises:
            MalformedChunkError: If a field is missing or has the wrong type
        """
        if not isinstance(data, dict) or data.get("t") != CHUNK_KIND:
            raise MalformedChunkError("not a chunk record")

        message_id = data.get("mid")
        chunk_id = data.get("id")

        if not isinstance(data.get("fr"), str) or not isinstance(data.get("d"), str):
            raise MalformedChunkError("sender and data must be strings", _int_or_none(message_id), _int_or_none(chunk_id))

        for field_name in ("id", "mid", "i", "all"):
            if not _is_int(data.get(field_name)):
                raise MalformedChunkError(
                    f"field {field_name!r} must be an integer",
                    _int_or_none(message_id),
                    _int_or_none(chunk_id),
                )

        return cls(
            sender=data["fr"],
            chunk_id=chunk_id,
            message_id=message_id,
            index=data["i"],
            total=data["all"],
            data=data["d"],
        )


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _int_or_none(value: object) -> Optional[int]:
    return value if _is_int(value) else None
