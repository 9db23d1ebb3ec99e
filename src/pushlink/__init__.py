"""
pushlink - End-to-end encrypted peer messaging over Web Push

Python implementation of the Web Push message encryption (RFC 8291, VAPID)
and of a chunked host/guest transport protocol on top of it.
"""

from .types import (
    RECORD_SIZE,
    MAX_PLAINTEXT_SIZE,
    ContentEncoding,
    ErrorKind,
    PushLinkError,
    CryptoError,
    PayloadTooLargeError,
    MalformedChunkError,
    UnknownEndpointError,
    DeliveryFailureError,
    InvalidStateError,
    StorageError,
)
from .keys import VapidKeyPair, generate_vapid_keys
from .vapid import audience_for, sign_vapid_token, verify_vapid_token
from .crypto import (
    ContentCoding,
    Aes128GcmCoding,
    AesGcmCoding,
    EncryptedPayload,
    get_coding,
    encrypt_payload,
    decrypt_payload,
)
from .envelope import EncryptedRecord, encode_record, decode_record
from .models import (
    ContentType,
    PayloadType,
    PushEndpointCredential,
    RemotePeer,
    Handshake,
    HandshakeAck,
    AssetTransfer,
    LogicalMessage,
    ChunkRecord,
)
from .chunking import (
    serialize_message,
    deserialize_message,
    encode_chunk,
    decode_chunk,
    max_chunk_payload_bytes,
    split,
    join,
)
from .config import TransportConfig, ReassemblyConfig, RelayConfig
from .storage import (
    KeyValueStore,
    InMemoryKeyValueStore,
    FileKeyValueStore,
    Namespace,
)
from .reassembly import CompletionStatus, CompletionResult, ReassemblyStore
from .payload import PushRequest, build_push_request, decrypt_push_request
from .relay import (
    PushSink,
    PushProxy,
    RelayClient,
    is_endpoint_allowed,
    create_relay_app,
)
from .identity import LocalIdentity, LocalSubscription
from .session import Role, SessionState, SendResult, Session

__version__ = "0.1.0"

__all__ = [
    # Types
    "RECORD_SIZE",
    "MAX_PLAINTEXT_SIZE",
    "ContentEncoding",
    "ErrorKind",
    # Errors
    "PushLinkError",
    "CryptoError",
    "PayloadTooLargeError",
    "MalformedChunkError",
    "UnknownEndpointError",
    "DeliveryFailureError",
    "InvalidStateError",
    "StorageError",
    # Keys
    "VapidKeyPair",
    "generate_vapid_keys",
    # VAPID
    "audience_for",
    "sign_vapid_token",
    "verify_vapid_token",
    # Crypto
    "ContentCoding",
    "Aes128GcmCoding",
    "AesGcmCoding",
    "EncryptedPayload",
    "get_coding",
    "encrypt_payload",
    "decrypt_payload",
    # Envelope
    "EncryptedRecord",
    "encode_record",
    "decode_record",
    # Models
    "ContentType",
    "PayloadType",
    "PushEndpointCredential",
    "RemotePeer",
    "Handshake",
    "HandshakeAck",
    "AssetTransfer",
    "LogicalMessage",
    "ChunkRecord",
    # Chunking
    "serialize_message",
    "deserialize_message",
    "encode_chunk",
    "decode_chunk",
    "max_chunk_payload_bytes",
    "split",
    "join",
    # Config
    "TransportConfig",
    "ReassemblyConfig",
    "RelayConfig",
    # Storage
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "FileKeyValueStore",
    "Namespace",
    # Reassembly
    "CompletionStatus",
    "CompletionResult",
    "ReassemblyStore",
    # Payload
    "PushRequest",
    "build_push_request",
    "decrypt_push_request",
    # Relay
    "PushSink",
    "PushProxy",
    "RelayClient",
    "is_endpoint_allowed",
    "create_relay_app",
    # Identity
    "LocalIdentity",
    "LocalSubscription",
    # Session
    "Role",
    "SessionState",
    "SendResult",
    "Session",
]
