"""Protocol constants and error types for pushlink."""

from enum import Enum
from typing import Optional


# Record constants (aes128gcm, RFC 8188 / RFC 8291)
RECORD_SIZE = 4096
SALT_SIZE = 16
TAG_SIZE = 16
NONCE_SIZE = 12
CEK_SIZE = 16
IKM_SIZE = 32
PUBLIC_KEY_SIZE = 65  # uncompressed P-256 point
PRIVATE_KEY_SIZE = 32
AUTH_SECRET_SIZE = 16
RECORD_HEADER_SIZE = SALT_SIZE + 4 + 1 + PUBLIC_KEY_SIZE  # 86

# Padding delimiter of the last (and only) record
RECORD_DELIMITER = 0x02

# Largest plaintext that still fits a single record: record = plaintext + delimiter + tag
MAX_PLAINTEXT_SIZE = RECORD_SIZE - TAG_SIZE - 1

# Key derivation info strings
WEBPUSH_INFO = b"WebPush: info\x00"
AES128GCM_CEK_INFO = b"Content-Encoding: aes128gcm\x00"
AES128GCM_NONCE_INFO = b"Content-Encoding: nonce\x00"
AESGCM_AUTH_INFO = b"Content-Encoding: auth\x00"
AESGCM_CONTEXT_LABEL = b"P-256\x00"

# VAPID constants
VAPID_EXPIRY_SECONDS = 12 * 60 * 60
VAPID_SIGNATURE_SIZE = 64

# Chunk record kind marker
CHUNK_KIND = "s"


class ContentEncoding(Enum):
    """Content coding negotiated with the receiving push subscription."""
    AES128GCM = "aes128gcm"
    AESGCM = "aesgcm"


class ErrorKind(Enum):
    """Error taxonomy shared by exceptions and result values."""
    CRYPTO = "crypto"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    MALFORMED_CHUNK = "malformed_chunk"
    UNKNOWN_ENDPOINT = "unknown_endpoint"
    DELIVERY_FAILURE = "delivery_failure"
    INVALID_STATE = "invalid_state"
    STORAGE = "storage"


# Exception types
class PushLinkError(Exception):
    """Base exception for pushlink errors."""
    kind: Optional[ErrorKind] = None


class CryptoError(PushLinkError):
    """Key import, derivation, signing or AEAD failure."""
    kind = ErrorKind.CRYPTO


class PayloadTooLargeError(PushLinkError):
    """Plaintext does not fit a single encrypted record."""
    kind = ErrorKind.PAYLOAD_TOO_LARGE

    def __init__(self, size: int, max_size: int) -> None:
        self.size = size
        self.max_size = max_size
        super().__init__(f"Payload too large for single record: {size} bytes (max {max_size})")


class MalformedChunkError(PushLinkError):
    """Chunk record failed schema, index or total validation."""
    kind = ErrorKind.MALFORMED_CHUNK

    def __init__(
        self,
        reason: str,
        message_id: Optional[int] = None,
        chunk_id: Optional[int] = None,
    ) -> None:
        self.reason = reason
        self.message_id = message_id
        self.chunk_id = chunk_id
        context = ""
        if message_id is not None:
            context = f" (message {message_id}, chunk {chunk_id})"
        super().__init__(f"Malformed chunk: {reason}{context}")


class UnknownEndpointError(PushLinkError):
    """Push endpoint is invalid or not on the relay allowlist."""
    kind = ErrorKind.UNKNOWN_ENDPOINT

    def __init__(self, endpoint: str) -> None:
        self.endpoint = endpoint
        super().__init__(f"Endpoint not allowed: {endpoint}")


class DeliveryFailureError(PushLinkError):
    """Relay or push service answered with a non-success status."""
    kind = ErrorKind.DELIVERY_FAILURE

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        self.status = status
        super().__init__(message)


class InvalidStateError(PushLinkError):
    """Operation is not allowed in the current session state."""
    kind = ErrorKind.INVALID_STATE


class StorageError(PushLinkError):
    """Storage operation failed."""
    kind = ErrorKind.STORAGE
