"""
Web Push message encryption (RFC 8291) for pushlink.

Both content codings share the same key agreement: an ephemeral P-256 ECDH
with the subscription key, an HKDF stage keyed by the subscription auth
secret, and a second HKDF stage keyed by a fresh random salt that yields the
AES-128-GCM content encryption key and nonce. The codings differ only in
their info strings, padding and framing, which live in ``ContentCoding``
subclasses.
"""

import os
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hmac
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand

from .encoding import b64url_encode
from .envelope import EncryptedRecord, decode_record, encode_record
from .keys import (
    ecdh,
    generate_keypair,
    private_key_from_bytes,
    public_key_from_bytes,
    public_key_to_bytes,
)
from .types import (
    AES128GCM_CEK_INFO,
    AES128GCM_NONCE_INFO,
    AESGCM_AUTH_INFO,
    AESGCM_CONTEXT_LABEL,
    AUTH_SECRET_SIZE,
    CEK_SIZE,
    ContentEncoding,
    CryptoError,
    IKM_SIZE,
    MAX_PLAINTEXT_SIZE,
    NONCE_SIZE,
    PayloadTooLargeError,
    RECORD_DELIMITER,
    RECORD_SIZE,
    SALT_SIZE,
    TAG_SIZE,
    WEBPUSH_INFO,
)


def hkdf_extract(salt: bytes, ikm: bytes) -> bytes:
    """HKDF-Extract with HMAC-SHA-256."""
    h = hmac.HMAC(salt, SHA256())
    h.update(ikm)
    return h.finalize()


def hkdf_expand(prk: bytes, info: bytes, length: int) -> bytes:
    """HKDF-Expand with HMAC-SHA-256."""
    return HKDFExpand(algorithm=SHA256(), length=length, info=info).derive(prk)


class ContentCoding(ABC):
    """Strategy for one Web Push content coding."""

    encoding: ContentEncoding

    @property
    @abstractmethod
    def max_plaintext_size(self) -> int:
        """Largest plaintext that fits one record."""
        ...

    @abstractmethod
    def key_info(self, ua_public: bytes, as_public: bytes) -> bytes:
        """Info string for the auth-secret HKDF stage."""
        ...

    @abstractmethod
    def cek_info(self, ua_public: bytes, as_public: bytes) -> bytes:
        ...

    @abstractmethod
    def nonce_info(self, ua_public: bytes, as_public: bytes) -> bytes:
        ...

    @abstractmethod
    def pad(self, plaintext: bytes) -> bytes:
        ...

    @abstractmethod
    def unpad(self, data: bytes) -> bytes:
        ...

    @abstractmethod
    def encode_body(self, salt: bytes, as_public: bytes, ciphertext: bytes) -> bytes:
        """Frame the ciphertext as the HTTP request body."""
        ...

    @abstractmethod
    def delivery_headers(
        self,
        salt: bytes,
        as_public: bytes,
        jwt: str,
        vapid_public_key: bytes,
    ) -> dict[str, str]:
        """Coding-specific request headers, including authorization."""
        ...


class Aes128GcmCoding(ContentCoding):
    """The "aes128gcm" coding: header in the body, delimiter padding."""

    encoding = ContentEncoding.AES128GCM

    @property
    def max_plaintext_size(self) -> int:
        return MAX_PLAINTEXT_SIZE

    def key_info(self, ua_public: bytes, as_public: bytes) -> bytes:
        return WEBPUSH_INFO + ua_public + as_public

    def cek_info(self, ua_public: bytes, as_public: bytes) -> bytes:
        return AES128GCM_CEK_INFO

    def nonce_info(self, ua_public: bytes, as_public: bytes) -> bytes:
        return AES128GCM_NONCE_INFO

    def pad(self, plaintext: bytes) -> bytes:
        return plaintext + bytes([RECORD_DELIMITER])

    def unpad(self, data: bytes) -> bytes:
        stripped = data.rstrip(b"\x00")
        if not stripped or stripped[-1] != RECORD_DELIMITER:
            raise CryptoError("Missing final record delimiter")
        return stripped[:-1]

    def encode_body(self, salt: bytes, as_public: bytes, ciphertext: bytes) -> bytes:
        return encode_record(EncryptedRecord(salt=salt, key_id=as_public, ciphertext=ciphertext))

    def delivery_headers(
        self,
        salt: bytes,
        as_public: bytes,
        jwt: str,
        vapid_public_key: bytes,
    ) -> dict[str, str]:
        return {
            "Authorization": f"vapid t={jwt}, k={b64url_encode(vapid_public_key)}",
            "Content-Encoding": self.encoding.value,
        }


class AesGcmCoding(ContentCoding):
    """The legacy "aesgcm" coding: salt and key in headers, length-prefix padding."""

    encoding = ContentEncoding.AESGCM

    @property
    def max_plaintext_size(self) -> int:
        return RECORD_SIZE - TAG_SIZE - 2

    def key_info(self, ua_public: bytes, as_public: bytes) -> bytes:
        return AESGCM_AUTH_INFO

    def cek_info(self, ua_public: bytes, as_public: bytes) -> bytes:
        return b"Content-Encoding: aesgcm\x00" + self._context(ua_public, as_public)

    def nonce_info(self, ua_public: bytes, as_public: bytes) -> bytes:
        return b"Content-Encoding: nonce\x00" + self._context(ua_public, as_public)

    def pad(self, plaintext: bytes) -> bytes:
        return struct.pack(">H", 0) + plaintext

    def unpad(self, data: bytes) -> bytes:
        if len(data) < 2:
            raise CryptoError("Record too short for padding length")
        (pad_length,) = struct.unpack(">H", data[:2])
        padding = data[2 : 2 + pad_length]
        if len(padding) != pad_length or any(padding):
            raise CryptoError("Invalid record padding")
        return data[2 + pad_length :]

    def encode_body(self, salt: bytes, as_public: bytes, ciphertext: bytes) -> bytes:
        return ciphertext

    def delivery_headers(
        self,
        salt: bytes,
        as_public: bytes,
        jwt: str,
        vapid_public_key: bytes,
    ) -> dict[str, str]:
        return {
            "Authorization": f"WebPush {jwt}",
            "Crypto-Key": f"dh={b64url_encode(as_public)};p256ecdsa={b64url_encode(vapid_public_key)}",
            "Encryption": f"salt={b64url_encode(salt)}",
            "Content-Encoding": self.encoding.value,
        }

    @staticmethod
    def _context(ua_public: bytes, as_public: bytes) -> bytes:
        return (
            AESGCM_CONTEXT_LABEL
            + struct.pack(">H", len(ua_public))
            + ua_public
            + struct.pack(">H", len(as_public))
            + as_public
        )


_CODINGS: dict[ContentEncoding, ContentCoding] = {
    ContentEncoding.AES128GCM: Aes128GcmCoding(),
    ContentEncoding.AESGCM: AesGcmCoding(),
}


def get_coding(encoding: ContentEncoding) -> ContentCoding:
    """Look up the strategy for a content encoding."""
    return _CODINGS[encoding]


@dataclass(frozen=True)
class EncryptedPayload:
    """Result of encrypting one push message."""
    body: bytes
    salt: bytes
    sender_public_key: bytes  # ephemeral, 65 bytes
    encoding: ContentEncoding

    def record(self) -> Optional[EncryptedRecord]:
        """The parsed record for aes128gcm bodies, None for the legacy coding."""
        if self.encoding != ContentEncoding.AES128GCM:
            return None
        return decode_record(self.body)


def encrypt_payload(
    plaintext: bytes,
    recipient_public_key: bytes,
    auth_secret: bytes,
    encoding: ContentEncoding = ContentEncoding.AES128GCM,
) -> EncryptedPayload:
    """
    Encrypt a payload for a push subscription.

    Args:
        plaintext: Bytes to encrypt
        recipient_public_key: Subscription p256dh key (65-byte uncompressed point)
        auth_secret: Subscription auth secret (16 bytes)
        encoding: Content coding to use

    Returns:
        EncryptedPayload with the request body and key material

    Raises:
        PayloadTooLargeError: If the plaintext does not fit a single record
        CryptoError: If the recipient key material is invalid
    """
    coding = get_coding(encoding)

    if len(plaintext) > coding.max_plaintext_size:
        raise PayloadTooLargeError(len(plaintext), coding.max_plaintext_size)

    _check_auth_secret(auth_secret)
    recipient_key = public_key_from_bytes(recipient_public_key)

    # Fresh key pair and salt for every message
    ephemeral_private, ephemeral_public = generate_keypair()
    as_public = public_key_to_bytes(ephemeral_public)
    salt = os.urandom(SALT_SIZE)

    shared_secret = ecdh(ephemeral_private, recipient_key)
    cek, nonce = _derive_content_keys(
        coding, shared_secret, auth_secret, recipient_public_key, as_public, salt
    )

    ciphertext = AESGCM(cek).encrypt(nonce, coding.pad(plaintext), None)

    return EncryptedPayload(
        body=coding.encode_body(salt, as_public, ciphertext),
        salt=salt,
        sender_public_key=as_public,
        encoding=encoding,
    )


def decrypt_payload(
    body: bytes,
    recipient_private_key: bytes,
    auth_secret: bytes,
    encoding: ContentEncoding = ContentEncoding.AES128GCM,
    salt: Optional[bytes] = None,
    sender_public_key: Optional[bytes] = None,
) -> bytes:
    """
    Decrypt a push message body as the subscription owner.

    Args:
        body: Request body as received from the push service
        recipient_private_key: Subscription private scalar (32 bytes)
        auth_secret: Subscription auth secret (16 bytes)
        encoding: Content coding of the body
        salt: Salt from the Encryption header (legacy coding only)
        sender_public_key: dh value from the Crypto-Key header (legacy coding only)

    Returns:
        The plaintext

    Raises:
        CryptoError: If framing, key agreement or authentication fails
    """
    coding = get_coding(encoding)
    _check_auth_secret(auth_secret)

    if encoding == ContentEncoding.AES128GCM:
        record = decode_record(body)
        salt = record.salt
        sender_public_key = record.key_id
        ciphertext = record.ciphertext
    else:
        if salt is None or sender_public_key is None:
            raise CryptoError("Legacy coding requires salt and sender key from headers")
        ciphertext = body

    private_key = private_key_from_bytes(recipient_private_key)
    ua_public = public_key_to_bytes(private_key.public_key())

    shared_secret = ecdh(private_key, public_key_from_bytes(sender_public_key))
    cek, nonce = _derive_content_keys(
        coding, shared_secret, auth_secret, ua_public, sender_public_key, salt
    )

    try:
        padded = AESGCM(cek).decrypt(nonce, ciphertext, None)
    except InvalidTag as e:
        raise CryptoError("Authentication tag does not verify") from e

    return coding.unpad(padded)


def _derive_content_keys(
    coding: ContentCoding,
    shared_secret: bytes,
    auth_secret: bytes,
    ua_public: bytes,
    as_public: bytes,
    salt: bytes,
) -> tuple[bytes, bytes]:
    """Two-stage HKDF yielding (content encryption key, nonce)."""
    prk = hkdf_extract(auth_secret, shared_secret)
    ikm = hkdf_expand(prk, coding.key_info(ua_public, as_public), IKM_SIZE)

    content_prk = hkdf_extract(salt, ikm)
    cek = hkdf_expand(content_prk, coding.cek_info(ua_public, as_public), CEK_SIZE)
    nonce = hkdf_expand(content_prk, coding.nonce_info(ua_public, as_public), NONCE_SIZE)
    return cek, nonce


def _check_auth_secret(auth_secret: bytes) -> None:
    if len(auth_secret) != AUTH_SECRET_SIZE:
        raise CryptoError(f"Auth secret must be {AUTH_SECRET_SIZE} bytes, got {len(auth_secret)}")
