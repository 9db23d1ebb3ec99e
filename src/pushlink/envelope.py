"""Encrypted record encoding and decoding (aes128gcm)."""

import struct
from dataclasses import dataclass

from .types import (
    CryptoError,
    RECORD_SIZE,
    SALT_SIZE,
)


@dataclass(frozen=True)
class EncryptedRecord:
    """Single aes128gcm record with its coding header."""
    salt: bytes  # 16 bytes
    key_id: bytes  # sender's ephemeral public key, 65 bytes
    ciphertext: bytes  # padded plaintext + 16-byte tag
    record_size: int = RECORD_SIZE


def encode_record(record: EncryptedRecord) -> bytes:
    """
    Encode a record to bytes.

    Format (86-byte header for P-256 keys + ciphertext):
        [0-15]   salt (16 bytes)
        [16-19]  record size (uint32, big-endian)
        [20]     key id length
        [21-85]  key id (sender public key)
        [86+]    ciphertext with tag

    Args:
        record: EncryptedRecord to encode

    Returns:
        Encoded bytes
    """
    return (
        record.salt
        + struct.pack(">IB", record.record_size, len(record.key_id))
        + record.key_id
        + record.ciphertext
    )


def decode_record(data: bytes) -> EncryptedRecord:
    """
    Decode bytes into a record.

    Args:
        data: Encoded record bytes

    Returns:
        Decoded EncryptedRecord

    Raises:
        CryptoError: If the header is truncated or inconsistent
    """
    fixed = SALT_SIZE + 5
    if len(data) < fixed:
        raise CryptoError(f"Record too short: {len(data)} bytes (minimum {fixed})")

    salt = data[:SALT_SIZE]
    record_size, key_id_length = struct.unpack(">IB", data[SALT_SIZE:fixed])

    if record_size < 18:
        raise CryptoError(f"Invalid record size: {record_size}")

    key_id = data[fixed : fixed + key_id_length]
    if len(key_id) != key_id_length:
        raise CryptoError("Record truncated inside key id")

    ciphertext = data[fixed + key_id_length :]
    if len(ciphertext) > record_size:
        raise CryptoError(
            f"Ciphertext of {len(ciphertext)} bytes exceeds record size {record_size}; "
            "multi-record payloads are not supported"
        )

    return EncryptedRecord(
        salt=salt,
        key_id=key_id,
        ciphertext=ciphertext,
        record_size=record_size,
    )
