"""P-256 key generation and conversion for pushlink."""

from dataclasses import dataclass
from typing import Tuple

from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from .encoding import b64url_decode, b64url_encode
from .types import CryptoError, PRIVATE_KEY_SIZE, PUBLIC_KEY_SIZE


@dataclass(frozen=True)
class VapidKeyPair:
    """
    A P-256 signing key pair used for VAPID authentication.

    Attributes:
        public_key: Uncompressed public point (65 bytes)
        private_key: Private scalar (32 bytes)
    """
    public_key: bytes
    private_key: bytes

    def to_json(self) -> dict:
        """Serialize as base64url strings."""
        return {
            "publicKey": b64url_encode(self.public_key),
            "privateKey": b64url_encode(self.private_key),
        }

    @classmethod
    def from_json(cls, data: dict) -> "VapidKeyPair":
        """Deserialize from base64url strings."""
        try:
            return cls(
                public_key=b64url_decode(data["publicKey"]),
                private_key=b64url_decode(data["privateKey"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CryptoError(f"Invalid VAPID key data: {e}") from e


def generate_keypair() -> Tuple[ec.EllipticCurvePrivateKey, ec.EllipticCurvePublicKey]:
    """
    Generate a random P-256 key pair.

    Returns:
        Tuple of (private_key, public_key)
    """
    private_key = ec.generate_private_key(ec.SECP256R1())
    return private_key, private_key.public_key()


def generate_vapid_keys() -> VapidKeyPair:
    """Generate a fresh VAPID key pair."""
    private_key, public_key = generate_keypair()
    return VapidKeyPair(
        public_key=public_key_to_bytes(public_key),
        private_key=private_key_to_bytes(private_key),
    )


def ecdh(private_key: ec.EllipticCurvePrivateKey, public_key: ec.EllipticCurvePublicKey) -> bytes:
    """
    Perform P-256 ECDH key agreement.

    Args:
        private_key: Our private key
        public_key: Their public key

    Returns:
        32-byte shared secret
    """
    return private_key.exchange(ec.ECDH(), public_key)


def public_key_to_bytes(public_key: ec.EllipticCurvePublicKey) -> bytes:
    """Convert a P-256 public key to its uncompressed point encoding."""
    return public_key.public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)


def public_key_from_bytes(data: bytes) -> ec.EllipticCurvePublicKey:
    """
    Create a P-256 public key from an uncompressed point.

    Raises:
        CryptoError: If the point is malformed or not on the curve
    """
    if len(data) != PUBLIC_KEY_SIZE or data[0] != 0x04:
        raise CryptoError(f"Public key must be a {PUBLIC_KEY_SIZE}-byte uncompressed point, got {len(data)} bytes")
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), data)
    except ValueError as e:
        raise CryptoError(f"Invalid P-256 public key: {e}") from e


def private_key_to_bytes(private_key: ec.EllipticCurvePrivateKey) -> bytes:
    """Convert a P-256 private key to its raw 32-byte scalar."""
    return private_key.private_numbers().private_value.to_bytes(PRIVATE_KEY_SIZE, "big")


def private_key_from_bytes(data: bytes) -> ec.EllipticCurvePrivateKey:
    """
    Create a P-256 private key from a raw 32-byte scalar.

    Raises:
        CryptoError: If the scalar is the wrong size or out of range
    """
    if len(data) != PRIVATE_KEY_SIZE:
        raise CryptoError(f"Private key must be {PRIVATE_KEY_SIZE} bytes, got {len(data)}")
    try:
        return ec.derive_private_key(int.from_bytes(data, "big"), ec.SECP256R1())
    except ValueError as e:
        raise CryptoError(f"Invalid P-256 private key: {e}") from e
