"""
VAPID token signing and verification.

A VAPID token is a compact ES256 JWT that proves the sending application's
identity to a push service. The token binds the push service origin
(``aud``), an expiry (``exp``) and a contact (``sub``), and is signed with
the VAPID private key whose public half the receiving subscription was
created with.
"""

import json
import time
from typing import Optional
from urllib.parse import urlparse

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)

from .encoding import b64url_decode, b64url_encode
from .keys import private_key_from_bytes, public_key_from_bytes
from .types import CryptoError, VAPID_EXPIRY_SECONDS, VAPID_SIGNATURE_SIZE


JWT_HEADER = {"typ": "JWT", "alg": "ES256"}


def audience_for(endpoint: str) -> str:
    """
    Derive the VAPID audience (origin) of a push endpoint.

    Args:
        endpoint: Push subscription endpoint URL

    Returns:
        The endpoint origin, e.g. "https://fcm.googleapis.com"

    Raises:
        CryptoError: If the endpoint has no scheme or host
    """
    parsed = urlparse(endpoint)
    if not parsed.scheme or not parsed.netloc:
        raise CryptoError(f"Cannot derive VAPID audience from endpoint: {endpoint}")
    return f"{parsed.scheme}://{parsed.netloc}"


def sign_vapid_token(
    private_key: bytes,
    audience: str,
    subject_email: str,
    now: Optional[int] = None,
    expires_in: int = VAPID_EXPIRY_SECONDS,
) -> str:
    """
    Sign a VAPID token.

    Args:
        private_key: VAPID private scalar (32 bytes)
        audience: Push service origin
        subject_email: Contact address; "mailto:" is prepended when missing
        now: Issue time as Unix seconds (default: current time)
        expires_in: Lifetime of the token in seconds (default: 12 hours)

    Returns:
        The compact token string

    Raises:
        CryptoError: If the key material is invalid or signing fails
    """
    issued = int(time.time()) if now is None else now
    subject = subject_email if subject_email.startswith("mailto:") else f"mailto:{subject_email}"
    claims = {"aud": audience, "exp": issued + expires_in, "sub": subject}

    signing_input = f"{_encode_segment(JWT_HEADER)}.{_encode_segment(claims)}"

    signing_key = private_key_from_bytes(private_key)
    try:
        der_signature = signing_key.sign(signing_input.encode("ascii"), ec.ECDSA(hashes.SHA256()))
    except ValueError as e:
        raise CryptoError(f"VAPID signing failed: {e}") from e

    r, s = decode_dss_signature(der_signature)
    raw_signature = r.to_bytes(32, "big") + s.to_bytes(32, "big")

    return f"{signing_input}.{b64url_encode(raw_signature)}"


def verify_vapid_token(token: str, public_key: bytes, now: Optional[int] = None) -> dict:
    """
    Verify a VAPID token and return its claims.

    Args:
        token: Compact token string
        public_key: VAPID public key (65-byte uncompressed point)
        now: Verification time as Unix seconds (default: current time)

    Returns:
        The decoded claims

    Raises:
        CryptoError: If the token is malformed, the signature does not verify,
            or the token has expired
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise CryptoError("VAPID token must have three segments")

    try:
        header = json.loads(b64url_decode(parts[0]))
        claims = json.loads(b64url_decode(parts[1]))
        raw_signature = b64url_decode(parts[2])
    except ValueError as e:
        raise CryptoError(f"Malformed VAPID token: {e}") from e

    if header.get("alg") != "ES256":
        raise CryptoError(f"Unsupported VAPID algorithm: {header.get('alg')}")

    if len(raw_signature) != VAPID_SIGNATURE_SIZE:
        raise CryptoError(
            f"VAPID signature must be {VAPID_SIGNATURE_SIZE} bytes, got {len(raw_signature)}"
        )

    r = int.from_bytes(raw_signature[:32], "big")
    s = int.from_bytes(raw_signature[32:], "big")
    verifying_key = public_key_from_bytes(public_key)

    try:
        verifying_key.verify(
            encode_dss_signature(r, s),
            f"{parts[0]}.{parts[1]}".encode("ascii"),
            ec.ECDSA(hashes.SHA256()),
        )
    except InvalidSignature as e:
        raise CryptoError("VAPID signature does not verify") from e

    checked_at = int(time.time()) if now is None else now
    if claims.get("exp", 0) <= checked_at:
        raise CryptoError("VAPID token has expired")

    return claims


def _encode_segment(obj: dict) -> str:
    return b64url_encode(json.dumps(obj, separators=(",", ":")).encode("utf-8"))
