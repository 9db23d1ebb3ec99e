"""Construction of complete, signed push requests."""

from dataclasses import dataclass, field
from typing import Optional

from .config import TransportConfig
from .crypto import decrypt_payload, encrypt_payload, get_coding
from .encoding import b64url_decode, b64url_encode
from .keys import VapidKeyPair
from .models import PushEndpointCredential
from .types import ContentEncoding, CryptoError, DeliveryFailureError
from .vapid import audience_for, sign_vapid_token


@dataclass(frozen=True)
class PushRequest:
    """An encrypted push message ready to be handed to a sink."""
    endpoint: str
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)

    def to_relay_json(self) -> dict:
        """The {endpoint, body, headers} form accepted by a relay."""
        return {
            "endpoint": self.endpoint,
            "body": b64url_encode(self.body),
            "headers": dict(self.headers),
        }

    @classmethod
    def from_relay_json(cls, data: dict) -> "PushRequest":
        """
        Parse a relay request.

        Raises:
            DeliveryFailureError: If the request is malformed (status 400)
        """
        try:
            endpoint = data["endpoint"]
            headers = data.get("headers") or {}
            if not isinstance(endpoint, str) or not isinstance(headers, dict):
                raise TypeError("endpoint must be a string and headers an object")
            return cls(
                endpoint=endpoint,
                body=b64url_decode(data.get("body") or ""),
                headers={str(k): str(v) for k, v in headers.items()},
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise DeliveryFailureError(f"Malformed relay request: {e}", status=400) from e


def build_push_request(
    plaintext: bytes,
    credential: PushEndpointCredential,
    vapid_keys: VapidKeyPair,
    config: Optional[TransportConfig] = None,
    now: Optional[int] = None,
) -> PushRequest:
    """
    Encrypt a plaintext for a subscription and attach delivery headers.

    The VAPID token is signed for the origin of the subscription endpoint;
    the coding selected by the credential decides the remaining headers.

    Args:
        plaintext: Push message plaintext
        credential: Recipient subscription
        vapid_keys: Key pair whose public half the subscription was created with
        config: Transport configuration (default: TransportConfig())
        now: Token issue time as Unix seconds (default: current time)

    Returns:
        PushRequest for the subscription endpoint

    Raises:
        PayloadTooLargeError: If the plaintext does not fit a single record
        CryptoError: If key material is invalid
    """
    config = config or TransportConfig()
    coding = get_coding(credential.encoding)

    payload = encrypt_payload(plaintext, credential.p256dh, credential.auth, credential.encoding)
    jwt = sign_vapid_token(
        vapid_keys.private_key,
        audience_for(credential.endpoint),
        config.subject_email,
        now=now,
    )

    headers = {
        "Content-Type": "application/octet-stream",
        "Content-Length": str(len(payload.body)),
        "TTL": str(config.ttl),
    }
    if config.urgency:
        headers["Urgency"] = config.urgency
    headers.update(coding.delivery_headers(payload.salt, payload.sender_public_key, jwt, vapid_keys.public_key))

    return PushRequest(endpoint=credential.endpoint, body=payload.body, headers=headers)


def decrypt_push_request(
    request: PushRequest,
    recipient_private_key: bytes,
    auth_secret: bytes,
) -> bytes:
    """
    Decrypt a push request as the owner of the subscription.

    The coding is read from the Content-Encoding header; for the legacy
    coding the salt and sender key come from the Encryption and Crypto-Key
    headers.

    Raises:
        CryptoError: If the headers or the body do not decrypt
    """
    headers = {k.lower(): v for k, v in request.headers.items()}
    try:
        encoding = ContentEncoding(headers.get("content-encoding", ContentEncoding.AES128GCM.value))
    except ValueError as e:
        raise CryptoError(f"Unsupported content encoding: {e}") from e

    if encoding == ContentEncoding.AES128GCM:
        return decrypt_payload(request.body, recipient_private_key, auth_secret, encoding)

    try:
        salt = b64url_decode(_header_params(headers["encryption"])["salt"])
        sender_public_key = b64url_decode(_header_params(headers["crypto-key"])["dh"])
    except (KeyError, ValueError) as e:
        raise CryptoError(f"Missing legacy encryption header parameter: {e}") from e

    return decrypt_payload(
        request.body,
        recipient_private_key,
        auth_secret,
        encoding,
        salt=salt,
        sender_public_key=sender_public_key,
    )


def _header_params(value: str) -> dict[str, str]:
    params = {}
    for part in value.replace(",", ";").split(";"):
        name, sep, param = part.strip().partition("=")
        if sep:
            params[name.strip()] = param.strip().strip('"')
    return params
