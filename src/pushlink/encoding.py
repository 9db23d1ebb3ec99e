"""Base64 helpers used across the wire formats."""

import base64
import binascii


def b64url_encode(data: bytes) -> str:
    """Encode bytes as unpadded URL-safe base64."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(text: str) -> bytes:
    """
    Decode URL-safe base64, with or without padding.

    Standard alphabet input is accepted too, since browsers hand out
    subscription keys in either form.

    Raises:
        ValueError: If the input is not valid base64
    """
    text = text.strip().replace("+", "-").replace("/", "_")
    padding = 4 - len(text) % 4
    if padding != 4:
        text += "=" * padding
    try:
        return base64.urlsafe_b64decode(text.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"Invalid base64url data: {e}") from e


def b64_encode(data: bytes) -> str:
    """Encode bytes as padded standard base64."""
    return base64.b64encode(data).decode("ascii")


def b64_decode(text: str) -> bytes:
    """
    Decode padded standard base64.

    Raises:
        ValueError: If the input is not valid base64
    """
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"Invalid base64 data: {e}") from e
