"""Base64 helpers for binary attestation data."""

from __future__ import annotations

import base64


def binary_to_base64(data: bytes) -> str:
    """Encode bytes as standard padded base64."""
    return base64.b64encode(bytes(data)).decode("ascii")


def binary_to_base64url(data: bytes) -> str:
    """Encode bytes as unpadded URL-safe base64."""
    return base64.urlsafe_b64encode(bytes(data)).decode("ascii").rstrip("=")


def base64_to_binary(text: str) -> bytes:
    """Decode standard or URL-safe base64, with or without padding.

    Raises ValueError on malformed input.
    """
    cleaned = text.strip().replace("-", "+").replace("_", "/")
    cleaned += "=" * (-len(cleaned) % 4)
    return base64.b64decode(cleaned, validate=True)


def base64_encode(text: str) -> str:
    """Encode the UTF-8 bytes of a string as standard base64."""
    return binary_to_base64(text.encode("utf-8"))