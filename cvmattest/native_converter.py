"""Mapping of encryption parameter strings to their enum values."""

from __future__ import annotations

from enum import Enum

from .constants import (
    JSON_RESPONSE_BLOCK_MODE_CHAINING_GCM_VALUE,
    JSON_RESPONSE_BLOCK_PADDING_PKCS7_VALUE,
    JSON_RESPONSE_CIPHER_AES_VALUE,
)
from .log import LogLevel, client_log


class BlockCipherMode(Enum):
    CHAINING_MODE_GCM = JSON_RESPONSE_BLOCK_MODE_CHAINING_GCM_VALUE
    INVALID = "Invalid"


class BlockCipherPadding(Enum):
    PKCS7 = JSON_RESPONSE_BLOCK_PADDING_PKCS7_VALUE
    INVALID = "Invalid"


class CipherAlgorithm(Enum):
    AES = JSON_RESPONSE_CIPHER_AES_VALUE
    INVALID = "Invalid"


def to_block_cipher_mode(mode_str: str) -> BlockCipherMode:
    """Return the block mode named by mode_str; raise ValueError if unsupported."""
    if mode_str == JSON_RESPONSE_BLOCK_MODE_CHAINING_GCM_VALUE:
        return BlockCipherMode.CHAINING_MODE_GCM
    client_log(LogLevel.ERROR, "Invalid Block mode")
    raise ValueError(f"Invalid block mode: {mode_str!r}")


def to_block_cipher_padding(padding_str: str) -> BlockCipherPadding:
    """Return the padding named by padding_str; raise ValueError if unsupported."""
    if padding_str == JSON_RESPONSE_BLOCK_PADDING_PKCS7_VALUE:
        return BlockCipherPadding.PKCS7
    client_log(LogLevel.ERROR, "Invalid Block padding")
    raise ValueError(f"Invalid block padding: {padding_str!r}")


def to_cipher_algorithm(cipher_str: str) -> CipherAlgorithm:
    """Return the cipher named by cipher_str; raise ValueError if unsupported."""
    if cipher_str == JSON_RESPONSE_CIPHER_AES_VALUE:
        return CipherAlgorithm.AES
    client_log(LogLevel.ERROR, "Invalid Cipher Algorithm")
    raise ValueError(f"Invalid cipher algorithm: {cipher_str!r}")