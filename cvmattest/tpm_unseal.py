"""Extraction and decryption of the encrypted token returned by the attestation service."""

from __future__ import annotations

from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .constants import (
    JSON_RESPONSE_AUTHENTICATION_DATA_KEY,
    JSON_RESPONSE_BLOCK_KEY_SIZE_KEY,
    JSON_RESPONSE_BLOCK_MODE_KEY,
    JSON_RESPONSE_BLOCK_PADDING_KEY,
    JSON_RESPONSE_CIPHER_KEY,
    JSON_RESPONSE_ENC_INNER_KEY_KEY,
    JSON_RESPONSE_EXCRYPTION_PARAMETERS_KEY,
    JSON_RESPONSE_IV_KEY,
    JSON_RESPONSE_JWT_KEY,
)
from .encoding import base64_to_binary
from .log import LogLevel, client_log
from .native_converter import (
    BlockCipherMode,
    BlockCipherPadding,
    CipherAlgorithm,
    to_block_cipher_mode,
    to_block_cipher_padding,
    to_cipher_algorithm,
)

_AUTH_DATA = b"Transport Key"
_AES_GCM_KEY_SIZES = (128 // 8, 192 // 8, 256 // 8)


@dataclass
class EncryptionParameters:
    """Parameters needed to decrypt the encrypted token."""

    block_mode: BlockCipherMode = BlockCipherMode.INVALID
    block_padding: BlockCipherPadding = BlockCipherPadding.INVALID
    cipher_alg: CipherAlgorithm = CipherAlgorithm.INVALID
    key_size: int = 0
    iv: bytes = b""
    authentication_data: bytes = b""


def _as_string(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    raise ValueError("Value is not convertible to a string")


def _as_int(value) -> int:
    if value is None:
        return 0
    if isinstance(value, (bool, int)):
        return int(value)
    if isinstance(value, float):
        return int(value)
    raise ValueError("Value is not convertible to an integer")


def _fail(message: str, log_message: str | None = None) -> ValueError:
    client_log(LogLevel.ERROR, log_message if log_message is not None else message)
    return ValueError(message)


def get_encryption_parameters(json_obj: dict) -> EncryptionParameters:
    """Extract the encryption parameters from a service response.

    Raises ValueError describing what is missing or unsupported.
    """
    params_obj = json_obj.get(JSON_RESPONSE_EXCRYPTION_PARAMETERS_KEY)
    if not isinstance(params_obj, dict):
        raise _fail(
            "Failed to get encryption parameters from response.",
            "Encryption parameters not found in response",
        )

    block_mode_str = _as_string(params_obj.get(JSON_RESPONSE_BLOCK_MODE_KEY, ""))
    if not block_mode_str:
        raise _fail(
            "Failed to get block mode from encryption parameters",
            "Block mode not found encryption parameters",
        )
    try:
        block_mode = to_block_cipher_mode(block_mode_str)
    except ValueError:
        raise _fail(
            f"Unsupported block mode:{block_mode_str}", "Unsupported block mode"
        ) from None

    padding_str = _as_string(params_obj.get(JSON_RESPONSE_BLOCK_PADDING_KEY, ""))
    if not padding_str:
        raise _fail(
            "Failed to get block padding from encryption parameters",
            "Block padding not found encryption parameters",
        )
    try:
        block_padding = to_block_cipher_padding(padding_str)
    except ValueError:
        raise _fail(
            f"Unsupported block padding:{padding_str}", "Unsupported block padding"
        ) from None

    cipher_str = _as_string(params_obj.get(JSON_RESPONSE_CIPHER_KEY, ""))
    if not cipher_str:
        raise _fail(
            "Failed to get cipher algorithm from encryption parameters",
            "Cipher algorithm not found encryption parameters",
        )
    try:
        cipher = to_cipher_algorithm(cipher_str)
    except ValueError:
        raise _fail(
            f"Unsupported cipher algorithm:{cipher_str}", "Unsupported cipher algorithm"
        ) from None

    key_bits = _as_int(params_obj.get(JSON_RESPONSE_BLOCK_KEY_SIZE_KEY, 0))
    if key_bits == 0:
        raise _fail("Failed to get key bits from encryption parameters")

    iv_str = _as_string(params_obj.get(JSON_RESPONSE_IV_KEY, ""))
    if not iv_str:
        raise _fail("Failed to get iv from encryption parameters")

    auth_str = _as_string(json_obj.get(JSON_RESPONSE_AUTHENTICATION_DATA_KEY, ""))
    if not auth_str:
        raise _fail("Failed to get authentication data response")

    return EncryptionParameters(
        block_mode=block_mode,
        block_padding=block_padding,
        cipher_alg=cipher,
        key_size=key_bits,
        iv=base64_to_binary(iv_str),
        authentication_data=base64_to_binary(auth_str),
    )


def get_encrypted_jwt(json_obj: dict) -> bytes:
    """Return the encrypted token carried in a service response."""
    jwt_str = _as_string(json_obj.get(JSON_RESPONSE_JWT_KEY, ""))
    if not jwt_str:
        raise _fail("Failed to get jwt from response.")
    return base64_to_binary(jwt_str)


def get_encrypted_inner_key(json_obj: dict) -> bytes:
    """Return the encrypted symmetric inner key carried in a service response."""
    key_str = _as_string(json_obj.get(JSON_RESPONSE_ENC_INNER_KEY_KEY, ""))
    if not key_str:
        raise _fail("Failed to get encrypted inner key from response.")
    return base64_to_binary(key_str)


def decrypt_jwt(
    encryption_params: EncryptionParameters, decryption_key: bytes, jwt_encrypted: bytes
) -> str:
    """Decrypt the token with AES-GCM and return it as text.

    Raises ValueError if the parameters are unsupported or authentication fails.
    """
    if encryption_params.block_mode is not BlockCipherMode.CHAINING_MODE_GCM:
        raise _fail("Error: Unsupported block mode", "Unsupported block mode")
    if encryption_params.block_padding is not BlockCipherPadding.PKCS7:
        raise _fail("Error: Unsupported block padding", "Unsupported block padding")
    if encryption_params.cipher_alg is not CipherAlgorithm.AES:
        raise _fail("Error: Unsupported decryption algorithm", "Unsupported decryption algorithm")

    key = bytes(decryption_key)
    if len(key) not in _AES_GCM_KEY_SIZES:
        raise _fail("Openssl Error: Failed to get decryption algorithm")

    try:
        decryptor = Cipher(
            algorithms.AES(key),
            modes.GCM(
                bytes(encryption_params.iv),
                bytes(encryption_params.authentication_data),
                min_tag_length=4,
            ),
        ).decryptor()
        decryptor.authenticate_additional_data(_AUTH_DATA)
        plain_text = decryptor.update(bytes(jwt_encrypted)) + decryptor.finalize()
    except InvalidTag:
        raise _fail("Openssl Error:authentication tag mismatch") from None
    except ValueError as exc:
        raise _fail(f"Openssl Error:{exc}") from None

    return plain_text.decode("utf-8", errors="surrogateescape")