"""Core types shared by the attestation client library."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum

CLIENT_PARAMS_VERSION = 1


class ErrorCode(IntEnum):
    """Error codes reported by the attestation client library."""

    SUCCESS = 0
    ERROR_CURL_INITIALIZATION = -1
    ERROR_RESPONSE_PARSING = -2
    ERROR_MSI_TOKEN_NOT_FOUND = -3
    ERROR_HTTP_REQUEST_EXCEEDED_RETRIES = -4
    ERROR_HTTP_REQUEST_FAILED = -5
    ERROR_ATTESTATION_FAILED = -6
    ERROR_SENDING_CURL_REQUEST_FAILED = -7
    ERROR_INVALID_INPUT_PARAMETER = -8
    ERROR_ATTESTATION_PARAMETERS_VALIDATION_FAILED = -9
    ERROR_FAILED_MEMORY_ALLOCATION = -10
    ERROR_FAILED_TO_GET_OS_INFO = -11
    ERROR_TPM_INTERNAL_FAILURE = -12
    ERROR_TPM_OPERATION_FAILURE = -13
    ERROR_JWT_DECRYPTION_FAILED = -14
    ERROR_JWT_DECRYPTION_TPM_ERROR = -15
    ERROR_INVALID_JSON_RESPONSE = -16
    ERROR_EMPTY_VCEK_CERT = -17
    ERROR_EMPTY_RESPONSE = -18
    ERROR_EMPTY_REQUEST_BODY = -19
    ERROR_HCL_REPORT_PARSING_FAILURE = -20
    ERROR_HCL_REPORT_EMPTY = -21
    ERROR_EXTRACTING_JWK_INFO = -22
    ERROR_CONVERTING_JWK_TO_RSA_PUB = -23
    ERROR_EVP_PKEY_ENCRYPT_INIT_FAILED = -24
    ERROR_EVP_PKEY_ENCRYPT_FAILED = -25
    ERROR_DATA_DECRYPTION_TPM_ERROR = -26
    ERROR_PARSING_DNS_INFO = -27
    ERROR_PARSING_ATTESTATION_RESPONSE = -28
    ERROR_AK_CERT_PROVISIONING_FAILED = -29
    ERROR_EMPTY_TD_QUOTE = -30
    ERROR_AK_CERT_PARSING = -31
    ERROR_AK_CERT_RENEW = -32


class AttestationError(Exception):
    """Raised when an attestation operation fails."""

    def __init__(self, code: ErrorCode, description: str = "", tpm_error_code: int = 0):
        super().__init__(f"{code.name}: {description}" if description else code.name)
        self.code = code
        self.description = description
        self.tpm_error_code = tpm_error_code


class OsType(Enum):
    LINUX = "linux"
    WINDOWS = "windows"
    INVALID = "invalid"


class RsaScheme(IntEnum):
    """RSA encryption schemes, using the TPM 2.0 algorithm identifiers."""

    RSA_NULL = 0x0010
    RSA_ES = 0x0015
    RSA_OAEP = 0x0017


class RsaHashAlg(IntEnum):
    """Hash algorithms for RSA operations, using the TPM 2.0 algorithm identifiers."""

    RSA_SHA1 = 0x0004
    RSA_SHA256 = 0x000B
    RSA_SHA384 = 0x000C
    RSA_SHA512 = 0x000D


class EncryptionType(Enum):
    NONE = "none"


@dataclass
class OsInfo:
    """Operating system information sent with an attestation request."""

    type: OsType = OsType.INVALID
    distro_name: str = ""
    build: str = ""
    distro_version_major: int = 0
    distro_version_minor: int = 0


@dataclass(frozen=True)
class ClientParameters:
    """Parameters supplied by the caller for an attestation request."""

    version: int = CLIENT_PARAMS_VERSION
    attestation_endpoint_url: str | None = None
    client_payload: str | None = None