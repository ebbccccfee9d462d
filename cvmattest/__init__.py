"""Client-side helpers for confidential VM attestation: metadata service requests, evidence encoding, token decryption and AK certificate renewal."""

__version__ = "0.1.0"

__all__ = [
    "constants",
    "encoding",
    "http_client",
    "imds_client",
    "imds_operations",
    "isolation_info",
    "log",
    "native_converter",
    "telemetry",
    "tpm_cert_operations",
    "tpm_info",
    "tpm_unseal",
    "types",
]