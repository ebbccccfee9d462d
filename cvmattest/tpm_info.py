"""TPM evidence included in an attestation request."""

from __future__ import annotations

from dataclasses import dataclass, field

from .constants import (
    JSON_AIK_CERT_KEY,
    JSON_AIK_PUB_KEY,
    JSON_ENC_KEY_CERTIFY_INFO,
    JSON_ENC_KEY_CERTIFY_INFO_SIGNATURE,
    JSON_ENC_PUB_KEY,
    JSON_PCR_DIGEST_KEY,
    JSON_PCR_INDEX_KEY,
    JSON_PCR_QUOTE_KEY,
    JSON_PCR_SET_KEY,
    JSON_PCR_SIGNATURE_KEY,
    JSON_PCRS_KEY,
)
from .encoding import binary_to_base64


@dataclass
class PcrValue:
    """One PCR register and its digest."""

    index: int
    digest: bytes = b""


@dataclass
class PcrQuote:
    """A PCR quote and its signature."""

    quote: bytes = b""
    signature: bytes = b""


@dataclass
class EphemeralKey:
    """Encryption key material certified by the TPM."""

    encryption_key: bytes = b""
    certify_info: bytes = b""
    certify_info_signature: bytes = b""


@dataclass
class TpmInfo:
    """TPM-related evidence for attestation."""

    aik_cert: bytes = b""
    aik_pub: bytes = b""
    pcr_values: list[PcrValue] = field(default_factory=list)
    pcr_quote: PcrQuote = field(default_factory=PcrQuote)
    encryption_key: EphemeralKey = field(default_factory=EphemeralKey)

    def validate(self) -> bool:
        """Return whether every required TPM value is set."""
        return all(
            (
                self.aik_cert,
                self.aik_pub,
                self.pcr_values,
                self.encryption_key.certify_info,
                self.encryption_key.encryption_key,
                self.encryption_key.certify_info_signature,
            )
        )

    def to_json(self) -> dict:
        """Return the JSON object describing this evidence."""
        return {
            JSON_AIK_CERT_KEY: binary_to_base64(self.aik_cert),
            JSON_AIK_PUB_KEY: binary_to_base64(self.aik_pub),
            JSON_PCR_QUOTE_KEY: binary_to_base64(self.pcr_quote.quote),
            JSON_PCR_SIGNATURE_KEY: binary_to_base64(self.pcr_quote.signature),
            JSON_ENC_PUB_KEY: binary_to_base64(self.encryption_key.encryption_key),
            JSON_ENC_KEY_CERTIFY_INFO: binary_to_base64(self.encryption_key.certify_info),
            JSON_ENC_KEY_CERTIFY_INFO_SIGNATURE: binary_to_base64(
                self.encryption_key.certify_info_signature
            ),
            JSON_PCR_SET_KEY: [pcr.index for pcr in self.pcr_values],
            JSON_PCRS_KEY: [
                {
                    JSON_PCR_INDEX_KEY: pcr.index,
                    JSON_PCR_DIGEST_KEY: binary_to_base64(pcr.digest),
                }
                for pcr in self.pcr_values
            ],
        }