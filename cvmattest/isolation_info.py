"""Isolation evidence included in an attestation request."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum

from .constants import (
    JSON_ISOLATION_EVIDENCE_KEY,
    JSON_ISOLATION_EVIDENCE_SNPREPORT,
    JSON_ISOLATION_EVIDENCE_VCEKCERT,
    JSON_ISOLATION_PROOF_KEY,
    JSON_ISOLATION_RUNTIME_DATA_KEY,
    JSON_ISOLATION_TYPE_KEY,
    JSON_ISOLATION_TYPE_SEVSNP,
    JSON_ISOLATION_TYPE_TVM,
)
from .encoding import base64_encode, binary_to_base64, binary_to_base64url


class IsolationType(Enum):
    TRUSTED_LAUNCH = "TrustedLaunch"
    SEV_SNP = "SevSnp"


@dataclass
class IsolationInfo:
    """Isolation type and, for SEV-SNP, its hardware evidence."""

    isolation_type: IsolationType = IsolationType.TRUSTED_LAUNCH
    snp_report: bytes = b""
    runtime_data: bytes = b""
    vcek_cert: str = ""

    def validate(self) -> bool:
        """Return False when SEV-SNP evidence is incomplete."""
        if self.isolation_type is IsolationType.SEV_SNP:
            return bool(self.snp_report and self.vcek_cert and self.runtime_data)
        return True

    def to_json(self) -> dict:
        """Return the JSON object describing the isolation evidence."""
        if self.isolation_type is IsolationType.TRUSTED_LAUNCH:
            return {JSON_ISOLATION_TYPE_KEY: JSON_ISOLATION_TYPE_TVM}

        proof = {
            JSON_ISOLATION_EVIDENCE_SNPREPORT: binary_to_base64url(self.snp_report),
            JSON_ISOLATION_EVIDENCE_VCEKCERT: self.vcek_cert,
        }
        proof_str = json.dumps(proof, indent="\t", separators=(",", " : "), sort_keys=True)
        return {
            JSON_ISOLATION_TYPE_KEY: JSON_ISOLATION_TYPE_SEVSNP,
            JSON_ISOLATION_EVIDENCE_KEY: {
                JSON_ISOLATION_PROOF_KEY: base64_encode(proof_str),
                JSON_ISOLATION_RUNTIME_DATA_KEY: binary_to_base64(self.runtime_data),
            },
        }