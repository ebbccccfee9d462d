"""Operations that query the instance metadata service."""

from __future__ import annotations

import json

from .encoding import base64_encode
from .http_client import HttpClient, HttpVerb
from .log import LogLevel, client_log
from .telemetry import EventLevel, report
from .types import AttestationError, ErrorCode

IMDS_ENDPOINT = "http://169.254.169.254/metadata"
VCEK_CERT_PATH = "/THIM/amd/certification"


def _as_string(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    raise AttestationError(
        ErrorCode.ERROR_INVALID_JSON_RESPONSE, "Invalid JSON reponse from IMDS"
    )


def get_vcek_cert(http_client: HttpClient | None = None) -> str:
    """Fetch the VCek certificate and chain and return them base64 encoded.

    Raises AttestationError on failure.
    """
    client = http_client if http_client is not None else HttpClient()
    url = IMDS_ENDPOINT + VCEK_CERT_PATH
    try:
        http_response = client.invoke_imds_request(url, HttpVerb.GET)
    except AttestationError as exc:
        client_log(
            LogLevel.ERROR, "Failed to retrieve VCek certificate from IMDS: %s", exc.description
        )
        report(
            "Get VCekCert",
            "Failed to retrive VCek certificate from IMDS",
            EventLevel.IMDS_QUERY_VCEK_CERT,
        )
        raise

    try:
        root = json.loads(http_response)
    except ValueError as exc:
        client_log(LogLevel.ERROR, "Invalid JSON reponse from IMDS")
        raise AttestationError(
            ErrorCode.ERROR_INVALID_JSON_RESPONSE, "Invalid JSON reponse from IMDS"
        ) from exc

    fields = root if isinstance(root, dict) else {}
    cert = _as_string(fields.get("vcekCert"))
    chain = _as_string(fields.get("certificateChain"))
    if not cert or not chain:
        client_log(LogLevel.ERROR, "Empty VCek cert received from THIM")
        raise AttestationError(
            ErrorCode.ERROR_EMPTY_VCEK_CERT, "Empty VCek cert received from THIM"
        )

    client_log(LogLevel.DEBUG, "VCek cert received from IMDS successfully")
    return base64_encode(cert + chain)