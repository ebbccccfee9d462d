"""Checking and renewing the attestation key (AK) certificate held in the TPM."""

from __future__ import annotations

import json
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import NameOID

from .constants import JSON_AK_CERT_PEM, JSON_AK_CERT_QUERY_ID
from .encoding import base64_to_binary, binary_to_base64
from .imds_client import ImdsClient
from .log import LogLevel, client_log
from .telemetry import EventLevel, report
from .types import AttestationError, ErrorCode

AK_CERT_RENEWAL_THRESHOLD_DAYS = -90
QUERY_RENEWED_CERT_AFTER_SECONDS = 60

CERTIFICATE_HEADER = "-----BEGIN CERTIFICATE-----\n"
CERTIFICATE_FOOTER = "\n-----END CERTIFICATE-----"
AK_RENEW_SYNC_API_VERSION = "2023-07-01"
AK_RENEW_ASYNC_API_VERSION = "2021-12-01"
TRUSTED_VM_CERT_ISSUER_NAME_PREFIX = "/CN=MICROSOFT AZURE TRUSTED VM RSA"

_SHORT_NAMES = {
    NameOID.COMMON_NAME: "CN",
    NameOID.COUNTRY_NAME: "C",
    NameOID.ORGANIZATION_NAME: "O",
    NameOID.ORGANIZATIONAL_UNIT_NAME: "OU",
    NameOID.LOCALITY_NAME: "L",
    NameOID.STATE_OR_PROVINCE_NAME: "ST",
    NameOID.EMAIL_ADDRESS: "emailAddress",
    NameOID.SERIAL_NUMBER: "serialNumber",
    NameOID.DOMAIN_COMPONENT: "DC",
}


class AkCertStore(ABC):
    """Access to the AK certificate and public key stored in a TPM.

    Implementations signal TPM stack failures by raising an exception that
    carries an integer ``rc`` attribute holding the TPM response code.
    """

    @abstractmethod
    def get_aik_cert(self) -> bytes:
        """Return the DER encoded AK certificate."""

    @abstractmethod
    def get_aik_pub(self) -> bytes:
        """Return the AK public key."""

    @abstractmethod
    def write_aik_cert(self, cert_der: bytes) -> None:
        """Replace the stored AK certificate with cert_der."""


def remove_cert_header_and_footer(pem_cert: str) -> str:
    """Strip the PEM armour and line breaks, leaving the bare base64 body."""
    if not pem_cert:
        return ""
    cert = pem_cert.replace("\r", "")
    cert = cert.replace(CERTIFICATE_HEADER, "")
    cert = cert.replace(CERTIFICATE_FOOTER, "")
    return cert.replace("\n", "")


def _json_string(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return ""


def parse_and_get_ak_cert(json_response: str) -> str:
    """Return the renewed PEM certificate from a renewal response, or '' if absent."""
    try:
        json_obj = json.loads(json_response)
    except ValueError:
        return ""
    if not isinstance(json_obj, dict):
        return ""

    ak_cert = _json_string(json_obj.get(JSON_AK_CERT_PEM, ""))
    cert_query_id = _json_string(json_obj.get(JSON_AK_CERT_QUERY_ID, ""))

    client_log(LogLevel.INFO, "AK Cert Query guid: %s", cert_query_id)
    client_log(LogLevel.INFO, "Renewed Ak Cert: %s", ak_cert)
    if cert_query_id:
        report("AkRenew", cert_query_id, EventLevel.AK_CERT_QUERY_GUID)
    return ak_cert


def _name_oneline(name: x509.Name) -> str:
    parts = []
    for rdn in name.rdns:
        attrs = "+".join(
            f"{_SHORT_NAMES.get(attr.oid, attr.oid.dotted_string)}={attr.value}" for attr in rdn
        )
        parts.append("/" + attrs)
    return "".join(parts)


def _not_after(cert: x509.Certificate) -> datetime:
    value = getattr(cert, "not_valid_after_utc", None)
    if value is None:
        value = cert.not_valid_after.replace(tzinfo=timezone.utc)
    return value


def _tpm_error(exc: Exception, what: str) -> AttestationError:
    rc = getattr(exc, "rc", None)
    if isinstance(rc, int) and not isinstance(rc, bool):
        client_log(LogLevel.ERROR, "Exception while reading the %s from TPM: %s", what, exc)
        return AttestationError(ErrorCode.ERROR_TPM_OPERATION_FAILURE, str(exc), rc)
    client_log(LogLevel.ERROR, "Unknown Exception while reading the %s from TPM: %s", what, exc)
    return AttestationError(ErrorCode.ERROR_TPM_INTERNAL_FAILURE, str(exc))


class TpmCertOperations:
    """Decides whether the AK certificate needs renewal and renews it."""

    def __init__(
        self,
        tpm: AkCertStore,
        imds: ImdsClient | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._tpm = tpm
        self._imds = imds if imds is not None else ImdsClient()
        self._sleep = sleep

    def read_ak_cert_from_tpm(self) -> str:
        """Return the TPM's AK certificate in PEM form; raise AttestationError on failure."""
        try:
            ak_cert = (
                CERTIFICATE_HEADER
                + binary_to_base64(self._tpm.get_aik_cert())
                + CERTIFICATE_FOOTER
            )
        except Exception as exc:
            error = _tpm_error(exc, "certificate")
            report(
                "AkRenew",
                "Failed to read Ak cert from TPM with error: " + error.description,
                EventLevel.TPM_CERT_OPS,
            )
            raise error from exc

        report("AkRenew", "Successfully fetched the Ak Cert from TPM", EventLevel.TPM_CERT_OPS)
        client_log(LogLevel.INFO, "Successfully fetched the AK cert from TPM")
        return ak_cert

    def _read_aik_pub_from_tpm(self) -> str:
        try:
            aik_pub = self._tpm.get_aik_pub()
        except Exception as exc:
            error = _tpm_error(exc, "Ak Pub")
            client_log(LogLevel.ERROR, "Failed to read Ak pub from Tpm: %s", error.description)
            report(
                "TpmCertOperations",
                "Failed to read Ak Pub from Tpm" + error.description,
                EventLevel.TPM_CERT_OPS,
            )
            raise error from exc
        client_log(LogLevel.INFO, "Successfully fetched Aikpub from Tpm")
        return binary_to_base64(aik_pub)

    def _check_ak_cert_provisioned(self, cert: x509.Certificate) -> None:
        issuer = _name_oneline(cert.issuer)
        client_log(LogLevel.INFO, "Ak Cert issuer name %s", issuer)
        report("AkCertProvisioning", issuer, EventLevel.AK_CERT_GET_ISSUER)

        subject = _name_oneline(cert.subject)
        client_log(LogLevel.INFO, "Ak Cert subject name %s", subject)
        report("AkCertProvisioning", subject, EventLevel.AK_CERT_GET_SUBJECT)

        thumbprint = binary_to_base64(cert.fingerprint(hashes.SHA256()))
        report("AkCertProvisioning", thumbprint, EventLevel.AK_CERT_GET_THUMBPRINT)

        pub_error: AttestationError | None = None
        try:
            ak_pub = self._read_aik_pub_from_tpm()
        except AttestationError as exc:
            pub_error = exc
            ak_pub = ""
            report(
                "AkCertProvisioning",
                "Failed while reading AkPub" + exc.description,
                EventLevel.AK_GET_PUB,
            )
        report("AkCertProvisioning", ak_pub, EventLevel.AK_GET_PUB)

        if TRUSTED_VM_CERT_ISSUER_NAME_PREFIX in issuer:
            raise AttestationError(
                ErrorCode.ERROR_AK_CERT_PROVISIONING_FAILED, "AkCert provisioning failed"
            )
        if pub_error is not None:
            raise pub_error

    def is_ak_cert_renewal_required(self) -> bool:
        """Return whether the AK certificate has expired or expires within 90 days.

        Raises AttestationError on failure.
        """
        try:
            ak_cert = self.read_ak_cert_from_tpm()
            try:
                cert = x509.load_pem_x509_certificate(ak_cert.encode("ascii"))
            except ValueError:
                client_log(LogLevel.ERROR, "Unable to parse AK cert in memory")
                report(
                    "AkRenew",
                    "Unable to parse Ak Cert in memory",
                    EventLevel.AK_RENEW_CERT_PARSING_FAILURE,
                )
                raise AttestationError(
                    ErrorCode.ERROR_AK_CERT_PARSING, "Failed to pass Ak cert in memory"
                ) from None

            self._check_ak_cert_provisioned(cert)

            elapsed = datetime.now(timezone.utc) - _not_after(cert)
            diff_days = int(elapsed / timedelta(days=1))
            client_log(LogLevel.INFO, "Number of days left in AK cert expiry - %d", diff_days)
            report("AkRenew", str(-diff_days), EventLevel.AK_RENEW_CERT_DAYS_TILL_EXPIRY)
            return diff_days >= AK_CERT_RENEWAL_THRESHOLD_DAYS
        except AttestationError:
            raise
        except Exception as exc:
            client_log(
                LogLevel.ERROR,
                "Unexpected error occured in IsAkCertRenewalRequired method %s",
                exc,
            )
            report(
                "AkRenew", "Unexpected Error in renewing AkCert", EventLevel.AK_RENEW_UNEXPECTED_ERROR
            )
            raise AttestationError(ErrorCode.ERROR_AK_CERT_RENEW, str(exc)) from exc

    def renew_and_replace_ak_cert(self) -> None:
        """Renew the AK certificate and write the new one to the TPM.

        Raises AttestationError on failure.
        """
        try:
            self._renew_and_replace()
        except AttestationError:
            raise
        except Exception as exc:
            client_log(
                LogLevel.ERROR, "Unexpected error occured in RenewAndReplaceAkCert method %s", exc
            )
            report(
                "AkRenew",
                "Unexpected Error in RenewAndReplaceAkCert",
                EventLevel.AK_RENEW_UNEXPECTED_ERROR,
            )
            raise AttestationError(
                ErrorCode.ERROR_AK_CERT_RENEW, "Unexpected error in RenewAndReplaceAkCert"
            ) from exc

    def _renew_and_replace(self) -> None:
        vm_id = self._imds.get_vm_id()
        if not vm_id:
            client_log(LogLevel.ERROR, "Failed to get vm id")
            report("AkRenew", "Failed to get vm id", EventLevel.AK_RENEW_EMPTY_VM_ID)
            raise AttestationError(ErrorCode.ERROR_AK_CERT_RENEW, "Failed to get VM id from IMDS")

        request_id = str(uuid.uuid4())
        try:
            ak_cert = self.read_ak_cert_from_tpm()
        except AttestationError:
            client_log(LogLevel.ERROR, "Failed to read AK Cert from TPM")
            raise

        renew_response = self._imds.renew_ak_cert(
            ak_cert, vm_id, request_id, AK_RENEW_SYNC_API_VERSION
        )
        report("AkRenew", renew_response, EventLevel.AK_RENEW_RESPONSE)

        if renew_response:
            report(
                "AkRenew",
                "Successfully retrived AkCert response from Thim",
                EventLevel.AK_RENEW_GET_RESPONSE_SUCCESS,
            )
            renewed_cert = parse_and_get_ak_cert(renew_response)
            if not renewed_cert:
                client_log(LogLevel.ERROR, "Failed to get AkCertPem from response.")
                report(
                    "AkRenew",
                    "Failed to get AkCertPem from response",
                    EventLevel.AK_RENEW_RESPONSE_PARSING_FAILURE,
                )
                raise AttestationError(
                    ErrorCode.ERROR_AK_CERT_RENEW, "Failed to get AkCert Pem from response"
                )
        else:
            client_log(LogLevel.ERROR, "Failed to renew Ak cert using sync api")
            report(
                "AkRenew",
                "Failed to renew Ak Cert using sync api",
                EventLevel.AK_RENEW_EMPTY_CERT_RESPONSE,
            )
            client_log(LogLevel.INFO, "Retrying Ak renew using async api")
            request_id = str(uuid.uuid4())
            renew_response = self._imds.renew_ak_cert(
                ak_cert, vm_id, request_id, AK_RENEW_ASYNC_API_VERSION
            )

            self._sleep(QUERY_RENEWED_CERT_AFTER_SECONDS)
            request_id = str(uuid.uuid4())
            renewed_cert = self._imds.query_ak_cert(renew_response, vm_id, request_id)
            if not renewed_cert:
                client_log(LogLevel.INFO, "Failed to query Ak cert using async api")
                report(
                    "AkRenew",
                    "Failed to query Ak Cert using async api",
                    EventLevel.AK_RENEW_EMPTY_RENEWED_CERT,
                )
                raise AttestationError(
                    ErrorCode.ERROR_AK_CERT_RENEW, "Failed to query Ak cert using async api"
                )

        report("AkRenew", renewed_cert, EventLevel.AK_RENEWED_CERT)

        cert_der = base64_to_binary(remove_cert_header_and_footer(renewed_cert))
        self._tpm.write_aik_cert(cert_der)
        client_log(LogLevel.INFO, "Successfully renewed AK cert")
        report("AkRenew", "Successfully renewed Ak Cert", EventLevel.AK_RENEW_SUCCESS)