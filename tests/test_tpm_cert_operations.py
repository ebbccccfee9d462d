import json
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import NameOID

from cvmattest.encoding import base64_to_binary, binary_to_base64
from cvmattest.telemetry import EventLevel, TelemetryReporting, set_telemetry_reporting
from cvmattest.tpm_cert_operations import (
    AkCertStore,
    TpmCertOperations,
    parse_and_get_ak_cert,
    remove_cert_header_and_footer,
)
from cvmattest.types import AttestationError, ErrorCode


class FakeTss2Error(Exception):
    def __init__(self, message, rc):
        super().__init__(message)
        self.rc = rc


class FakeTpm(AkCertStore):
    def __init__(self, cert_der=b"", aik_pub=b"public-key", cert_error=None, pub_error=None):
        self.cert_der = cert_der
        self.aik_pub = aik_pub
        self.cert_error = cert_error
        self.pub_error = pub_error
        self.written = []

    def get_aik_cert(self):
        if self.cert_error is not None:
            raise self.cert_error
        return self.cert_der

    def get_aik_pub(self):
        if self.pub_error is not None:
            raise self.pub_error
        return self.aik_pub

    def write_aik_cert(self, cert_der):
        self.written.append(cert_der)


class FakeImds:
    def __init__(self, vm_id="vm-0000", renew_responses=(), query_response=""):
        self.vm_id = vm_id
        self.renew_responses = list(renew_responses)
        self.query_response = query_response
        self.renew_calls = []
        self.query_calls = []

    def get_vm_id(self):
        return self.vm_id

    def renew_ak_cert(self, cert, vm_id, request_id, api_version):
        self.renew_calls.append((cert, vm_id, request_id, api_version))
        return self.renew_responses.pop(0) if self.renew_responses else ""

    def query_ak_cert(self, cert_query_guid, vm_id, request_id):
        self.query_calls.append((cert_query_guid, vm_id, request_id))
        return self.query_response


class Recorder(TelemetryReporting):
    def __init__(self):
        self.events = []

    def update_event(self, task_type, message, event_level):
        self.events.append((task_type, message, event_level))

    def write_events(self):
        return True


@pytest.fixture
def recorder():
    rec = Recorder()
    set_telemetry_reporting(rec)
    yield rec
    set_telemetry_reporting(None)


@pytest.fixture(scope="module")
def key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def make_cert(key, after_days, issuer_cn="Test AK Issuer"):
    now = datetime.now(timezone.utc)
    not_after = now + timedelta(days=after_days)
    not_before = min(now, not_after) - timedelta(days=1)
    issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer_cn)])
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "test-vm")])
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(1000)
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(Encoding.DER), cert.public_bytes(Encoding.PEM).decode("ascii")


def test_remove_header_and_footer_empty():
    assert remove_cert_header_and_footer("") == ""


def test_remove_header_and_footer_strips_crlf_and_armour():
    pem = "-----BEGIN CERTIFICATE-----\r\nQUJD\r\nREVG\r\n-----END CERTIFICATE-----"
    assert remove_cert_header_and_footer(pem) == "QUJDREVG"


def test_parse_and_get_ak_cert_returns_pem(recorder):
    response = json.dumps({"AkCertPem": "PEMDATA", "CertQueryId": "guid-1"})
    assert parse_and_get_ak_cert(response) == "PEMDATA"
    assert ("AkRenew", "guid-1", EventLevel.AK_CERT_QUERY_GUID) in recorder.events


def test_parse_and_get_ak_cert_invalid_json():
    assert parse_and_get_ak_cert("not json") == ""


def test_parse_and_get_ak_cert_missing_key():
    assert parse_and_get_ak_cert(json.dumps({"CertQueryId": "guid-1"})) == ""


def test_read_ak_cert_round_trip(key):
    der, _ = make_cert(key, 200)
    ops = TpmCertOperations(FakeTpm(cert_der=der), FakeImds(), sleep=lambda s: None)
    pem = ops.read_ak_cert_from_tpm()
    assert pem.startswith("-----BEGIN CERTIFICATE-----\n")
    assert pem.endswith("\n-----END CERTIFICATE-----")
    assert base64_to_binary(remove_cert_header_and_footer(pem)) == der


def test_read_ak_cert_tss_error():
    tpm = FakeTpm(cert_error=FakeTss2Error("nv read failed", 0x18B))
    ops = TpmCertOperations(tpm, FakeImds(), sleep=lambda s: None)
    with pytest.raises(AttestationError) as info:
        ops.read_ak_cert_from_tpm()
    assert info.value.code is ErrorCode.ERROR_TPM_OPERATION_FAILURE
    assert info.value.tpm_error_code == 0x18B
    assert info.value.description == "nv read failed"


def test_read_ak_cert_generic_error():
    tpm = FakeTpm(cert_error=RuntimeError("device missing"))
    ops = TpmCertOperations(tpm, FakeImds(), sleep=lambda s: None)
    with pytest.raises(AttestationError) as info:
        ops.read_ak_cert_from_tpm()
    assert info.value.code is ErrorCode.ERROR_TPM_INTERNAL_FAILURE


@pytest.mark.parametrize("after_days, expected", [(30, True), (-10, True), (200, False)])
def test_is_renewal_required(key, after_days, expected):
    der, _ = make_cert(key, after_days)
    ops = TpmCertOperations(FakeTpm(cert_der=der), FakeImds(), sleep=lambda s: None)
    assert ops.is_ak_cert_renewal_required() is expected


def test_days_till_expiry_reported(key, recorder):
    der, _ = make_cert(key, 30)
    ops = TpmCertOperations(FakeTpm(cert_der=der), FakeImds(), sleep=lambda s: None)
    ops.is_ak_cert_renewal_required()
    days = [int(m) for _, m, lvl in recorder.events if lvl is EventLevel.AK_RENEW_CERT_DAYS_TILL_EXPIRY]
    assert len(days) == 1
    assert days[0] in (29, 30)


def test_issuer_and_thumbprint_reported(key, recorder):
    der, _ = make_cert(key, 200)
    ops = TpmCertOperations(FakeTpm(cert_der=der), FakeImds(), sleep=lambda s: None)
    ops.is_ak_cert_renewal_required()
    issuers = [m for _, m, lvl in recorder.events if lvl is EventLevel.AK_CERT_GET_ISSUER]
    assert issuers == ["/CN=Test AK Issuer"]
    cert = x509.load_der_x509_certificate(der)
    thumbs = [m for _, m, lvl in recorder.events if lvl is EventLevel.AK_CERT_GET_THUMBPRINT]
    assert thumbs == [binary_to_base64(cert.fingerprint(hashes.SHA256()))]


def test_trusted_vm_issuer_fails_provisioning(key):
    der, _ = make_cert(key, 200, issuer_cn="MICROSOFT AZURE TRUSTED VM RSA CA 2099")
    ops = TpmCertOperations(FakeTpm(cert_der=der), FakeImds(), sleep=lambda s: None)
    with pytest.raises(AttestationError) as info:
        ops.is_ak_cert_renewal_required()
    assert info.value.code is ErrorCode.ERROR_AK_CERT_PROVISIONING_FAILED


def test_unparseable_cert():
    ops = TpmCertOperations(FakeTpm(cert_der=b"garbage"), FakeImds(), sleep=lambda s: None)
    with pytest.raises(AttestationError) as info:
        ops.is_ak_cert_renewal_required()
    assert info.value.code is ErrorCode.ERROR_AK_CERT_PARSING


def test_aik_pub_failure_propagates(key):
    der, _ = make_cert(key, 200)
    tpm = FakeTpm(cert_der=der, pub_error=FakeTss2Error("pub read failed", 7))
    ops = TpmCertOperations(tpm, FakeImds(), sleep=lambda s: None)
    with pytest.raises(AttestationError) as info:
        ops.is_ak_cert_renewal_required()
    assert info.value.code is ErrorCode.ERROR_TPM_OPERATION_FAILURE
    assert info.value.tpm_error_code == 7


def test_renew_sync_path_writes_cert(key):
    old_der, _ = make_cert(key, 10)
    new_der, new_pem = make_cert(key, 365)
    imds = FakeImds(renew_responses=[json.dumps({"AkCertPem": new_pem})])
    tpm = FakeTpm(cert_der=old_der)
    sleeps = []
    TpmCertOperations(tpm, imds, sleep=sleeps.append).renew_and_replace_ak_cert()
    assert tpm.written == [new_der]
    assert sleeps == []
    assert len(imds.renew_calls) == 1
    cert, vm_id, _, api_version = imds.renew_calls[0]
    assert vm_id == "vm-0000"
    assert api_version == "2023-07-01"
    assert base64_to_binary(remove_cert_header_and_footer(cert)) == old_der


def test_renew_async_fallback(key):
    old_der, _ = make_cert(key, 10)
    new_der, new_pem = make_cert(key, 365)
    imds = FakeImds(renew_responses=["", "query-guid"], query_response=new_pem)
    tpm = FakeTpm(cert_der=old_der)
    sleeps = []
    TpmCertOperations(tpm, imds, sleep=sleeps.append).renew_and_replace_ak_cert()
    assert sleeps == [60]
    assert [call[3] for call in imds.renew_calls] == ["2023-07-01", "2021-12-01"]
    assert imds.query_calls[0][0] == "query-guid"
    assert tpm.written == [new_der]


def test_renew_async_query_empty(key):
    old_der, _ = make_cert(key, 10)
    imds = FakeImds(renew_responses=["", "query-guid"], query_response="")
    tpm = FakeTpm(cert_der=old_der)
    with pytest.raises(AttestationError) as info:
        TpmCertOperations(tpm, imds, sleep=lambda s: None).renew_and_replace_ak_cert()
    assert info.value.code is ErrorCode.ERROR_AK_CERT_RENEW
    assert tpm.written == []


def test_renew_empty_vm_id(key):
    old_der, _ = make_cert(key, 10)
    imds = FakeImds(vm_id="")
    with pytest.raises(AttestationError) as info:
        TpmCertOperations(FakeTpm(cert_der=old_der), imds, sleep=lambda s: None).renew_and_replace_ak_cert()
    assert info.value.code is ErrorCode.ERROR_AK_CERT_RENEW
    assert imds.renew_calls == []


def test_renew_response_without_pem(key):
    old_der, _ = make_cert(key, 10)
    imds = FakeImds(renew_responses=[json.dumps({"CertQueryId": "guid-2"})])
    tpm = FakeTpm(cert_der=old_der)
    with pytest.raises(AttestationError) as info:
        TpmCertOperations(tpm, imds, sleep=lambda s: None).renew_and_replace_ak_cert()
    assert info.value.code is ErrorCode.ERROR_AK_CERT_RENEW
    assert tpm.written == []


def test_renew_tpm_read_failure_keeps_code():
    tpm = FakeTpm(cert_error=FakeTss2Error("nv read failed", 3))
    with pytest.raises(AttestationError) as info:
        TpmCertOperations(tpm, FakeImds(), sleep=lambda s: None).renew_and_replace_ak_cert()
    assert info.value.code is ErrorCode.ERROR_TPM_OPERATION_FAILURE


def test_renew_success_reported(key, recorder):
    old_der, _ = make_cert(key, 10)
    _, new_pem = make_cert(key, 365)
    imds = FakeImds(renew_responses=[json.dumps({"AkCertPem": new_pem})])
    TpmCertOperations(FakeTpm(cert_der=old_der), imds, sleep=lambda s: None).renew_and_replace_ak_cert()
    levels = [lvl for _, _, lvl in recorder.events]
    assert EventLevel.AK_RENEW_SUCCESS in levels
    assert levels.index(EventLevel.AK_RENEWED_CERT) < levels.index(EventLevel.AK_RENEW_SUCCESS)