# cvmattest

Client-side building blocks for attesting a confidential virtual machine.

## What is in the package

- **Metadata service requests**
  - `cvmattest.http_client.HttpClient.invoke_imds_request` sends a GET or POST
    with the `Metadata: true` header and a 300 second timeout. It retries on
    404, 429 and 5xx responses, waiting 30, 60 and then 120 seconds. It returns
    the body of a 200 response. Any failure raises
    `cvmattest.types.AttestationError`; an empty 200 body is a failure too.
  - `cvmattest.imds_client.ImdsClient` uses the same retry policy but returns
    an empty string on any failure. It offers `get_vm_id`, `renew_ak_cert`,
    `query_ak_cert` and `invoke_http_request`. The URL builders are
    `vm_id_query_endpoint`, `thim_ak_renew_endpoint` and
    `thim_query_ak_endpoint`, and `url_encode` percent-encodes a request body.
  - Both clients accept an optional `requests.Session` and a `sleep` callable,
    so you can replace the transport and the backoff, for example in tests.
- **VCEK certificates**
  - `cvmattest.imds_operations.get_vcek_cert` fetches the SEV-SNP VCEK
    certificate and its chain.
  - It returns the two concatenated and base64 encoded.
- **Evidence encoding**
  - `cvmattest.tpm_info.TpmInfo` holds TPM evidence, built with `PcrValue`,
    `PcrQuote` and `EphemeralKey`.
  - `cvmattest.isolation_info.IsolationInfo` holds isolation evidence, with
    `IsolationType.TRUSTED_LAUNCH` or `IsolationType.SEV_SNP`.
  - Both have `validate()` and `to_json()`. `to_json()` returns the
    dictionary to send to the attestation service.
- **Decrypting the service response** (`cvmattest.tpm_unseal`)
  - `get_encryption_parameters`, `get_encrypted_jwt` and
    `get_encrypted_inner_key` extract the relevant fields from a parsed
    response.
  - `decrypt_jwt` decrypts the token with AES-GCM (128, 192 or 256 bit keys).
  - These functions raise `ValueError` when a field is missing or
    unsupported, or when authentication fails.
  - `cvmattest.native_converter` maps parameter strings such as
    `"ChainingModeGCM"`, `"PKCS7"` and `"AES"` to their enums.
- **AK certificate renewal**
  - `cvmattest.tpm_cert_operations.TpmCertOperations` reads the AK
    certificate through an `AkCertStore` that you provide.
    `is_ak_cert_renewal_required()` returns true when the certificate has
    expired or expires within 90 days. It raises `AttestationError` when the
    certificate was issued by the Trusted VM self-provisioning issuer.
  - `renew_and_replace_ak_cert()` first asks the renewal service for a
    certificate synchronously. If that fails, it makes an asynchronous
    request, waits 60 seconds and queries for the result. It then writes the
    new certificate back through `AkCertStore.write_aik_cert`.
  - `remove_cert_header_and_footer` and `parse_and_get_ak_cert` are available
    on their own.

Error codes are the members of `cvmattest.types.ErrorCode`. JSON field names
are defined in `cvmattest.constants`.

## What it does not do

- The package does not talk to a TPM. Reading and writing the AK certificate
  goes through your own `AkCertStore` implementation.
- The inner key that `decrypt_jwt` needs is not recovered by the package. You
  must unwrap the encrypted inner key with the TPM yourself.
- It does not put together or send a complete attestation request. There is
  no command-line program.

## Installation

```
pip install cvmattest
```

## Examples

Fetching the VCEK chain:

```python
from cvmattest.http_client import HttpClient
from cvmattest.imds_operations import get_vcek_cert
from cvmattest.types import AttestationError

try:
    vcek_chain_b64 = get_vcek_cert(HttpClient())
except AttestationError as exc:
    print(exc.code.name, exc.description)
```

Decrypting the token once the inner key has been unwrapped:

```python
import json

from cvmattest.tpm_unseal import decrypt_jwt, get_encrypted_jwt, get_encryption_parameters

response = json.loads(response_text)
params = get_encryption_parameters(response)
jwt = decrypt_jwt(params, inner_key, get_encrypted_jwt(response))
```

## Logging and telemetry

Both are optional and silent by default.

- **Logging**: subclass `cvmattest.log.AttestationLogger` and install it with
  `cvmattest.log.set_logger`. Only the first logger you install takes effect.
- **Telemetry**: subclass `cvmattest.telemetry.TelemetryReporting` and
  install it with `cvmattest.telemetry.set_telemetry_reporting`.

## Running the tests

```
pip install -e ".[test]"
pytest
```