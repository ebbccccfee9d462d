"""Client for the metadata service endpoints used to renew the AK certificate."""

from __future__ import annotations

import time
from typing import Callable
from urllib.parse import quote

import requests

from .http_client import (
    BACKOFF_BASE_SECONDS,
    HTTP_STATUS_OK,
    MAX_RETRIES,
    REQUEST_TIMEOUT_SECONDS,
    HttpVerb,
)
from .log import LogLevel, client_log
from .telemetry import EventLevel, report

IMDS_ENDPOINT = "http://169.254.169.254/metadata"
API_VERSION_PARAM = "api-version="
VM_ID_PARAM = "vmId="
REQUEST_ID_PARAM = "requestId="
CERT_GUID_PARAM = "guid="

AK_RENEW_PATH = "/THIM/tvm/certificate/renew"
AK_QUERY_CERT_PATH = "/THIM/tvm/certificate/query"
AK_QUERY_API_VERSION = "2021-12-01"
VM_ID_QUERY_PATH = "/instance/compute/vmId"
VM_ID_API_VERSION = "2019-03-11"
VM_ID_FORMAT = "format=text"

_RETRYABLE = (404, 429)


def vm_id_query_endpoint() -> str:
    """Return the URL that yields the VM id as plain text."""
    url = (
        f"{IMDS_ENDPOINT}{VM_ID_QUERY_PATH}?{API_VERSION_PARAM}{VM_ID_API_VERSION}"
        f"&{VM_ID_FORMAT}"
    )
    client_log(LogLevel.INFO, "IMDS VM ID query url: %s", url)
    return url


def thim_ak_renew_endpoint(vm_id: str, request_id: str, api_version: str) -> str:
    """Return the URL of the AK certificate renewal request."""
    url = (
        f"{IMDS_ENDPOINT}{AK_RENEW_PATH}?{API_VERSION_PARAM}{api_version}"
        f"&{VM_ID_PARAM}{vm_id}&{REQUEST_ID_PARAM}{request_id}"
    )
    client_log(LogLevel.INFO, "AK renew url: %s", url)
    report("AKRenew Url", url, EventLevel.IMDS_RENEW_AK_URL)
    return url


def thim_query_ak_endpoint(vm_id: str, request_id: str, cert_query_guid: str) -> str:
    """Return the URL that fetches a renewed AK certificate."""
    url = (
        f"{IMDS_ENDPOINT}{AK_QUERY_CERT_PATH}?{API_VERSION_PARAM}{AK_QUERY_API_VERSION}"
        f"&{VM_ID_PARAM}{vm_id}&{REQUEST_ID_PARAM}{request_id}"
        f"&{CERT_GUID_PARAM}{cert_query_guid}"
    )
    client_log(LogLevel.INFO, "AK query url: %s", url)
    return url


def url_encode(data: str) -> str:
    """Percent-encode every byte except unreserved URL characters."""
    return quote(data, safe="")


def _is_retryable(status: int) -> bool:
    return status in _RETRYABLE or status >= 500


class ImdsClient:
    """Talks to the metadata service; failures yield an empty string."""

    def __init__(
        self,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session = session if session is not None else requests.Session()
        self._sleep = sleep

    def get_vm_id(self) -> str:
        """Return the VM id, or an empty string on failure."""
        return self.invoke_http_request(vm_id_query_endpoint(), HttpVerb.GET)

    def renew_ak_cert(self, cert: str, vm_id: str, request_id: str, api_version: str) -> str:
        """Send the old AK certificate for renewal and return the service's response."""
        if not cert or not vm_id or not request_id:
            client_log(LogLevel.ERROR, "Invalid input parameter")
            report("AkRenew", "Invalid input parameter", EventLevel.IMDS_RENEW_AK)
            return ""

        url = thim_ak_renew_endpoint(vm_id, request_id, api_version)
        encoded_cert = url_encode(cert)
        client_log(LogLevel.INFO, "IMDS Ak renew request body: %s", encoded_cert)
        report("AkRenew", encoded_cert, EventLevel.IMDS_AKRENEW_REQUEST_BODY)
        return self.invoke_http_request(url, HttpVerb.POST, encoded_cert)

    def query_ak_cert(self, cert_query_guid: str, vm_id: str, request_id: str) -> str:
        """Fetch the renewed AK certificate as PEM, or an empty string on failure."""
        if not cert_query_guid or not vm_id or not request_id:
            client_log(LogLevel.ERROR, "Invalid input parameter")
            report("AkRenew", "Invalid input parameter", EventLevel.IMDS_QUERY_AK)
            return ""

        url = thim_query_ak_endpoint(vm_id, request_id, cert_query_guid)
        return self.invoke_http_request(url, HttpVerb.GET)

    def invoke_http_request(
        self, url: str, http_verb: HttpVerb = HttpVerb.GET, request_body: str = ""
    ) -> str:
        """Perform the request, retrying with backoff; return the body or ''."""
        if not url:
            client_log(LogLevel.ERROR, "The URL can not be empty")
            return ""

        data = None
        if http_verb is HttpVerb.POST:
            if not request_body:
                client_log(LogLevel.ERROR, "Request body missing for POST request")
                return ""
            data = request_body.encode("utf-8")

        headers = {"Metadata": "true"}
        retries = 0
        while True:
            try:
                response = self._session.request(
                    http_verb.value,
                    url,
                    headers=headers,
                    data=data,
                    timeout=REQUEST_TIMEOUT_SECONDS,
                )
            except requests.RequestException as exc:
                client_log(LogLevel.ERROR, "HTTP request failed:%s", exc)
                return ""

            status = response.status_code
            body = response.content.decode("utf-8", errors="replace")

            if status == HTTP_STATUS_OK:
                if not body:
                    client_log(LogLevel.ERROR, "HTTP response found empty")
                else:
                    client_log(LogLevel.INFO, "HTTP response retrieved: %s", body)
                return body

            if _is_retryable(status):
                if retries == MAX_RETRIES:
                    client_log(LogLevel.ERROR, "HTTP request failed. Maximum retries exceeded")
                    return ""
                client_log(
                    LogLevel.ERROR,
                    "HTTP request failed with response code:%d description:%s",
                    status,
                    body,
                )
                client_log(LogLevel.INFO, "Retrying HTTP request:%d", retries)
                self._sleep(BACKOFF_BASE_SECONDS * 2**retries)
                retries += 1
                continue

            client_log(
                LogLevel.ERROR,
                "HTTP request failed with response code:%d description:%s",
                status,
                body,
            )
            return ""