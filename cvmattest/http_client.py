"""HTTP access to the instance metadata service, with retry and backoff."""

from __future__ import annotations

import time
from enum import Enum
from typing import Callable

import requests

from .log import LogLevel, client_log
from .types import AttestationError, ErrorCode

HTTP_STATUS_OK = 200
HTTP_STATUS_RESOURCE_NOT_FOUND = 404
HTTP_STATUS_TOO_MANY_REQUESTS = 429
HTTP_STATUS_INTERNAL_SERVER_ERROR = 500
MAX_RETRIES = 3
REQUEST_TIMEOUT_SECONDS = 300
BACKOFF_BASE_SECONDS = 30


class HttpVerb(Enum):
    GET = "GET"
    POST = "POST"


def _is_retryable(status: int) -> bool:
    return status in (HTTP_STATUS_RESOURCE_NOT_FOUND, HTTP_STATUS_TOO_MANY_REQUESTS) or (
        status >= HTTP_STATUS_INTERNAL_SERVER_ERROR
    )


def _parse_header(line: str) -> tuple[str, str]:
    """Split a 'Name: value' header line; a bare value is taken as the content type."""
    name, sep, value = line.partition(":")
    if not sep:
        return "Content-Type", line.strip()
    return name.strip(), value.strip()


class HttpClient:
    """Sends requests to the metadata service and returns the response body."""

    def __init__(
        self,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session = session if session is not None else requests.Session()
        self._sleep = sleep

    def invoke_imds_request(
        self,
        url: str,
        http_verb: HttpVerb = HttpVerb.GET,
        request_body: str = "",
        content_type: str = "",
    ) -> str:
        """Perform the request and return the body of a 200 response.

        Raises AttestationError on any failure.
        """
        headers = {"Metadata": "true"}
        if content_type:
            name, value = _parse_header(content_type)
            headers[name] = value

        data = None
        if http_verb is HttpVerb.POST:
            if not request_body:
                client_log(LogLevel.ERROR, "Request body missing for POST request")
                raise AttestationError(
                    ErrorCode.ERROR_EMPTY_REQUEST_BODY, "Request body missing for POST request"
                )
            data = request_body.encode("utf-8")

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
                raise AttestationError(
                    ErrorCode.ERROR_SENDING_CURL_REQUEST_FAILED,
                    f"Failed sending curl request with error:{exc}",
                ) from exc

            status = response.status_code
            body = response.content.decode("utf-8", errors="replace")

            if status == HTTP_STATUS_OK:
                if not body:
                    client_log(LogLevel.ERROR, "Empty response received")
                    raise AttestationError(ErrorCode.ERROR_EMPTY_RESPONSE, "Empty response received")
                return body

            if _is_retryable(status):
                if retries == MAX_RETRIES:
                    client_log(
                        LogLevel.ERROR,
                        "Http Request failed with error:%d description:%s",
                        status,
                        body,
                    )
                    raise AttestationError(ErrorCode.ERROR_HTTP_REQUEST_EXCEEDED_RETRIES, body)
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
            raise AttestationError(ErrorCode.ERROR_HTTP_REQUEST_FAILED, body)