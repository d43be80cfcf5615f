"""
HTTP transport for the dashboard API.
"""
import logging
from typing import Any, Dict, Optional

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import TransportError

logger = logging.getLogger("transport")


class _RetryableTransportError(TransportError):
    """Connection-level failure worth retrying."""


class HttpTransport:
    """
    Sends JSON requests with a shared requests.Session.

    Callable as `transport(method, url, data=None, headers=None)`; returns the
    decoded JSON body (or text when the response is not JSON). Connection
    errors and timeouts are retried with exponential backoff; HTTP error
    statuses are raised immediately as TransportError.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        session: Optional[requests.Session] = None,
    ):
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self._session = session or requests.Session()

    def __call__(
        self,
        method: str,
        url: str,
        data: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        sender = retry(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
            retry=retry_if_exception_type(_RetryableTransportError),
            reraise=True,
        )(self._send)
        try:
            return sender(method, url, data, headers)
        except _RetryableTransportError as e:
            raise TransportError(str(e)) from e

    def _send(
        self,
        method: str,
        url: str,
        data: Any,
        headers: Optional[Dict[str, str]],
    ) -> Any:
        request_headers = {"Content-Type": "application/json"}
        request_headers.update(headers or {})
        body = data if data is not None and method.upper() != "GET" else None

        try:
            response = self._session.request(
                method.upper(),
                url,
                json=body,
                headers=request_headers,
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.warning(f"{method} {url} connection failed: {e}")
            raise _RetryableTransportError(f"{method} {url} failed: {e}") from e
        except requests.RequestException as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        if not response.ok:
            raise TransportError(
                f"HTTP error! status: {response.status_code}",
                status_code=response.status_code,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def close(self) -> None:
        self._session.close()
