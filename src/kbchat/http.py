"""Small JSON-over-HTTP client shared by the REST collaborators."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_incrementing

from .errors import ApiError

logger = logging.getLogger(__name__)

_NON_RETRYABLE_STATUS = frozenset({401, 403, 404})
_DEFAULT_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


def _should_retry(exc: BaseException) -> bool:
    return isinstance(exc, ApiError) and exc.status_code not in _NON_RETRYABLE_STATUS


def decode_body(response: httpx.Response) -> Any:
    """Decode a response body by content type (JSON, text, or raw bytes)."""

    if not response.content:
        return None
    content_type = response.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(
                f"Unreadable JSON response from {response.request.url}",
                code="UNKNOWN_ERROR",
                status_code=response.status_code,
            ) from exc
    if content_type.startswith("text/"):
        return response.text
    return response.content


class ApiClient:
    """Issue requests against ``base_url`` with retries and uniform errors.

    Every failure is raised as :class:`ApiError`. HTTP errors carry the
    status code as ``code``; transport failures use ``NETWORK_ERROR`` or
    ``TIMEOUT_ERROR``. Failed attempts are retried ``retry_attempts`` times
    with a linearly growing delay, except for 401/403/404 responses.
    """

    def __init__(
        self,
        base_url: str,
        *,
        service_name: str,
        timeout: float = 30.0,
        retry_attempts: int = 0,
        retry_delay: float = 1.0,
        headers: Mapping[str, str] | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._service_name = service_name
        self._timeout = timeout
        self._retry_attempts = max(0, retry_attempts)
        self._retry_delay = max(0.0, retry_delay)
        self._headers = {**_DEFAULT_HEADERS, **(headers or {})}
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    @property
    def base_url(self) -> str:
        return self._base_url

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "ApiClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        retry: bool = True,
    ) -> httpx.Response:
        retryer = Retrying(
            stop=stop_after_attempt((self._retry_attempts if retry else 0) + 1),
            wait=wait_incrementing(start=self._retry_delay, increment=self._retry_delay),
            retry=retry_if_exception(_should_retry),
            reraise=True,
        )
        return retryer(self._send, method, path, json=json, params=params, headers=headers)

    def get(self, path: str, **kwargs: Any) -> Any:
        return decode_body(self.request("GET", path, **kwargs))

    def post(self, path: str, data: Any = None, **kwargs: Any) -> Any:
        return decode_body(self.request("POST", path, json=data, **kwargs))

    def patch(self, path: str, data: Any = None, **kwargs: Any) -> Any:
        return decode_body(self.request("PATCH", path, json=data, **kwargs))

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    def _send(
        self,
        method: str,
        path: str,
        *,
        json: Any,
        params: Mapping[str, Any] | None,
        headers: Mapping[str, str] | None,
    ) -> httpx.Response:
        url = self._url(path)
        logger.debug("api.request service=%s method=%s url=%s", self._service_name, method, url)
        try:
            response = self._client.request(
                method,
                url,
                json=json,
                params=params,
                headers={**self._headers, **(headers or {})},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            logger.error("api.timeout service=%s method=%s url=%s", self._service_name, method, url)
            raise ApiError(
                f"Request timeout after {self._timeout:g}s; the {self._service_name} service may be overloaded",
                code="TIMEOUT_ERROR",
            ) from exc
        except httpx.HTTPError as exc:
            logger.error(
                "api.network_error service=%s method=%s url=%s error=%s",
                self._service_name,
                method,
                url,
                exc,
            )
            raise ApiError(
                f"No response from the {self._service_name} service at {self._base_url}",
                code="NETWORK_ERROR",
            ) from exc

        logger.debug(
            "api.response service=%s method=%s url=%s status=%s",
            self._service_name,
            method,
            url,
            response.status_code,
        )
        if response.is_error:
            logger.error(
                "api.http_error service=%s method=%s url=%s status=%s",
                self._service_name,
                method,
                url,
                response.status_code,
            )
            raise ApiError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                code=str(response.status_code),
                status_code=response.status_code,
            )
        return response


__all__ = ["ApiClient", "decode_body"]
