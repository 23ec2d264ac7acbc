"""
Logged synchronous HTTP client for the ComfyUI REST endpoints.

Every request produces one ``http_out`` (or ``http_out_error``) record with
its duration. Once closed, the client refuses further requests instead of
opening a new connection pool.
"""

import time
import uuid
from typing import Optional

import httpx

from comfyclient.logging_utils import StructuredLogger, get_logger

DEFAULT_TIMEOUT = httpx.Timeout(connect=10.0, read=300.0, write=60.0, pool=10.0)


class LoggedHTTPClient:
    """
    httpx.Client wrapper that logs each request.

    The underlying client is created lazily on first use and released by
    ``close()``; requests after ``close()`` raise RuntimeError.
    """

    def __init__(
        self,
        service: str,
        base_url: Optional[str] = None,
        timeout: Optional[httpx.Timeout] = None,
        logger: Optional[StructuredLogger] = None,
        **client_kwargs
    ):
        self.service = service
        self.logger = logger or get_logger()

        self._client_kwargs = dict(client_kwargs)
        if base_url:
            self._client_kwargs["base_url"] = base_url
        if timeout:
            self._client_kwargs["timeout"] = timeout

        self._client: Optional[httpx.Client] = None
        self._closed = False

    def __enter__(self):
        self._get_client()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True
        if self._client is not None:
            self._client.close()
            self._client = None

    def _get_client(self) -> httpx.Client:
        if self._closed:
            raise RuntimeError(f"{self.service} HTTP client is closed")
        if self._client is None:
            self._client = httpx.Client(**self._client_kwargs)
        return self._client

    def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send one request; transport errors are logged and re-raised."""
        client = self._get_client()
        request_id = uuid.uuid4().hex[:8]
        body = kwargs.get("content") or kwargs.get("json") or kwargs.get("data")

        started = time.perf_counter()
        response = None
        error = None
        try:
            response = client.request(method, url, **kwargs)
            return response
        except httpx.TimeoutException as e:
            error = f"Timeout: {e}"
            raise
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            raise
        finally:
            self.logger.http_out(
                response,
                service=self.service,
                method=method,
                url=str(response.request.url) if response is not None else str(url),
                request_id=request_id,
                duration_ms=(time.perf_counter() - started) * 1000,
                request_body=body,
                error=error,
            )

    def get(self, url: str, **kwargs) -> httpx.Response:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> httpx.Response:
        return self.request("POST", url, **kwargs)


def comfyui_client(
    base_url: str,
    timeout: Optional[httpx.Timeout] = None,
    logger: Optional[StructuredLogger] = None,
) -> LoggedHTTPClient:
    """Create a logged HTTP client for ComfyUI."""
    return LoggedHTTPClient(
        service="comfyui",
        base_url=base_url,
        timeout=timeout or DEFAULT_TIMEOUT,
        logger=logger,
    )
