"""Outbound HTTP used by API nodes."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import NamedTuple, Optional

import requests
from urllib3.exceptions import DecodeError, ProtocolError, ReadTimeoutError

from .exceptions import ExecutionCancelledError
from .journal import CancellationToken
from .logging import get_logger

logger = get_logger(__name__)


class HttpResponse(NamedTuple):
    """Status code and raw body of a fetched URL."""
    status_code: int
    body: bytes


class HttpClient:
    """Simple GET fetch. Transport problems are raised as ``requests.RequestException``."""

    def get(self, url: str, timeout: Optional[float] = None,
            cancel_token: Optional[CancellationToken] = None) -> HttpResponse:
        raise NotImplementedError

    def close(self) -> None:
        pass


class RequestsHttpClient(HttpClient):
    """HttpClient backed by ``requests`` with a hard deadline and cancellation.

    Each call streams its response on a worker thread while the caller polls
    the cancel token and the deadline. The worker reads the body with
    ``read1``, so it gets control back whenever bytes arrive, and stops at
    the next chunk once the call is abandoned, closing the response and its
    socket. Connecting and waiting for headers are bounded by the socket
    timeouts ``(timeout, timeout)``.
    """

    def __init__(self, default_timeout: float = 30.0, poll_interval: float = 0.05,
                 max_workers: int = 10, chunk_size: int = 8192):
        self.default_timeout = default_timeout
        self.poll_interval = poll_interval
        self.chunk_size = chunk_size
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="api-call")

    def get(self, url: str, timeout: Optional[float] = None,
            cancel_token: Optional[CancellationToken] = None) -> HttpResponse:
        timeout = timeout or self.default_timeout
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        abandoned = threading.Event()
        deadline = time.monotonic() + timeout
        future = self._executor.submit(self._fetch, url, timeout, abandoned)

        try:
            while True:
                try:
                    return future.result(timeout=self.poll_interval)
                except FutureTimeoutError:
                    if cancel_token is not None and cancel_token.cancelled:
                        logger.info(f"Abandoning in-flight request to {url}: {cancel_token.reason}")
                        raise ExecutionCancelledError(f"Execution cancelled: {cancel_token.reason}")
                    if time.monotonic() >= deadline:
                        raise requests.Timeout(f"Request to {url} timed out after {timeout} seconds")
        finally:
            if not future.done():
                abandoned.set()
                future.cancel()

    def _fetch(self, url: str, timeout: float, abandoned: threading.Event) -> HttpResponse:
        """Worker side of a call: stream the body until EOF or until the caller gives up."""
        with requests.Session() as session:
            response = session.get(url, stream=True, timeout=(timeout, timeout))
            try:
                body = bytearray()
                while not abandoned.is_set():
                    chunk = self._read_chunk(response)
                    if not chunk:
                        return HttpResponse(response.status_code, bytes(body))
                    body.extend(chunk)
                logger.debug(f"Stopped reading abandoned response from {url}")
                raise requests.Timeout(f"Request to {url} was abandoned")
            finally:
                response.close()

    def _read_chunk(self, response: requests.Response) -> bytes:
        # Same translation requests applies in iter_content
        try:
            return response.raw.read1(self.chunk_size, decode_content=True)
        except ProtocolError as e:
            raise requests.exceptions.ChunkedEncodingError(e)
        except DecodeError as e:
            raise requests.exceptions.ContentDecodingError(e)
        except ReadTimeoutError as e:
            raise requests.ConnectionError(e)

    def close(self) -> None:
        self._executor.shutdown(wait=False)
