"""HTTP client for the meter's local JSON API."""

from __future__ import annotations

import logging
import threading
from typing import Optional

import httpx

from p1_ingest_services.common.config import ConfigError
from ...errors import FetchError, OperationCancelled

logger = logging.getLogger(__name__)

STOP_POLL_SECONDS = 0.05


class MeterHttpClient:
    """Fetches one raw snapshot per call with an unauthenticated GET."""

    def __init__(
        self,
        endpoint: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not endpoint:
            raise ConfigError("meter_endpoint not set")
        self._endpoint = endpoint
        self._timeout = timeout
        self._transport = transport

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def fetch(self, stop_event: Optional[threading.Event] = None) -> bytes:
        """Return the response body.

        With a ``stop_event`` the GET runs on a daemon worker thread and the
        caller stops waiting as soon as the event is set. The abandoned request
        is left to finish in the background, bounded by the client timeout,
        and its result is discarded.

        Raises:
            FetchError: transport/read failure or any status other than 200
            OperationCancelled: ``stop_event`` was set before the body arrived
        """
        if stop_event is None:
            return self._get()
        if stop_event.is_set():
            raise OperationCancelled("fetch cancelled")

        done = threading.Event()
        result = {}

        def _worker():
            try:
                result["body"] = self._get()
            except Exception as e:
                result["error"] = e
            finally:
                done.set()

        threading.Thread(target=_worker, name="meter-fetch", daemon=True).start()

        while not done.wait(STOP_POLL_SECONDS):
            if stop_event.is_set():
                logger.warning("FETCH_ABANDONED endpoint=%s", self._endpoint)
                raise OperationCancelled("fetch cancelled")

        if "error" in result:
            raise result["error"]
        return result["body"]

    def _get(self) -> bytes:
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                resp = client.get(self._endpoint)
        except httpx.HTTPError as e:
            raise FetchError(f"GET {self._endpoint} failed: {e}") from e

        if resp.status_code != 200:
            raise FetchError(
                f"meter endpoint status: {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
            )

        logger.debug("FETCHED endpoint=%s bytes=%d", self._endpoint, len(resp.content))
        return resp.content
