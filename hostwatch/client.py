from __future__ import annotations

import ipaddress
import json
import logging
import random
import threading
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, TypeVar
from urllib.parse import urlsplit

import requests

from .config import DEFAULT_REQUEST_TIMEOUT_S, AgentConfig
from .retry import (
    DEFAULT_MAX_RETRIES,
    AttemptResult,
    JitterFn,
    RetryMachine,
    RetryState,
    is_retryable_status,
)
from .snapshot import Snapshot
from .version import __version__
from .wire import (
    BatchIngestRequest,
    BatchResponse,
    DeliveryRequest,
    EnrollRequest,
    EnrollResponse,
    IngestResponse,
    SingleIngestRequest,
)


logger = logging.getLogger("hostwatch.client")

MAX_BODY_BYTES = 1 << 20

_R = TypeVar("_R")


class DeliveryError(RuntimeError):
    """Base class for every failed delivery attempt."""

    retryable = False


class InsecureTransportError(DeliveryError):
    """Raised before any network I/O when the server URL is not HTTPS."""


TransportSecurityError = InsecureTransportError


class TransientNetworkError(DeliveryError):
    """Timeout/connection failure that persisted through every retry."""

    retryable = True


class HTTPStatusError(DeliveryError):
    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"http {status_code}: {body}")
        self.status_code = int(status_code)
        self.body = body


class RetryableStatusError(HTTPStatusError):
    """429/5xx response that persisted through every retry."""

    retryable = True


class FatalStatusError(HTTPStatusError):
    """Non-2xx response outside the retryable set."""


class ProtocolError(DeliveryError):
    """2xx response whose body could not be decoded."""


class PayloadEncodingError(DeliveryError):
    """Request body could not be serialized to JSON."""


class DeliveryCancelled(DeliveryError):
    """The caller's cancel event was set during an attempt or backoff."""


def is_localhost(host: str) -> bool:
    if host in {"localhost", "127.0.0.1", "::1"}:
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def _read_body(resp: Any) -> str:
    text = getattr(resp, "text", "") or ""
    return text[:MAX_BODY_BYTES].strip()


class DeliveryClient:
    """Posts snapshots and enrollment requests to the ingestion server.

    Each call validates transport security first, then runs the request
    through `RetryMachine`: 429/500/502/503/504 and timeouts/connection
    errors are retried up to `max_retries` times with jittered exponential
    backoff; anything else ends the call immediately.
    """

    def __init__(
        self,
        config: AgentConfig,
        *,
        allow_insecure_localhost: bool | None = None,
        session: requests.Session | None = None,
        timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S,
        max_retries: int = DEFAULT_MAX_RETRIES,
        cancel_event: threading.Event | None = None,
        sleep: Optional[Callable[[float], bool]] = None,
        jitter: JitterFn = random.uniform,
    ) -> None:
        self.server_url = config.server_url.strip().rstrip("/")
        self.host_token = config.host_token
        self.allow_insecure_localhost = (
            config.allow_insecure_localhost if allow_insecure_localhost is None else bool(allow_insecure_localhost)
        )
        self.session = session or requests.Session()
        self.timeout_s = float(timeout_s)
        self.max_retries = max(0, int(max_retries))
        self.cancel_event = cancel_event or threading.Event()
        # sleep(delay) returns True when the wait was interrupted by cancellation.
        self._sleep = sleep or self.cancel_event.wait
        self._jitter = jitter

    def validate_server_url(self) -> None:
        try:
            parsed = urlsplit(self.server_url)
            host = parsed.hostname or ""
        except ValueError as exc:
            raise InsecureTransportError(f"invalid server URL {self.server_url!r}: {exc}") from exc

        scheme = parsed.scheme.lower()
        if scheme == "https" and host:
            return
        if scheme == "http" and self.allow_insecure_localhost and is_localhost(host):
            return
        raise InsecureTransportError("server URL must use HTTPS")

    def send_snapshot(self, snapshot: Snapshot) -> IngestResponse:
        return self._call(SingleIngestRequest(snapshot), IngestResponse.from_payload)

    def send_batch(self, snapshots: Sequence[Snapshot]) -> BatchResponse:
        return self._call(BatchIngestRequest(tuple(snapshots)), BatchResponse.from_payload)

    def enroll(self, token: str, hostname: str) -> EnrollResponse:
        return self._call(EnrollRequest(token=token, hostname=hostname), EnrollResponse.from_payload, allow_empty=False)

    def _headers(self, request: DeliveryRequest) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"hostwatch-agent/{__version__}",
        }
        if request.authenticated:
            headers["Authorization"] = f"Bearer {self.host_token}"
        return headers

    def _call(
        self,
        request: DeliveryRequest,
        decode: Callable[[Mapping[str, Any]], _R],
        *,
        allow_empty: bool = True,
    ) -> _R:
        self.validate_server_url()

        try:
            body = json.dumps(request.to_body(), separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            raise PayloadEncodingError(f"failed to encode {request.path} body: {exc}") from exc

        resp = self._post_with_retry(request, body)
        text = _read_body(resp)
        if not text:
            if allow_empty:
                return decode({})
            raise ProtocolError(f"empty success response from {request.path}")

        try:
            payload = json.loads(text)
            if not isinstance(payload, Mapping):
                raise ValueError("response must be a JSON object")
            return decode(payload)
        except ValueError as exc:
            raise ProtocolError(f"malformed success response from {request.path}: {exc}") from exc

    def _post_with_retry(self, request: DeliveryRequest, body: str) -> Any:
        url = f"{self.server_url}{request.path}"
        headers = self._headers(request)
        machine = RetryMachine(self.max_retries, jitter=self._jitter)

        last_error: Optional[BaseException] = None
        last_resp: Any = None

        while not machine.done:
            if machine.state is RetryState.BACKOFF:
                delay = machine.next_delay()
                logger.info(
                    "retrying %s in %.1fs (attempt %s/%s)",
                    request.path,
                    delay,
                    machine.attempt + 2,
                    self.max_retries + 1,
                )
                machine.finish_backoff(cancelled=bool(self._sleep(delay)) or self.cancel_event.is_set())
                continue

            if self.cancel_event.is_set():
                machine.record(AttemptResult.CANCELLED)
                continue

            try:
                resp = self.session.post(url, data=body, headers=headers, timeout=self.timeout_s)
            except requests.exceptions.SSLError as exc:
                last_error, last_resp = exc, None
                machine.record(AttemptResult.FATAL)
                continue
            except (requests.Timeout, requests.ConnectionError, requests.exceptions.ChunkedEncodingError) as exc:
                last_error, last_resp = exc, None
                logger.warning("%s attempt %s failed: %r", request.path, machine.attempt + 1, exc)
                machine.record(AttemptResult.RETRYABLE)
                continue
            except requests.RequestException as exc:
                last_error, last_resp = exc, None
                machine.record(AttemptResult.FATAL)
                continue

            if self.cancel_event.is_set():
                machine.record(AttemptResult.CANCELLED)
                continue

            last_error, last_resp = None, resp
            status = int(resp.status_code)
            if 200 <= status < 300:
                machine.record(AttemptResult.OK)
            elif is_retryable_status(status):
                logger.warning("%s attempt %s got HTTP %s", request.path, machine.attempt + 1, status)
                machine.record(AttemptResult.RETRYABLE)
            else:
                machine.record(AttemptResult.FATAL)

        if machine.state is RetryState.SUCCEEDED:
            return last_resp
        if machine.state is RetryState.CANCELLED:
            raise DeliveryCancelled(f"{request.path} cancelled")
        if last_resp is not None:
            if machine.state is RetryState.FAILED_RETRYABLE:
                raise RetryableStatusError(last_resp.status_code, _read_body(last_resp))
            raise FatalStatusError(last_resp.status_code, _read_body(last_resp))
        if machine.state is RetryState.FAILED_RETRYABLE:
            raise TransientNetworkError(f"{request.path} failed: {last_error!r}") from last_error
        raise DeliveryError(f"{request.path} failed: {last_error!r}") from last_error
