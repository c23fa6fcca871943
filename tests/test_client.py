from __future__ import annotations

import json
import threading
from typing import Any

import pytest
import requests

from hostwatch.client import (
    DeliveryCancelled,
    DeliveryClient,
    DeliveryError,
    FatalStatusError,
    InsecureTransportError,
    ProtocolError,
    RetryableStatusError,
    TransientNetworkError,
    is_localhost,
)
from hostwatch.config import AgentConfig
from hostwatch.snapshot import Snapshot


class _FakeResponse:
    def __init__(self, status_code: int, body: Any = "") -> None:
        self.status_code = status_code
        self.text = body if isinstance(body, str) else json.dumps(body)


class _FakeSession:
    """Replays scripted responses (or raises scripted exceptions) in order."""

    def __init__(self, script: list[Any]) -> None:
        self.script = list(script)
        self.calls: list[dict[str, Any]] = []

    def post(self, url: str, *, data: str, headers: dict[str, str], timeout: float) -> _FakeResponse:
        self.calls.append({"url": url, "data": data, "headers": headers, "timeout": timeout})
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


def _snap(ts: int = 1_700_000_000) -> Snapshot:
    return Snapshot(host_id="host-1", hostname="box", agent_version="0.1.0", ts=ts)


def _client(
    session: _FakeSession,
    *,
    server_url: str = "https://ingest.example.com/",
    allow_insecure: bool = False,
    sleeps: list[float] | None = None,
    cancel_event: threading.Event | None = None,
) -> DeliveryClient:
    recorded = sleeps if sleeps is not None else []

    def _sleep(delay: float) -> bool:
        recorded.append(delay)
        return False

    return DeliveryClient(
        AgentConfig(server_url=server_url, host_id="host-1", host_token="tok-123"),
        allow_insecure_localhost=allow_insecure,
        session=session,  # type: ignore[arg-type]
        sleep=_sleep,
        jitter=lambda low, high: 1.0,
        cancel_event=cancel_event,
    )


@pytest.mark.parametrize("allow_insecure", [True, False])
def test_http_non_loopback_is_rejected_before_any_request(allow_insecure: bool) -> None:
    session = _FakeSession([])
    client = _client(session, server_url="http://203.0.113.5/", allow_insecure=allow_insecure)

    with pytest.raises(InsecureTransportError):
        client.send_snapshot(_snap())
    assert session.calls == []


def test_http_loopback_requires_insecure_opt_in() -> None:
    denied = _FakeSession([])
    with pytest.raises(InsecureTransportError):
        _client(denied, server_url="http://127.0.0.1:9000", allow_insecure=False).send_snapshot(_snap())
    assert denied.calls == []

    allowed = _FakeSession([_FakeResponse(200, {"status": "ok", "clockSkew": False})])
    resp = _client(allowed, server_url="http://127.0.0.1:9000", allow_insecure=True).send_snapshot(_snap())
    assert resp.status == "ok"
    assert allowed.calls[0]["url"] == "http://127.0.0.1:9000/v1/ingest"


def test_other_schemes_are_rejected() -> None:
    session = _FakeSession([])
    with pytest.raises(InsecureTransportError):
        _client(session, server_url="ftp://localhost", allow_insecure=True).send_snapshot(_snap())


def test_is_localhost_classification() -> None:
    assert is_localhost("localhost")
    assert is_localhost("127.0.0.1")
    assert is_localhost("127.8.9.10")
    assert is_localhost("::1")
    assert not is_localhost("203.0.113.5")
    assert not is_localhost("example.com")


def test_single_send_posts_snapshot_with_bearer_auth() -> None:
    session = _FakeSession([_FakeResponse(200, {"status": "ok", "clockSkew": True})])
    resp = _client(session).send_snapshot(_snap())

    assert resp.clock_skew is True
    call = session.calls[0]
    assert call["url"] == "https://ingest.example.com/v1/ingest"
    assert call["headers"]["Authorization"] == "Bearer tok-123"
    assert call["timeout"] == 30.0
    assert json.loads(call["data"])["hostId"] == "host-1"


def test_batch_send_wraps_snapshots_and_decodes_counts() -> None:
    session = _FakeSession(
        [_FakeResponse(200, {"status": "partial", "accepted": 1, "rejected": 1, "errors": ["bad ts"]})]
    )
    resp = _client(session).send_batch([_snap(1), _snap(2)])

    assert (resp.accepted, resp.rejected, resp.errors) == (1, 1, ("bad ts",))
    call = session.calls[0]
    assert call["url"].endswith("/v1/ingest/batch")
    assert [s["ts"] for s in json.loads(call["data"])["snapshots"]] == [1, 2]


def test_enroll_is_unauthenticated() -> None:
    session = _FakeSession([_FakeResponse(201, {"hostId": "h-9", "hostToken": "secret"})])
    resp = _client(session).enroll("enroll-token", "box")

    assert (resp.host_id, resp.host_token) == ("h-9", "secret")
    call = session.calls[0]
    assert call["url"].endswith("/v1/enroll")
    assert "Authorization" not in call["headers"]
    assert json.loads(call["data"]) == {"token": "enroll-token", "hostname": "box"}


def test_retryable_status_then_success_within_budget() -> None:
    sleeps: list[float] = []
    session = _FakeSession(
        [
            _FakeResponse(503, "busy"),
            _FakeResponse(503, "busy"),
            _FakeResponse(503, "busy"),
            _FakeResponse(200, {"status": "ok", "clockSkew": False}),
        ]
    )
    resp = _client(session, sleeps=sleeps).send_snapshot(_snap())

    assert resp.status == "ok"
    assert len(session.calls) == 4
    assert sleeps == [1.0, 2.0, 4.0]


def test_retry_budget_exhausted_surfaces_last_status() -> None:
    session = _FakeSession([_FakeResponse(502, "a"), _FakeResponse(500, "b"), _FakeResponse(429, "c"), _FakeResponse(504, "last")])

    with pytest.raises(RetryableStatusError) as excinfo:
        _client(session).send_snapshot(_snap())

    assert excinfo.value.status_code == 504
    assert excinfo.value.body == "last"
    assert excinfo.value.retryable is True
    assert len(session.calls) == 4


def test_non_retryable_status_fails_immediately() -> None:
    sleeps: list[float] = []
    session = _FakeSession([_FakeResponse(400, "bad request"), _FakeResponse(200, {})])

    with pytest.raises(FatalStatusError) as excinfo:
        _client(session, sleeps=sleeps).send_snapshot(_snap())

    assert excinfo.value.status_code == 400
    assert len(session.calls) == 1
    assert sleeps == []


def test_transport_errors_are_retried_then_surfaced() -> None:
    session = _FakeSession(
        [
            requests.ConnectionError("refused"),
            requests.Timeout("slow"),
            requests.ConnectionError("refused"),
            requests.Timeout("still slow"),
        ]
    )

    with pytest.raises(TransientNetworkError):
        _client(session).send_snapshot(_snap())
    assert len(session.calls) == 4


def test_transport_error_then_success() -> None:
    session = _FakeSession([requests.ConnectionError("refused"), _FakeResponse(200, "")])
    resp = _client(session).send_snapshot(_snap())
    assert resp.status == ""
    assert len(session.calls) == 2


def test_non_retryable_transport_error_is_not_retried() -> None:
    session = _FakeSession([requests.exceptions.InvalidHeader("bad header")])

    with pytest.raises(DeliveryError) as excinfo:
        _client(session).send_snapshot(_snap())
    assert not excinfo.value.retryable
    assert len(session.calls) == 1


def test_malformed_success_body_is_protocol_error() -> None:
    session = _FakeSession([_FakeResponse(200, "<html>ok</html>")])
    with pytest.raises(ProtocolError):
        _client(session).send_snapshot(_snap())
    assert len(session.calls) == 1


def test_enroll_requires_identity_in_response() -> None:
    session = _FakeSession([_FakeResponse(200, "")])
    with pytest.raises(ProtocolError):
        _client(session).enroll("tok", "box")

    session = _FakeSession([_FakeResponse(200, {"hostId": "h-1"})])
    with pytest.raises(ProtocolError):
        _client(session).enroll("tok", "box")


def test_cancel_during_backoff_stops_retrying() -> None:
    cancel = threading.Event()
    session = _FakeSession([_FakeResponse(503, "busy"), _FakeResponse(200, {})])

    def _sleep(delay: float) -> bool:
        cancel.set()
        return True

    client = DeliveryClient(
        AgentConfig(server_url="https://ingest.example.com", host_token="tok"),
        session=session,  # type: ignore[arg-type]
        sleep=_sleep,
        cancel_event=cancel,
    )

    with pytest.raises(DeliveryCancelled):
        client.send_snapshot(_snap())
    assert len(session.calls) == 1


def test_cancel_before_first_attempt_makes_no_request() -> None:
    cancel = threading.Event()
    cancel.set()
    session = _FakeSession([])

    with pytest.raises(DeliveryCancelled):
        _client(session, cancel_event=cancel).send_snapshot(_snap())
    assert session.calls == []


def test_chunked_encoding_reset_is_retried() -> None:
    sleeps: list[float] = []
    session = _FakeSession(
        [
            requests.exceptions.ChunkedEncodingError("connection reset mid-body"),
            _FakeResponse(200, {"status": "ok"}),
        ]
    )

    resp = _client(session, sleeps=sleeps).send_snapshot(_snap())

    assert resp.status == "ok"
    assert len(session.calls) == 2
    assert sleeps == [1.0]
