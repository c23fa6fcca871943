from __future__ import annotations

import json

import pytest

from hostwatch.snapshot import CPUSummary, DiskSummary, MemorySummary, NetworkRate, Snapshot


def _full() -> Snapshot:
    return Snapshot(
        host_id="host-1",
        hostname="box",
        agent_version="0.1.0",
        ts=1_700_000_000,
        cpu=CPUSummary(load1=0.5, load5=0.25, load15=0.125, cores=4),
        memory=MemorySummary(total_bytes=8_192, available_bytes=4_096, swap_used_bytes=0),
        disk=DiskSummary(total_bytes=100, free_bytes=40),
        network=NetworkRate(rx_bytes_per_sec=10.0, tx_bytes_per_sec=2.5),
        uptime_seconds=3600,
    )


def test_optional_sections_are_omitted_not_zeroed() -> None:
    payload = Snapshot(host_id="h", hostname="box", agent_version="0.1.0", ts=1).to_dict()

    assert "network" not in payload
    assert "uptimeSeconds" not in payload
    assert "swapUsedBytes" not in payload["memory"]
    assert payload["cpu"] == {"load1": 0.0, "load5": 0.0, "load15": 0.0, "cores": 0}


def test_wire_keys_are_camel_case() -> None:
    payload = json.loads(_full().to_json())

    assert payload["hostId"] == "host-1"
    assert payload["agentVersion"] == "0.1.0"
    assert payload["memory"]["swapUsedBytes"] == 0
    assert payload["network"] == {"rxBytesPerSec": 10.0, "txBytesPerSec": 2.5}
    assert payload["uptimeSeconds"] == 3600


def test_from_json_restores_equal_snapshot() -> None:
    snap = _full()
    assert Snapshot.from_json(snap.to_json()) == snap


def test_from_dict_defaults_missing_sections() -> None:
    snap = Snapshot.from_dict({"hostId": "h", "ts": 5})

    assert snap.hostname == ""
    assert snap.cpu == CPUSummary()
    assert snap.disk == DiskSummary()
    assert snap.network is None
    assert snap.uptime_seconds is None


@pytest.mark.parametrize(
    "payload",
    [
        {"ts": "yesterday"},
        {"ts": True},
        {"ts": 1, "cpu": [1, 2, 3]},
        {"ts": 1, "hostId": 7},
        {"ts": 1, "disk": {"totalBytes": -5}},
        {"ts": 1, "network": {"rxBytesPerSec": -1.0, "txBytesPerSec": 0}},
    ],
)
def test_from_dict_rejects_invalid_records(payload: dict) -> None:
    with pytest.raises(ValueError):
        Snapshot.from_dict(payload)


def test_from_json_requires_object() -> None:
    with pytest.raises(ValueError):
        Snapshot.from_json("[1, 2]")


def test_negative_values_are_rejected_at_construction() -> None:
    with pytest.raises(ValueError):
        MemorySummary(total_bytes=-1)
    with pytest.raises(ValueError):
        Snapshot(host_id="h", hostname="box", agent_version="v", ts=1, uptime_seconds=-3)


def test_with_identity_keeps_metrics() -> None:
    snap = _full().with_identity(host_id="host-2", agent_version="9.9.9")

    assert snap.host_id == "host-2"
    assert snap.agent_version == "9.9.9"
    assert snap.ts == 1_700_000_000
    assert snap.cpu.cores == 4


def test_from_dict_rejects_numbers_too_large_for_float() -> None:
    with pytest.raises(ValueError):
        Snapshot.from_dict({"ts": 1, "cpu": {"load1": 10**400}})
