from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class CPUSummary:
    load1: float = 0.0
    load5: float = 0.0
    load15: float = 0.0
    cores: int = 0

    def __post_init__(self) -> None:
        _check_non_negative("cpu", load1=self.load1, load5=self.load5, load15=self.load15, cores=self.cores)

    def to_dict(self) -> Dict[str, Any]:
        return {"load1": self.load1, "load5": self.load5, "load15": self.load15, "cores": self.cores}


@dataclass(frozen=True)
class MemorySummary:
    total_bytes: int = 0
    available_bytes: int = 0
    swap_used_bytes: Optional[int] = None

    def __post_init__(self) -> None:
        _check_non_negative(
            "memory",
            total_bytes=self.total_bytes,
            available_bytes=self.available_bytes,
            swap_used_bytes=self.swap_used_bytes,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"totalBytes": self.total_bytes, "availableBytes": self.available_bytes}
        if self.swap_used_bytes is not None:
            out["swapUsedBytes"] = self.swap_used_bytes
        return out


@dataclass(frozen=True)
class DiskSummary:
    total_bytes: int = 0
    free_bytes: int = 0

    def __post_init__(self) -> None:
        _check_non_negative("disk", total_bytes=self.total_bytes, free_bytes=self.free_bytes)

    def to_dict(self) -> Dict[str, Any]:
        return {"totalBytes": self.total_bytes, "freeBytes": self.free_bytes}


@dataclass(frozen=True)
class NetworkRate:
    rx_bytes_per_sec: float
    tx_bytes_per_sec: float

    def __post_init__(self) -> None:
        _check_non_negative(
            "network",
            rx_bytes_per_sec=self.rx_bytes_per_sec,
            tx_bytes_per_sec=self.tx_bytes_per_sec,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"rxBytesPerSec": self.rx_bytes_per_sec, "txBytesPerSec": self.tx_bytes_per_sec}


@dataclass(frozen=True)
class Snapshot:
    """One point-in-time bundle of host metrics plus identity.

    Optional sections (network, uptime, swap) are omitted from the JSON
    record when unavailable; they are never sent as zero.
    """

    host_id: str
    hostname: str
    agent_version: str
    ts: int
    cpu: CPUSummary = field(default_factory=CPUSummary)
    memory: MemorySummary = field(default_factory=MemorySummary)
    disk: DiskSummary = field(default_factory=DiskSummary)
    network: Optional[NetworkRate] = None
    uptime_seconds: Optional[int] = None

    def __post_init__(self) -> None:
        _check_non_negative("snapshot", ts=self.ts, uptime_seconds=self.uptime_seconds)

    def with_identity(self, *, host_id: str, agent_version: str, ts: int | None = None) -> Snapshot:
        return replace(
            self,
            host_id=host_id,
            agent_version=agent_version,
            ts=self.ts if ts is None else ts,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "hostId": self.host_id,
            "hostname": self.hostname,
            "agentVersion": self.agent_version,
            "ts": self.ts,
            "cpu": self.cpu.to_dict(),
            "memory": self.memory.to_dict(),
            "disk": self.disk.to_dict(),
        }
        if self.network is not None:
            out["network"] = self.network.to_dict()
        if self.uptime_seconds is not None:
            out["uptimeSeconds"] = self.uptime_seconds
        return out

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Snapshot:
        """Parse a wire/queue record.

        Missing sections decode to zero defaults; wrong types and negative
        numbers raise ValueError.
        """

        cpu_raw = _optional_mapping(payload, "cpu") or {}
        memory_raw = _optional_mapping(payload, "memory") or {}
        disk_raw = _optional_mapping(payload, "disk") or {}
        network_raw = _optional_mapping(payload, "network")

        network: Optional[NetworkRate] = None
        if network_raw is not None:
            network = NetworkRate(
                rx_bytes_per_sec=_get_float(network_raw, "rxBytesPerSec"),
                tx_bytes_per_sec=_get_float(network_raw, "txBytesPerSec"),
            )

        uptime: Optional[int] = None
        if payload.get("uptimeSeconds") is not None:
            uptime = _get_int(payload, "uptimeSeconds")

        swap: Optional[int] = None
        if memory_raw.get("swapUsedBytes") is not None:
            swap = _get_int(memory_raw, "swapUsedBytes")

        return cls(
            host_id=_get_str(payload, "hostId"),
            hostname=_get_str(payload, "hostname"),
            agent_version=_get_str(payload, "agentVersion"),
            ts=_get_int(payload, "ts"),
            cpu=CPUSummary(
                load1=_get_float(cpu_raw, "load1"),
                load5=_get_float(cpu_raw, "load5"),
                load15=_get_float(cpu_raw, "load15"),
                cores=_get_int(cpu_raw, "cores"),
            ),
            memory=MemorySummary(
                total_bytes=_get_int(memory_raw, "totalBytes"),
                available_bytes=_get_int(memory_raw, "availableBytes"),
                swap_used_bytes=swap,
            ),
            disk=DiskSummary(
                total_bytes=_get_int(disk_raw, "totalBytes"),
                free_bytes=_get_int(disk_raw, "freeBytes"),
            ),
            network=network,
            uptime_seconds=uptime,
        )

    @classmethod
    def from_json(cls, line: str) -> Snapshot:
        payload = json.loads(line)
        if not isinstance(payload, Mapping):
            raise ValueError("snapshot record must be a JSON object")
        return cls.from_dict(payload)


def _check_non_negative(section: str, **values: float | int | None) -> None:
    for name, value in values.items():
        if value is not None and value < 0:
            raise ValueError(f"{section}.{name} must be >= 0 (got {value!r})")


def _optional_mapping(obj: Mapping[str, Any], key: str) -> Mapping[str, Any] | None:
    v = obj.get(key)
    if v is None:
        return None
    if not isinstance(v, Mapping):
        raise ValueError(f"'{key}' must be a mapping")
    return v


def _get_str(obj: Mapping[str, Any], key: str) -> str:
    v = obj.get(key, "")
    if v is None:
        return ""
    if not isinstance(v, str):
        raise ValueError(f"'{key}' must be a string")
    return v


def _get_int(obj: Mapping[str, Any], key: str) -> int:
    v = obj.get(key, 0)
    if isinstance(v, bool):
        raise ValueError(f"'{key}' must be an int")
    if isinstance(v, int):
        return v
    if isinstance(v, float) and v.is_integer():
        return int(v)
    raise ValueError(f"'{key}' must be an int")


def _get_float(obj: Mapping[str, Any], key: str) -> float:
    v = obj.get(key, 0.0)
    if isinstance(v, bool):
        raise ValueError(f"'{key}' must be a number")
    if isinstance(v, (int, float)):
        try:
            return float(v)
        except OverflowError as exc:
            raise ValueError(f"'{key}' is out of range") from exc
    raise ValueError(f"'{key}' must be a number")
