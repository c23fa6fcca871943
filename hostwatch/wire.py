from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Sequence, Union

from .snapshot import Snapshot


INGEST_PATH = "/v1/ingest"
BATCH_INGEST_PATH = "/v1/ingest/batch"
ENROLL_PATH = "/v1/enroll"


@dataclass(frozen=True)
class SingleIngestRequest:
    snapshot: Snapshot

    path = INGEST_PATH
    authenticated = True

    def to_body(self) -> Dict[str, Any]:
        return self.snapshot.to_dict()


@dataclass(frozen=True)
class BatchIngestRequest:
    snapshots: Sequence[Snapshot]

    path = BATCH_INGEST_PATH
    authenticated = True

    def to_body(self) -> Dict[str, Any]:
        return {"snapshots": [s.to_dict() for s in self.snapshots]}


@dataclass(frozen=True)
class EnrollRequest:
    token: str
    hostname: str

    path = ENROLL_PATH
    authenticated = False

    def to_body(self) -> Dict[str, Any]:
        return {"token": self.token, "hostname": self.hostname}


DeliveryRequest = Union[SingleIngestRequest, BatchIngestRequest, EnrollRequest]


@dataclass(frozen=True)
class IngestResponse:
    status: str = ""
    clock_skew: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> IngestResponse:
        clock_skew = payload.get("clockSkew", False)
        if not isinstance(clock_skew, bool):
            raise ValueError("'clockSkew' must be a bool")
        return cls(status=_str_field(payload, "status"), clock_skew=clock_skew)


@dataclass(frozen=True)
class BatchResponse:
    status: str = ""
    accepted: int = 0
    rejected: int = 0
    errors: tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> BatchResponse:
        errors_raw = payload.get("errors") or []
        if not isinstance(errors_raw, list) or not all(isinstance(e, str) for e in errors_raw):
            raise ValueError("'errors' must be a list of strings")
        return cls(
            status=_str_field(payload, "status"),
            accepted=_count_field(payload, "accepted"),
            rejected=_count_field(payload, "rejected"),
            errors=tuple(errors_raw),
        )


@dataclass(frozen=True)
class EnrollResponse:
    host_id: str
    host_token: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> EnrollResponse:
        host_id = _str_field(payload, "hostId").strip()
        host_token = _str_field(payload, "hostToken").strip()
        if not host_id or not host_token:
            raise ValueError("enroll response missing hostId/hostToken")
        return cls(host_id=host_id, host_token=host_token)


def _str_field(payload: Mapping[str, Any], key: str) -> str:
    v = payload.get(key, "")
    if v is None:
        return ""
    if not isinstance(v, str):
        raise ValueError(f"'{key}' must be a string")
    return v


def _count_field(payload: Mapping[str, Any], key: str) -> int:
    v = payload.get(key, 0)
    if isinstance(v, bool) or not isinstance(v, int) or v < 0:
        raise ValueError(f"'{key}' must be a non-negative int")
    return v
