from __future__ import annotations

import json
import logging
from pathlib import Path

from .client import DeliveryClient, DeliveryError, HTTPStatusError
from .config import AgentConfig


logger = logging.getLogger("hostwatch.enrollment")

TOKEN_ALREADY_USED = "enrollment token already used"


class EnrollmentError(RuntimeError):
    """Terminal failure of the `enroll` command."""


class EnrollmentTokenExpired(EnrollmentError):
    def __init__(self) -> None:
        super().__init__("enrollment token has expired. Please generate a new one from the dashboard.")


class EnrollmentTokenUsed(EnrollmentError):
    def __init__(self) -> None:
        super().__init__("enrollment token has already been used.")


def is_token_used_error(exc: HTTPStatusError) -> bool:
    """HTTP 400 whose JSON `error` (or raw body) says the token was used."""

    if exc.status_code != 400:
        return False

    message = exc.body
    try:
        parsed = json.loads(exc.body)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        message = str(parsed.get("error") or "")
    return message.strip().lower() == TOKEN_ALREADY_USED


def enroll_host(
    *,
    server_url: str,
    token: str,
    hostname: str,
    allow_insecure: bool,
    config_path: str | Path,
    client: DeliveryClient | None = None,
) -> AgentConfig:
    if not token.strip():
        raise EnrollmentError("--token is required")
    if not server_url.strip():
        raise EnrollmentError("--server is required")

    config = AgentConfig(server_url=server_url.strip(), allow_insecure_localhost=allow_insecure)
    client = client or DeliveryClient(config, allow_insecure_localhost=allow_insecure)

    try:
        resp = client.enroll(token.strip(), hostname)
    except HTTPStatusError as exc:
        if exc.status_code == 410:
            raise EnrollmentTokenExpired() from exc
        if is_token_used_error(exc):
            raise EnrollmentTokenUsed() from exc
        raise EnrollmentError(f"enrollment failed: {exc}") from exc
    except DeliveryError as exc:
        raise EnrollmentError(f"enrollment failed: {exc}") from exc

    enrolled = AgentConfig(
        server_url=config.server_url,
        host_id=resp.host_id,
        host_token=resp.host_token,
        allow_insecure_localhost=allow_insecure,
    )
    try:
        enrolled.save(config_path)
    except OSError as exc:
        raise EnrollmentError(f"failed to write config: {exc}") from exc

    logger.info("enrolled host_id=%s server=%s", enrolled.host_id, enrolled.server_url)
    return enrolled
