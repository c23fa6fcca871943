from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping

from dotenv import load_dotenv


logger = logging.getLogger("hostwatch.config")

DEFAULT_CONFIG_PATH = "/etc/hostwatch/config.json"
DEFAULT_BUFFER_PATH = "/var/lib/hostwatch/buffer.jsonl"
DEFAULT_LEGACY_BUFFER_PATH = "/var/lib/hostwatch/pending-payloads.jsonl"
DEFAULT_STATE_DIR = "/var/lib/hostwatch"
DEFAULT_BUFFER_MAX_SIZE = 10
DEFAULT_REQUEST_TIMEOUT_S = 30.0

_LOG_FORMATS = {"text", "json"}


class ConfigError(ValueError):
    """Raised when the identity file exists but cannot be parsed."""


@dataclass(frozen=True)
class AgentConfig:
    """Endpoint identity written by enrollment and read by `send`."""

    server_url: str
    host_id: str = ""
    host_token: str = ""
    allow_insecure_localhost: bool = False

    @classmethod
    def load(cls, path: str | Path) -> AgentConfig:
        """Read the identity file.

        A missing file raises FileNotFoundError, the "not enrolled" state.
        """

        raw = Path(path).read_text(encoding="utf-8")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"invalid config JSON in {path}: {exc}") from exc
        if not isinstance(data, Mapping):
            raise ConfigError(f"config in {path} must be a JSON object")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AgentConfig:
        def _str(key: str) -> str:
            v = data.get(key, "")
            if v is None:
                return ""
            if not isinstance(v, str):
                raise ConfigError(f"'{key}' must be a string")
            return v

        allow = data.get("allow_insecure_localhost", False)
        if not isinstance(allow, bool):
            raise ConfigError("'allow_insecure_localhost' must be a bool")

        return cls(
            server_url=_str("server_url"),
            host_id=_str("host_id"),
            host_token=_str("host_token"),
            allow_insecure_localhost=allow,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "host_id": self.host_id,
            "host_token": self.host_token,
            "server_url": self.server_url,
        }
        if self.allow_insecure_localhost:
            out["allow_insecure_localhost"] = True
        return out

    def save(self, path: str | Path) -> None:
        target = Path(path)
        target.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
        content = json.dumps(self.to_dict(), indent=2) + "\n"

        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, target)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise


def _parse_str_env(name: str, *, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip()


def _parse_positive_int_env(name: str, *, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning("invalid %s=%r; using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("invalid %s=%r; using %s", name, raw, default)
        return default
    return value


def _parse_positive_float_env(name: str, *, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        logger.warning("invalid %s=%r; using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("invalid %s=%r; using %s", name, raw, default)
        return default
    return value


@dataclass(frozen=True)
class Settings:
    """Process settings for one agent invocation."""

    config_path: str
    buffer_path: str
    legacy_buffer_path: str
    buffer_max_size: int
    state_dir: str
    request_timeout_s: float
    log_level: str
    log_format: str
    disk_path: str

    @classmethod
    def from_env(cls, *, load_env_files: bool = True) -> Settings:
        if load_env_files:
            load_dotenv()

        log_format = _parse_str_env("HOSTWATCH_LOG_FORMAT", default="text").lower()
        if log_format not in _LOG_FORMATS:
            logger.warning("invalid HOSTWATCH_LOG_FORMAT=%r; using text", log_format)
            log_format = "text"

        return cls(
            config_path=_parse_str_env("HOSTWATCH_CONFIG_PATH", default=DEFAULT_CONFIG_PATH),
            buffer_path=_parse_str_env("HOSTWATCH_BUFFER_PATH", default=DEFAULT_BUFFER_PATH),
            legacy_buffer_path=_parse_str_env(
                "HOSTWATCH_LEGACY_BUFFER_PATH",
                default=DEFAULT_LEGACY_BUFFER_PATH,
            ),
            buffer_max_size=_parse_positive_int_env(
                "HOSTWATCH_BUFFER_MAX_SIZE",
                default=DEFAULT_BUFFER_MAX_SIZE,
            ),
            state_dir=_parse_str_env("HOSTWATCH_STATE_DIR", default=DEFAULT_STATE_DIR),
            request_timeout_s=_parse_positive_float_env(
                "HOSTWATCH_REQUEST_TIMEOUT_S",
                default=DEFAULT_REQUEST_TIMEOUT_S,
            ),
            log_level=_parse_str_env("HOSTWATCH_LOG_LEVEL", default="INFO").upper(),
            log_format=log_format,
            disk_path=_parse_str_env("HOSTWATCH_DISK_PATH", default="/"),
        )
