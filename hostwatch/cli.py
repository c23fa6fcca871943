from __future__ import annotations

import argparse
import json
import logging
import signal
import threading
from typing import List, Optional

from .buffer import SnapshotBuffer, migrate_legacy_buffer
from .client import DeliveryClient
from .config import AgentConfig, ConfigError, Settings
from .delivery import CycleReport, run_delivery_cycle
from .enrollment import EnrollmentError, enroll_host
from .metrics import collect_snapshot, get_hostname
from .observability import configure_logging
from .snapshot import Snapshot
from .version import __version__


logger = logging.getLogger("hostwatch.cli")

NOT_ENROLLED_HOST_ID = "(not enrolled)"
PROG = "hostwatch-agent"


def build_snapshot(settings: Settings, host_id: str) -> Snapshot:
    snapshot = collect_snapshot(state_dir=settings.state_dir, disk_path=settings.disk_path)
    return snapshot.with_identity(host_id=host_id, agent_version=__version__)


def run_print_payload(settings: Settings) -> None:
    host_id = NOT_ENROLLED_HOST_ID
    try:
        config = AgentConfig.load(settings.config_path)
    except FileNotFoundError:
        pass
    except (OSError, ConfigError) as exc:
        raise SystemExit(f"print-payload failed: {exc}") from exc
    else:
        host_id = config.host_id or NOT_ENROLLED_HOST_ID

    snapshot = build_snapshot(settings, host_id)
    print(json.dumps(snapshot.to_dict(), indent=2))


def run_enroll(settings: Settings, *, token: str, server: str, allow_insecure: bool) -> None:
    try:
        enrolled = enroll_host(
            server_url=server,
            token=token,
            hostname=get_hostname(),
            allow_insecure=allow_insecure,
            config_path=settings.config_path,
        )
    except EnrollmentError as exc:
        raise SystemExit(f"Error: {exc}") from exc

    print(f"Enrolled successfully. Host ID: {enrolled.host_id}")


def run_send(settings: Settings, *, cancel_event: threading.Event | None = None) -> Optional[CycleReport]:
    """Run one delivery cycle. Failures are logged; nothing is raised."""

    try:
        config = AgentConfig.load(settings.config_path)
    except FileNotFoundError:
        logger.warning("not enrolled (%s missing); run `%s enroll` first", settings.config_path, PROG)
        return None
    except (OSError, ConfigError) as exc:
        logger.warning("failed to load config: %s", exc)
        return None

    migrate_legacy_buffer(settings.buffer_path, settings.legacy_buffer_path)

    queue = SnapshotBuffer(settings.buffer_path, settings.buffer_max_size)
    client = DeliveryClient(config, timeout_s=settings.request_timeout_s, cancel_event=cancel_event)

    return run_delivery_cycle(
        collect=lambda: build_snapshot(settings, config.host_id),
        queue=queue,
        client=client,
    )


def _install_cancel_handler(cancel_event: threading.Event) -> None:
    def _handler(signum: int, _frame: object) -> None:
        logger.warning("received signal %s; cancelling delivery", signum)
        cancel_event.set()

    signal.signal(signal.SIGTERM, _handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=PROG, description="Ship host telemetry snapshots to the ingestion server")
    parser.add_argument("-v", "--version", action="store_true", help="Print the agent version and exit")

    sub = parser.add_subparsers(dest="command")

    enroll = sub.add_parser("enroll", help="Exchange an enrollment token for a host identity")
    enroll.add_argument("--token", default="", help="Enrollment token")
    enroll.add_argument("--server", default="", help="Server URL (https://...)")
    enroll.add_argument(
        "--allow-insecure",
        action="store_true",
        help="Allow http:// for localhost/loopback servers only",
    )

    sub.add_parser("send", help="Collect one snapshot and deliver it (plus any buffered backlog)")
    sub.add_parser("print-payload", help="Print the snapshot that would be sent")
    sub.add_parser("version", help="Print the agent version")
    return parser


def main(argv: List[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.version or args.command == "version":
        print(__version__)
        return
    if args.command is None:
        print(f"{PROG} {__version__}")
        return

    settings = Settings.from_env()
    configure_logging(level=settings.log_level, log_format=settings.log_format)

    if args.command == "print-payload":
        run_print_payload(settings)
    elif args.command == "enroll":
        run_enroll(settings, token=args.token, server=args.server, allow_insecure=args.allow_insecure)
    elif args.command == "send":
        cancel_event = threading.Event()
        _install_cancel_handler(cancel_event)
        run_send(settings, cancel_event=cancel_event)


if __name__ == "__main__":
    main()
