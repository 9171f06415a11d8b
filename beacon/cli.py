"""beacon.cli

Command line entry point for inspecting and draining a beacon store.

Design constraints:
- argparse-based.
- Lazy imports: do not import httpx or pydantic at parse time.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Callable
from pathlib import Path

DEFAULT_CONFIG = Path("config") / "beacon.yaml"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="beacon",
        description="Client-side telemetry queue: inspect, report, flush.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Path to the YAML config (default: {DEFAULT_CONFIG}).",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Print queue length and session id")

    p_report = sub.add_parser("report", help="Enqueue one event")
    p_report.add_argument("--type", required=True, choices=["error", "performance", "behavior", "custom"])
    p_report.add_argument("--name", default=None)
    p_report.add_argument("--data", default=None, help="JSON object for the event's data field.")

    sub.add_parser("flush", help="Run one delivery cycle now")

    return parser


def _print_version() -> None:
    from beacon import SDK_NAME, __version__

    print(f"{SDK_NAME} v{__version__}")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _open_monitor(args: argparse.Namespace):  # type: ignore[no-untyped-def]
    from beacon.core.config import MonitorConfig
    from beacon.monitor import Monitor

    config = MonitorConfig.from_yaml(args.config)
    _configure_logging("DEBUG" if config.debug else config.logging.level)
    return Monitor(config)


def _close(monitor) -> None:  # type: ignore[no-untyped-def]
    import asyncio

    asyncio.run(monitor.aclose())


def _cmd_status(args: argparse.Namespace) -> int:
    monitor = _open_monitor(args)
    try:
        print("beacon status")
        print(f"- config: {args.config}")
        print(f"- app: {monitor.config.app_id}")
        print(f"- endpoint: {monitor.config.collect_url}")
        print(f"- session: {monitor.session_id}")
        print(f"- queued events: {len(monitor.queue)}")
        print(f"- dedup records: {len(monitor.hash_index)}")
    finally:
        _close(monitor)
    return 0


def _cmd_report(args: argparse.Namespace) -> int:
    from beacon.core.exceptions import InvalidEventError

    data = {}
    if args.data:
        try:
            data = json.loads(args.data)
        except ValueError as e:
            print(f"--data is not valid JSON: {e}", file=sys.stderr)
            return 2
        if not isinstance(data, dict):
            print("--data must be a JSON object", file=sys.stderr)
            return 2

    monitor = _open_monitor(args)
    try:
        result = monitor.report({"type": args.type, "name": args.name, "data": data})
    except InvalidEventError as e:
        print(f"report rejected: {e}", file=sys.stderr)
        return 2
    finally:
        _close(monitor)
    print(f"{result.status}: {result.event_id}")
    return 0


def _cmd_flush(args: argparse.Namespace) -> int:
    import asyncio

    monitor = _open_monitor(args)

    async def _run():  # type: ignore[no-untyped-def]
        try:
            return await monitor.flush()
        finally:
            await monitor.aclose()

    result = asyncio.run(_run())
    if result.attempted == 0:
        print("nothing to flush")
        return 0
    if not result.delivered:
        print(f"flush failed: {result.error}", file=sys.stderr)
        return 1
    print(
        f"delivered {result.sent} event(s); acknowledged {result.acknowledged}, "
        f"filtered {result.filtered}, merged {result.merged}"
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        _print_version()
        return 0

    if not args.command:
        parser.print_help()
        return 2

    dispatch: dict[str, Callable[[argparse.Namespace], int]] = {
        "status": _cmd_status,
        "report": _cmd_report,
        "flush": _cmd_flush,
    }

    fn = dispatch.get(str(args.command))
    if fn is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 2

    from beacon.core.exceptions import ConfigError

    try:
        return int(fn(args))
    except ConfigError as e:
        print(f"config error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
