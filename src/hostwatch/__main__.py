"""
hostwatch command line interface.

Usage:
    hostwatch watch
    hostwatch ps [--ghosts]
    hostwatch ports [--app APP_ID]
    hostwatch kill PID [--signal TERM]
    hostwatch kill-port PORT
    hostwatch free-port [--start 3000] [--width 100]
    hostwatch usage
"""

import argparse
import asyncio
import json
import signal
import sys
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from . import __version__
from .monitor.engine import MonitorEngine
from .monitor.events import MonitorEvent, MonitorEventKind
from .utils.config import ConfigLoader, HostwatchConfig, load_config
from .utils.errors import HostwatchError, error_context
from .utils.logging import setup_logging, get_logger

logger = get_logger("hostwatch.cli")
console = Console()


def _positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number '{value}'")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be greater than 0, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hostwatch",
        description="Process and port monitoring engine"
    )
    parser.add_argument("--version", action="version", version=f"hostwatch {__version__}")
    parser.add_argument("-c", "--config", action="append", default=[], help="Configuration file (repeatable)")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of tables")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    watch = subparsers.add_parser("watch", help="Monitor continuously and print events")
    watch.add_argument("--interval", type=_positive_float, help="Seconds between scans")
    watch.add_argument("--watch-port", type=int, action="append", default=[], help="Report owner changes of a port")

    ps = subparsers.add_parser("ps", help="List processes")
    ps.add_argument("--ghosts", action="store_true", help="Only ghost processes")

    ports = subparsers.add_parser("ports", help="List sockets")
    ports.add_argument("--app", dest="app_id", help="Only ports of a tracked application")

    kill = subparsers.add_parser("kill", help="Signal a process")
    kill.add_argument("pid", type=int)
    kill.add_argument("--signal", default="TERM", help="Signal name or number")

    kill_port = subparsers.add_parser("kill-port", help="Signal every process holding a port")
    kill_port.add_argument("port", type=int)

    free_port = subparsers.add_parser("free-port", help="Find an available port")
    free_port.add_argument("--start", type=int, default=None)
    free_port.add_argument("--width", type=int, default=None)

    subparsers.add_parser("usage", help="Port usage summary")

    return parser


def _print_event(event: MonitorEvent, as_json: bool) -> None:
    if as_json:
        print(json.dumps(event.to_dict()), flush=True)
        return

    data = event.payload()
    style = {
        MonitorEventKind.GHOST_PROCESS_DETECTED: "bold red",
        MonitorEventKind.SCAN_ERROR: "red",
        MonitorEventKind.PROCESS_TERMINATED: "yellow",
        MonitorEventKind.PORT_CLOSED: "yellow",
    }.get(event.kind, "green")
    console.print(
        f"[dim]{event.timestamp:%H:%M:%S}[/dim] [{style}]{event.kind.value}[/{style}] {data}",
        highlight=False
    )


async def _watch(engine: MonitorEngine, args: argparse.Namespace) -> int:
    for port in args.watch_port:
        engine.watch_port(port)

    engine.subscribe(lambda event: _print_event(event, args.json))

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await engine.start()
    await stop.wait()
    await engine.stop()
    return 0


def _process_table(engine: MonitorEngine, ghosts_only: bool) -> Table:
    ghost_pids = {}
    if engine.scanner.last_report:
        ghost_pids = {p.pid: v for p, v in engine.scanner.last_report.ghosts}

    table = Table(title="Processes")
    for column in ("PID", "PPID", "USER", "CPU%", "MEM%", "STATUS", "PORT", "GHOST", "COMMAND"):
        table.add_column(column)

    for process in engine.list_processes():
        verdict = ghost_pids.get(process.pid)
        if ghosts_only and verdict is None:
            continue
        table.add_row(
            str(process.pid),
            str(process.parent_pid),
            process.user,
            f"{process.cpu_percent:.1f}",
            f"{process.memory_percent:.1f}",
            process.status.value,
            str(process.associated_port or ""),
            verdict.reason.value if verdict and verdict.reason else "",
            process.command[:80],
        )
    return table


async def _run(args: argparse.Namespace, config: HostwatchConfig, loader: ConfigLoader) -> int:
    if args.command == "watch" and args.interval is not None:
        config.monitor.check_frequency = args.interval

    engine = MonitorEngine(config=config)
    loader.register_callback(engine.apply_config)

    try:
        if args.command == "watch":
            return await _watch(engine, args)

        if args.command in ("ps", "ports", "usage"):
            await engine.scan_once()

        if args.command == "ps":
            if args.json:
                print(json.dumps([p.to_dict() for p in engine.list_processes()], indent=2))
            else:
                console.print(_process_table(engine, args.ghosts))

        elif args.command == "ports":
            ports = engine.list_ports(args.app_id)
            if args.json:
                print(json.dumps([p.to_dict() for p in ports], indent=2))
            else:
                table = Table(title="Ports")
                for column in ("PORT", "PROTO", "STATE", "PID", "PROCESS", "ADDRESS"):
                    table.add_column(column)
                for p in ports:
                    table.add_row(
                        str(p.port), p.protocol.value, p.state.value,
                        str(p.owning_pid or "-"), p.process_name, p.bind_address
                    )
                console.print(table)

        elif args.command == "kill":
            ok = await engine.kill_process(args.pid, args.signal)
            console.print(f"pid {args.pid}: {'signalled' if ok else 'failed'}")
            return 0 if ok else 1

        elif args.command == "kill-port":
            ok = await engine.kill_process_on_port(args.port)
            console.print(f"port {args.port}: {'freed' if ok else 'nothing killed'}")
            return 0 if ok else 1

        elif args.command == "free-port":
            print(engine.find_available_port(args.start, args.width))

        elif args.command == "usage":
            usage = engine.get_port_usage()
            if args.json:
                print(json.dumps(usage.to_dict(), indent=2))
            else:
                console.print(f"used: {usage.used}")
                console.print(f"available: {usage.available}")
                console.print(f"conflicts: {usage.conflicts}")

        return 0
    finally:
        await engine.shutdown()
        loader.shutdown()


async def main_async(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    loader = ConfigLoader()
    try:
        config = await load_config(config_paths=args.config, loader=loader)
    except HostwatchError as e:
        console.print(f"[red]{e.message}[/red]")
        return 2

    setup_logging(
        app_name=config.app_name,
        log_level=args.log_level or config.logging.level,
        log_dir=config.logging.directory,
        enable_json=config.logging.format == "json",
        enable_console=config.logging.enable_console,
        enable_sentry=config.logging.enable_sentry,
        sentry_dsn=config.logging.sentry_dsn,
        max_bytes=config.logging.max_size,
        backup_count=config.logging.backup_count
    )

    try:
        with error_context("cli", args.command):
            return await _run(args, config, loader)
    except HostwatchError as e:
        logger.error("command_failed", command=args.command, code=e.code, error=e.message)
        console.print(f"[red]{e.message}[/red]")
        for suggestion in e.get_suggestions():
            console.print(f"  - {suggestion}")
        return 1


def main() -> None:
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
