"""Command line host for datewatch.

Usage:
    datewatch configure --url URL --expected 31.10.2025 --period 15
    datewatch start            # enable monitoring
    datewatch run              # long-lived session; type ack, check, start, stop, status or quit
    datewatch check            # one periodic job run for cron / systemd timers; stays up while
                               # an alarm it raised is sounding
    datewatch stop             # disable monitoring
    datewatch status
"""

import argparse
import asyncio
import json
import sys
from collections.abc import AsyncIterator
from pathlib import Path

from prometheus_client import start_http_server

from datewatch.config.settings import Settings, get_settings
from datewatch.core.logging import get_logger, setup_logging
from datewatch.monitoring import (
    AlarmState,
    CycleResult,
    JobOutcome,
    MonitorConfig,
    MonitorService,
    PeriodicCheckJob,
    create_monitor_service,
    validate_or_raise,
)
from datewatch.observability.metrics import MetricsConfig, create_metrics_manager
from datewatch.storage.settings_store import JsonFileSettingsStore, create_settings_store
from datewatch.utils.exceptions import ConfigurationError

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_CONFIG_INVALID = 2
EXIT_RETRY = 75  # EX_TEMPFAIL


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="datewatch",
        description="Watch a page for an expected date and raise an alarm when it changes",
    )
    parser.add_argument("--state-file", type=Path, help="Settings file (default from settings)")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--json-logs", action="store_true", default=None, help="Log as JSON")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run a monitoring session in the foreground")
    run_parser.add_argument("--metrics-port", type=int, help="Expose Prometheus metrics on PORT")
    run_parser.set_defaults(handler=cmd_run)

    check_parser = subparsers.add_parser("check", help="Run the periodic check job once")
    check_parser.set_defaults(handler=cmd_check)

    configure_parser = subparsers.add_parser("configure", help="Change the monitor settings")
    configure_parser.add_argument("--url", help="Page to watch")
    configure_parser.add_argument("--expected", help="Expected date (DD.MM.YYYY)")
    configure_parser.add_argument("--period", type=int, help="Minutes between checks")
    configure_parser.add_argument(
        "--check", action="store_true", help="Check the new settings right away"
    )
    configure_parser.set_defaults(handler=cmd_configure)

    start_parser = subparsers.add_parser("start", help="Enable monitoring")
    start_parser.set_defaults(handler=cmd_start)

    stop_parser = subparsers.add_parser("stop", help="Disable monitoring")
    stop_parser.set_defaults(handler=cmd_stop)

    status_parser = subparsers.add_parser("status", help="Show settings and state")
    status_parser.set_defaults(handler=cmd_status)

    return parser


def build_store(args: argparse.Namespace) -> JsonFileSettingsStore:
    """Open the settings file, honoring a ``--state-file`` override."""
    return create_settings_store(args.state_file)


def build_service(args: argparse.Namespace, settings: Settings) -> MonitorService:
    return create_monitor_service(settings, store=build_store(args))


# =============================================================================
# Commands
# =============================================================================


async def cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    if args.metrics_port is not None and settings.metrics_enabled:
        manager = create_metrics_manager(MetricsConfig.from_settings(settings))
        manager.initialize(environment=settings.environment)
        start_http_server(args.metrics_port)
        logger.info("metrics_server_started", port=args.metrics_port)

    service = build_service(args, settings)
    follower: asyncio.Task[None] | None = None
    try:
        if not await service.restore():
            print("Monitoring is disabled; type 'start' or run 'datewatch start' to enable it.")
        if service.job_runner is not None:
            await service.job_runner.start()
        follower = asyncio.create_task(
            service.follow_store(settings.store_poll_seconds),
            name="datewatch_store_follower",
        )

        async for command in _stdin_lines():
            if not await handle_session_command(service, command):
                break
    finally:
        if follower is not None:
            follower.cancel()
            await asyncio.gather(follower, return_exceptions=True)
        await service.shutdown()

    return EXIT_OK


async def cmd_check(args: argparse.Namespace, settings: Settings) -> int:
    service = build_service(args, settings)
    try:
        outcome = await PeriodicCheckJob(service.coordinator, service.store).run()
        await hold_alarm(service, interactive=_stdin_is_interactive())
    finally:
        await service.shutdown()

    print(outcome.value)
    return EXIT_RETRY if outcome == JobOutcome.RETRY else EXIT_OK


async def cmd_configure(args: argparse.Namespace, settings: Settings) -> int:
    service = build_service(args, settings)
    try:
        current = service.store.get_config()
        config = MonitorConfig(
            url=args.url if args.url is not None else current.url,
            expected_value=args.expected if args.expected is not None else current.expected_value,
            period_minutes=args.period if args.period is not None else current.period_minutes,
        )

        if args.check:
            _print_cycle(await service.apply_settings(config))
        else:
            validate_or_raise(config, min_period_minutes=settings.min_period_minutes)
            service.store.set_config(config)
    finally:
        await service.shutdown()

    print(f"Saved: {config.url} expecting {config.expected_value} every {config.period_minutes} min")
    return EXIT_OK


async def cmd_start(args: argparse.Namespace, settings: Settings) -> int:
    store = build_store(args)
    config = store.get_config()
    validate_or_raise(config, min_period_minutes=settings.min_period_minutes)
    store.set_monitoring_enabled(True)
    print("Monitoring enabled.")
    return EXIT_OK


async def cmd_stop(args: argparse.Namespace, settings: Settings) -> int:
    store = build_store(args)
    store.set_monitoring_enabled(False)
    print("Monitoring disabled.")
    return EXIT_OK


async def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    store = build_store(args)
    _print_json(
        {
            "monitoring_enabled": store.get_monitoring_enabled(),
            "last_match": store.get_last_match(),
            "config": store.get_config().model_dump(),
        }
    )
    return EXIT_OK


# =============================================================================
# Session Helpers
# =============================================================================


async def handle_session_command(service: MonitorService, command: str) -> bool:
    """Apply one command typed into a running session.

    Returns:
        False when the session should end.
    """
    match command:
        case "ack":
            silenced = await service.acknowledge()
            print("Alarm silenced." if silenced else "No alarm sounding.")
        case "check":
            _print_cycle(await service.check_now())
        case "start":
            try:
                handle = await service.start_session()
            except ConfigurationError as e:
                print(str(e), file=sys.stderr)
            else:
                print(f"Monitoring started, checking every {handle.period_minutes} min.")
        case "stop":
            await service.stop_session()
            print("Monitoring stopped.")
        case "status":
            _print_json(service.status())
        case "quit" | "exit":
            return False
        case "":
            pass
        case _:
            print(f"Unknown command: {command} (ack, check, start, stop, status, quit)")
    return True


async def hold_alarm(service: MonitorService, interactive: bool = False) -> AlarmState:
    """Keep the process up while the alarm sounds.

    The alarm ends when it times out or, if ``interactive``, when the user
    types 'ack'.

    Returns:
        The alarm state once it is no longer sounding.
    """
    alarm = service.coordinator.alarm_controller
    if alarm.state != AlarmState.SOUNDING:
        return alarm.state

    print("Alarm sounding; type 'ack' to silence." if interactive else "Alarm sounding.")
    waiters = {asyncio.create_task(alarm.wait_until_not_sounding())}
    if interactive:
        waiters.add(asyncio.create_task(_acknowledge_from_stdin(service)))
    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in waiters:
            task.cancel()
        await asyncio.gather(*waiters, return_exceptions=True)

    logger.info("alarm_hold_finished", state=alarm.state.value)
    return alarm.state


async def _acknowledge_from_stdin(service: MonitorService) -> None:
    async for command in _stdin_lines():
        if command == "ack" and await service.acknowledge():
            return


def _stdin_is_interactive() -> bool:
    return sys.stdin is not None and sys.stdin.isatty()


# =============================================================================
# Helpers
# =============================================================================


async def _stdin_lines() -> AsyncIterator[str]:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    while line := await reader.readline():
        yield line.decode(errors="replace").strip().lower()


def _print_cycle(result: CycleResult) -> None:
    _print_json(result.to_dict())


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, default=str))


def main(argv: list[str] | None = None) -> int:
    """Run the command line interface.

    Args:
        argv: Arguments without the program name (default: ``sys.argv[1:]``).

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(log_level=args.log_level, json_format=args.json_logs)

    try:
        return asyncio.run(args.handler(args, settings))
    except ConfigurationError as e:
        print(str(e), file=sys.stderr)
        return EXIT_CONFIG_INVALID
    except KeyboardInterrupt:
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
