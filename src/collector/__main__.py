"""Fleet log collector entry point. Use --help for usage."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from collector import __version__
from collector.directory import create_directory_client
from collector.fleet import FleetSupervisor
from collector.health import HealthCheckServer
from collector.metrics import start_metrics_server
from collector.signals import setup_shutdown_signal_handlers
from collector.stats import StatsReporter
from config.config import CollectorConfig, load_config
from core.errors.exceptions import ConfigurationError, DirectoryError
from core.logging.setup import setup_logging
from core.logging.utilities import detect_log_output_mode, log_exception, log_startup_banner

# __main__.py is at src/collector/__main__.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Collect log batches from a fleet of endpoints and forward them to a sink",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Discover endpoints from the network status service
    python -m collector

    # Use a fixed endpoint list
    python -m collector --endpoints-file endpoints.yaml

    # Expose Prometheus metrics
    python -m collector --metrics-port 9090
        """,
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.yaml (default: src/config/config.yaml)",
    )
    parser.add_argument(
        "--directory",
        choices=["status", "static"],
        default=None,
        help="Where the endpoint set comes from (default: from config)",
    )
    parser.add_argument(
        "--endpoints-file",
        type=str,
        default=None,
        help="YAML endpoint list; implies --directory static",
    )
    parser.add_argument("--sink-url", type=str, default=None, help="Ingestion sink URL")
    parser.add_argument(
        "--workspace",
        type=str,
        default=None,
        help="Directory holding per-endpoint offset files",
    )
    parser.add_argument(
        "--health-port",
        type=int,
        default=None,
        help="Port for health and stats endpoints (0 for dynamic)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Port for Prometheus metrics server (default: disabled)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Console logging level (default: from config)",
    )
    parser.add_argument(
        "--log-to-stdout",
        action="store_true",
        help="Send all log output to stdout only, skipping file handlers.",
    )

    return parser.parse_args(argv)


def build_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Translate CLI flags into config overrides; unset flags are omitted."""
    overrides: dict[str, Any] = {}
    directory: dict[str, Any] = {}
    log_settings: dict[str, Any] = {}

    if args.directory:
        directory["type"] = args.directory
    if args.endpoints_file:
        directory["type"] = "static"
        directory["endpoints_file"] = args.endpoints_file
    if args.sink_url:
        overrides["sink_url"] = args.sink_url
    if args.workspace:
        overrides["workspace_path"] = args.workspace
    if args.health_port is not None:
        overrides["health_port"] = args.health_port
    if args.metrics_port is not None:
        overrides["metrics_port"] = args.metrics_port
    if args.log_level:
        log_settings["level"] = args.log_level
    if args.log_to_stdout:
        log_settings["log_to_stdout"] = True

    if directory:
        overrides["directory"] = directory
    if log_settings:
        overrides["logging"] = log_settings
    return overrides


def _setup_logging(config: CollectorConfig) -> None:
    setup_logging(
        name="collector",
        stage="fleet",
        log_dir=Path(config.logging.log_dir),
        json_format=config.logging.json_format,
        console_level=getattr(logging, config.logging.level.upper()),
        log_to_stdout=config.logging.log_to_stdout,
    )


async def run_collector(config: CollectorConfig, shutdown_event: asyncio.Event) -> int:
    """
    Run the fleet until shutdown_event is set.

    Returns the process exit code: 0 on clean shutdown, 1 when the first
    directory fetch fails.
    """
    directory = create_directory_client(config.directory)
    supervisor = FleetSupervisor(config, directory)
    health_server = HealthCheckServer(supervisor, port=config.health_port)
    reporter = StatsReporter(supervisor, interval_seconds=config.stats_interval_seconds)

    await health_server.start()
    try:
        try:
            await supervisor.start()
        except DirectoryError as e:
            log_exception(logger, e, "Initial endpoint discovery failed, exiting")
            return 1

        reporter.start()
        await shutdown_event.wait()
        logger.info("Shutdown requested, stopping fleet")

        await reporter.stop()
        await supervisor.stop()
        return 0
    finally:
        await health_server.stop()


async def _main_async(config: CollectorConfig) -> int:
    shutdown_event = asyncio.Event()
    setup_shutdown_signal_handlers(shutdown_event.set)
    return await run_collector(config, shutdown_event)


def main(argv: list[str] | None = None) -> int:
    load_dotenv(PROJECT_ROOT / ".env")
    args = parse_args(argv)

    try:
        config = load_config(args.config, overrides=build_overrides(args))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    _setup_logging(config)

    metrics_port = None
    if config.metrics_port is not None:
        metrics_port = start_metrics_server(config.metrics_port)

    log_startup_banner(
        logger,
        "Fleet Log Collector",
        version=__version__,
        directory=config.directory.status_url
        if config.directory.type == "status"
        else config.directory.endpoints_file,
        sink_url=config.sink_url,
        workspace=config.workspace_path,
        health_port=config.health_port,
        metrics_port=metrics_port,
        log_output_mode=detect_log_output_mode(),
    )

    try:
        return asyncio.run(_main_async(config))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down")
        return 0


if __name__ == "__main__":
    sys.exit(main())
