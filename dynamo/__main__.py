"""
dynamo - Main Entry Point

Emits scripted log streams at a controllable pace towards a collector.

Usage:
    python -m dynamo emit                                  # packaged config.yaml
    python -m dynamo emit --scenario http --rate 5 --duration 10 --target -
    python -m dynamo emit --scenario http --scenario vpc --target http://localhost:8282
    python -m dynamo collect --protocol tcp --port 9000    # local collector
    python -m dynamo scenarios                             # list the scenario library
"""
import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from .collector import LineCollector, print_record, run_http_collector
from .config import load_settings
from .errors import ConfigurationError, TransportError
from .scenarios import available_scenarios, get_scenario
from .session import build_sessions, run_sessions

logger = logging.getLogger("dynamo")

EXIT_OK = 0
EXIT_TRANSPORT = 1
EXIT_CONFIG = 2


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def install_signal_handlers(shutdown: threading.Event) -> None:
    """Turn SIGINT/SIGTERM into a shutdown request"""
    def _handler(sig, frame):
        logger.info("Shutdown signal received, stopping...")
        shutdown.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        prog="dynamo",
        description="Emit scripted logs at a controllable pace for log pipeline demos",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    emit = subparsers.add_parser("emit", help="Stream scenario logs to a collector")
    emit.add_argument("--config", "-c", default=None,
                      help="Path to configuration file (default: packaged config.yaml)")
    emit.add_argument("--scenario", "-s", dest="scenarios", action="append", default=None,
                      help="Scenario to run; repeat for several streams (overrides config)")
    emit.add_argument("--rate", "-r", type=float, default=None,
                      help="Records per second per scenario (overrides config)")
    emit.add_argument("--duration", "-d", type=float, default=None,
                      help="Stop after this many seconds (overrides config)")
    emit.add_argument("--count", "-n", type=int, default=None,
                      help="Stop after this many records (overrides config)")
    emit.add_argument("--target", "-t", default=None,
                      help="tcp://host:port, http(s)://host:port or - for stdout (overrides config)")
    emit.add_argument("--anomaly-offset", type=int, default=None,
                      help="Normal records before the first anomaly narrative")
    emit.add_argument("--anomaly-every", type=int, default=None,
                      help="Normal records between repeated anomaly narratives")
    emit.add_argument("--batch-size", type=int, default=None,
                      help="Events per Datadog agent request (overrides config)")
    emit.add_argument("--batch-timeout", type=float, default=None,
                      help="Seconds before a partial batch is sent (overrides config)")
    emit.add_argument("--max-retries", type=int, default=None,
                      help="Reconnect attempts before giving up (overrides config)")
    emit.add_argument("--seed", type=int, default=None,
                      help="Seed for reproducible output")
    emit.add_argument("--log-level", default=None,
                      help="Emitter log level (overrides config)")

    collect = subparsers.add_parser("collect", help="Run a local collector that decodes received lines")
    collect.add_argument("--protocol", choices=["tcp", "http"], default="tcp",
                         help="tcp line listener or Datadog agent HTTP endpoint")
    collect.add_argument("--host", default="0.0.0.0", help="Bind address")
    collect.add_argument("--port", type=int, default=None,
                         help="Bind port (default: 9000 for tcp, 8282 for http)")
    collect.add_argument("--log-level", default="INFO", help="Collector log level")

    subparsers.add_parser("scenarios", help="List the scenario library")

    return parser.parse_args(argv)


def overrides_from_args(args: argparse.Namespace) -> dict:
    """Command line values that override the config file and environment"""
    return {
        "scenarios": args.scenarios,
        "rate": args.rate,
        "duration": args.duration,
        "count": args.count,
        "target": args.target,
        "anomaly_offset": args.anomaly_offset,
        "anomaly_every": args.anomaly_every,
        "batch_size": args.batch_size,
        "batch_timeout": args.batch_timeout,
        "max_retries": args.max_retries,
        "seed": args.seed,
        "log_level": args.log_level,
    }


def run_emit(args: argparse.Namespace, shutdown: threading.Event) -> int:
    try:
        settings = load_settings(args.config, overrides_from_args(args))
        configure_logging(settings.log_level)
        sessions = build_sessions(settings, shutdown)
    except ConfigurationError as e:
        configure_logging()
        logger.error("Configuration error: %s", e)
        return EXIT_CONFIG

    install_signal_handlers(shutdown)
    logger.info(
        "Starting %s -> %s at %.1f records/sec",
        ", ".join(settings.scenarios), settings.target, settings.rate,
    )

    try:
        results = run_sessions(sessions)
    except TransportError as e:
        logger.error("Transport failed: %s", e)
        return EXIT_TRANSPORT

    total = sum(r.sent for r in results)
    anomalies = sum(r.anomalies for r in results)
    logger.info("Emission complete. Total records: %d (%d anomalous)", total, anomalies)
    return EXIT_OK


def run_collect(args: argparse.Namespace, shutdown: threading.Event) -> int:
    configure_logging(args.log_level)

    if args.protocol == "http":
        run_http_collector(args.host, args.port or 8282)
        return EXIT_OK

    install_signal_handlers(shutdown)
    collector = LineCollector(args.host, args.port or 9000, shutdown, on_record=print_record)
    try:
        collector.start()
    except OSError as e:
        logger.error("Could not listen on %s:%s: %s", args.host, args.port or 9000, e)
        return EXIT_TRANSPORT

    snapshot = collector.stats.snapshot()
    logger.info("Collector stopped: %d lines, %d malformed", snapshot["total"], snapshot["errors"])
    return EXIT_OK


def run_list() -> int:
    for name in available_scenarios():
        scenario = get_scenario(name)
        print(f"{name:6} {scenario.kind.value:9} {scenario.service:18} {scenario.description}")
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = parse_args(argv)
    shutdown = threading.Event()

    if args.command == "emit":
        return run_emit(args, shutdown)
    if args.command == "collect":
        return run_collect(args, shutdown)
    return run_list()


if __name__ == "__main__":
    sys.exit(main())
