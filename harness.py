import argparse
import asyncio
import logging
from typing import Optional

import config
from aggregator import format_report
from benchmark_driver import run_comparison
from echo_server import EchoServer
from metrics import DIRECT, PROXIED, AggregateReport, TargetEndpoint
from scheduler import BenchmarkSettings

logger = logging.getLogger(__name__)


def setup_logging(level=config.LOG_LEVEL, log_file: Optional[str] = config.LOG_FILE):
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode='w'))
    logging.basicConfig(level=level, format=config.LOG_FORMAT, handlers=handlers)
    logger.info(f"Logging setup complete. Log file: {log_file}")


def parse_endpoint(label: str, value: str) -> TargetEndpoint:
    host, sep, port = value.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"expected HOST:PORT for {label}, got {value!r}")
    if not 0 <= int(port) <= 65535:
        raise ValueError(f"port out of range 0-65535 for {label}, got {value!r}")
    return TargetEndpoint(label, host.strip("[]"), int(port))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Compare closed-loop TCP echo throughput of a direct endpoint against a proxied one")
    parser.add_argument("--direct", default=f"{config.DIRECT_HOST}:{config.DIRECT_PORT}",
                        help="HOST:PORT of the echo responder reached directly")
    parser.add_argument("--proxied", default=f"{config.PROXIED_HOST}:{config.PROXIED_PORT}",
                        help="HOST:PORT of the intermediary forwarding to the echo responder")
    parser.add_argument("--trials", type=int, default=config.BENCHMARK_NUM_TRIALS,
                        help="trials launched per target")
    parser.add_argument("--payload-size", type=int, default=config.BENCHMARK_PAYLOAD_SIZE)
    parser.add_argument("--duration", type=float, default=config.BENCHMARK_TEST_DURATION_SECONDS,
                        help="seconds each trial runs")
    parser.add_argument("--proxied-delay", type=float, default=config.BENCHMARK_PROXIED_DELAY_SECONDS)
    parser.add_argument("--direct-delay", type=float, default=None,
                        help=f"default {config.BENCHMARK_DIRECT_DELAY_FACTOR} x duration")
    parser.add_argument("--wait", type=float, default=None,
                        help=f"aggregation wait window, default {config.BENCHMARK_AGGREGATION_WAIT_FACTOR} x duration")
    parser.add_argument("--max-in-flight", type=int, default=config.BENCHMARK_MAX_IN_FLIGHT,
                        help="bound on concurrently running trials (default unbounded)")
    parser.add_argument("--serve-echo", action="store_true",
                        help="run an echo responder in-process on the direct target's port")
    parser.add_argument("--results-dir", default=config.RESULTS_DIR)
    parser.add_argument("--no-csv", action="store_true", help="do not write CSV results")
    parser.add_argument("--log-level", type=str.upper, default=logging.getLevelName(config.LOG_LEVEL),
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    return parser


def settings_from_args(args: argparse.Namespace) -> BenchmarkSettings:
    for name in ("trials", "payload_size"):
        if getattr(args, name) <= 0:
            raise ValueError(f"--{name.replace('_', '-')} must be positive")
    if args.duration <= 0:
        raise ValueError("--duration must be positive")
    return BenchmarkSettings(
        trials=args.trials,
        payload_size=args.payload_size,
        test_duration=args.duration,
        proxied_delay=args.proxied_delay,
        direct_delay=args.direct_delay,
        aggregation_wait=args.wait,
        max_in_flight=args.max_in_flight,
    )


async def main_run(direct: TargetEndpoint, proxied: TargetEndpoint, settings: BenchmarkSettings,
                   results_dir: Optional[str], serve_echo: bool = False) -> AggregateReport:
    echo: Optional[EchoServer] = None
    try:
        if serve_echo:
            echo = EchoServer(direct.host, direct.port)
            await echo.start()
        return await run_comparison(direct, proxied, settings, results_dir)
    finally:
        if echo:
            await echo.stop()


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        direct = parse_endpoint(DIRECT, args.direct)
        proxied = parse_endpoint(PROXIED, args.proxied)
        settings = settings_from_args(args)
    except ValueError as e:
        parser.error(str(e))

    setup_logging(level=args.log_level)
    results_dir = None if args.no_csv else args.results_dir
    try:
        report = asyncio.run(main_run(direct, proxied, settings, results_dir, args.serve_echo))
    except KeyboardInterrupt:
        logger.info("Benchmark interrupted by user (Ctrl+C).")
        return 130
    except OSError as e:
        # Only the in-process echo responder can fail this way
        logger.error(f"Could not start echo responder on {direct.host}:{direct.port}: {e}")
        return 1

    print(format_report(report))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
