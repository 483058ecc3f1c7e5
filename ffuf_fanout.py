"""Command line entry point: split a host list and fan ffuf out over the pieces."""
from __future__ import annotations

import argparse
import logging
import shlex
import sys
from pathlib import Path
from typing import List, Optional

from core.logging_utils import close_json_logging, configure_json_logging
from core.paths import resolve_output_root
from core.settings import load_settings
from orchestrator.cancellation import CancellationToken, cancel_on_signals
from orchestrator.errors import ConfigurationError, FanoutError, PartitionError
from orchestrator.run import run_fanout
from orchestrator.types import DISPATCH_STRATEGIES, RunConfig

LOGGER = logging.getLogger("fanout.cli")

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_CONFIG = 2
EXIT_PARTITION = 3
EXIT_CANCELLED = 130


def _parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="ffuf-fanout",
        description="Split a large host list into partitions and run one ffuf job per partition.",
    )
    parser.add_argument("-d", "--domains", dest="source", required=True, help="File with one host per line.")
    parser.add_argument("-o", "--output", dest="output", required=True, help="Output directory for the run.")
    parser.add_argument("-c", "--chunk-size", dest="chunk_size", type=int, help="Hosts per partition (default 10000).")
    parser.add_argument("-j", "--jobs", dest="jobs", type=int, help="Concurrent ffuf processes (default 5).")
    parser.add_argument("-t", "--threads", dest="threads", type=int, help="Threads per ffuf process (default 30).")
    parser.add_argument("-p", "--path", dest="target_path", help="Path appended to every host (default /.DS_Store).")
    parser.add_argument("-w", "--wordlist", dest="wordlist", help="Shared wordlist; the path must contain FUZZ.")
    parser.add_argument("-r", "--refresh", dest="refresh", type=float, help="Dashboard refresh interval in seconds.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging.")
    parser.add_argument("--strategy", choices=DISPATCH_STRATEGIES, help="Dispatch strategy (default executor).")
    parser.add_argument("--timeout", type=float, help="Per-partition timeout in seconds (0 disables).")
    parser.add_argument("--engine", help="Engine command line, e.g. '/opt/ffuf/ffuf' (default ffuf).")
    parser.add_argument("--settings", help="Explicit settings.json to load.")
    parser.add_argument("--api-port", dest="api_port", type=int, help="Serve the read-only status API on this port.")
    parser.add_argument("--no-prettify", dest="prettify", action="store_false", default=None)
    dashboard = parser.add_mutually_exclusive_group()
    dashboard.add_argument("--dashboard", dest="dashboard", action="store_true", default=None)
    dashboard.add_argument("--no-dashboard", dest="dashboard", action="store_false")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace, output_root: Path) -> RunConfig:
    settings = load_settings(output_root, Path(args.settings) if args.settings else None)
    engine = tuple(shlex.split(args.engine)) if args.engine else None
    return RunConfig.from_settings(
        settings,
        source=Path(args.source).expanduser(),
        output_root=output_root,
        partition_size=args.chunk_size,
        concurrency=args.jobs,
        invocation_threads=args.threads,
        target_path=args.target_path,
        wordlist=Path(args.wordlist).expanduser() if args.wordlist else None,
        refresh_interval_s=args.refresh,
        strategy=args.strategy,
        invocation_timeout_s=args.timeout,
        engine_command=engine,
        api_port=args.api_port,
        prettify=args.prettify,
        dashboard_enabled=args.dashboard,
        verbose=args.verbose or None,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    output_root = resolve_output_root(args.output)
    configure_json_logging(output_root, verbose=args.verbose)
    try:
        try:
            config = build_config(args, output_root)
        except ConfigurationError as exc:
            LOGGER.error("Configuration error: %s", exc)
            return EXIT_CONFIG
        token = CancellationToken(grace_s=config.cancel_grace_s)
        try:
            with cancel_on_signals(token):
                result = run_fanout(config, token=token)
        except ConfigurationError as exc:
            LOGGER.error("Configuration error: %s", exc)
            return EXIT_CONFIG
        except PartitionError as exc:
            LOGGER.error("Partitioning failed: %s", exc)
            return EXIT_PARTITION
        except (FanoutError, OSError) as exc:
            LOGGER.exception("Run aborted: %s", exc)
            return EXIT_FATAL

        snapshot = result.summary.snapshot
        LOGGER.info("Final report: %s", result.report_txt)
        if result.cancelled:
            LOGGER.warning(
                "Cancelled: %s completed, %s failed, %s never dispatched",
                snapshot.completed,
                snapshot.failed,
                len(result.summary.not_dispatched),
            )
            return EXIT_CANCELLED
        if snapshot.failed:
            LOGGER.warning("%s of %s partitions failed; see the report for details", snapshot.failed, snapshot.total)
        return EXIT_OK
    finally:
        close_json_logging()


if __name__ == "__main__":
    sys.exit(main())
