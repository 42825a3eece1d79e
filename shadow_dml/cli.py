"""Command line entry point."""

from __future__ import annotations

import argparse
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .config import RunConfig, load_config_file
from .driver import run
from .errors import WorkloadError

LOG_FORMAT = "%(asctime)s.%(msecs)03d [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y/%m/%d %H:%M:%S"
LOG_MAX_BYTES = 1024 * 1024 * 1024

# CLI dest -> RunConfig field
FLAG_FIELDS = {
    "db": "db",
    "table": "table",
    "addr": "addr",
    "user": "user",
    "passwd": "password",
    "concurrency": "concurrency",
    "txn": "txn_size",
    "rounds": "rounds",
    "seed": "seed",
    "time_zone": "time_zone",
    "log_file": "log_file",
    "log_level": "log_level",
}


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Build the CLI parser; unset flags stay None so config files can fill them."""
    defaults = RunConfig()
    parser = argparse.ArgumentParser(
        description="Drive a random INSERT/UPDATE/DELETE/REPLACE workload against an existing MySQL table.",
    )
    parser.add_argument("--config", help="TOML file with [target], [workload] and [logging] tables.")
    parser.add_argument("--db", help=f"Database name (default: {defaults.db}).")
    parser.add_argument("--table", help=f"Table name (default: {defaults.table}).")
    parser.add_argument("--addr", help=f"Database address host:port (default: {defaults.addr}).")
    parser.add_argument("--user", help=f"User name (default: {defaults.user}).")
    parser.add_argument("--passwd", help="Password (default: empty).")
    parser.add_argument("--concurrency", type=int, help=f"Worker count (default: {defaults.concurrency}).")
    parser.add_argument("--txn", type=int, help=f"Upper bound of statements per transaction (default: {defaults.txn_size}).")
    parser.add_argument("--rounds", type=int, help=f"Rounds of the five statement kinds (default: {defaults.rounds}).")
    parser.add_argument("--seed", type=int, help="RNG seed (default: time based).")
    parser.add_argument("--time-zone", help="IANA zone for generated DATETIME/TIMESTAMP values (default: host zone).")
    parser.add_argument("--log-file", help=f"Statement log file, rotated at 1 GiB (default: {defaults.log_file}).")
    parser.add_argument("--log-level", help=f"Log level (default: {defaults.log_level}).")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> RunConfig:
    """Defaults, then the TOML file, then explicit flags."""
    overrides: Dict[str, Any] = {}
    if args.config:
        overrides.update(load_config_file(Path(args.config).expanduser()))
    for dest, name in FLAG_FIELDS.items():
        value = getattr(args, dest)
        if value is not None:
            overrides[name] = value
    return RunConfig().with_overrides(overrides)


def configure_logging(config: RunConfig) -> Optional[Path]:
    """Log to stdout and, when a file is configured, to a size-rotated file."""
    log_level = getattr(logging, config.log_level.strip().upper())
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    log_path: Optional[Path] = None
    if config.log_file:
        log_path = Path(config.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(log_path, maxBytes=LOG_MAX_BYTES, backupCount=5))

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
    return log_path


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        config = build_config(args)
    except WorkloadError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    log_path = configure_logging(config)
    if log_path:
        logging.info("Logging to %s", log_path)
    try:
        run(config)
    except WorkloadError as exc:
        logging.error("fatal: %s", exc)
        return 1
    except KeyboardInterrupt:
        logging.warning("interrupted")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
