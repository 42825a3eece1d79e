"""Run configuration: defaults, TOML overrides and validation."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

try:  # Python 3.11+
    import tomllib  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - fallback for 3.10
    import tomli as tomllib  # type: ignore

from .columns import resolve_time_zone
from .errors import ConfigError

DEFAULT_MYSQL_PORT = 3306

LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR"})

# TOML section -> {toml key: RunConfig field}
CONFIG_SECTIONS: Dict[str, Dict[str, str]] = {
    "target": {
        "db": "db",
        "table": "table",
        "addr": "addr",
        "user": "user",
        "password": "password",
    },
    "workload": {
        "concurrency": "concurrency",
        "txn": "txn_size",
        "rounds": "rounds",
        "reconnect_probability": "reconnect_probability",
        "dial_attempts": "dial_attempts",
        "seed": "seed",
        "time_zone": "time_zone",
    },
    "logging": {
        "file": "log_file",
        "level": "log_level",
    },
}


@dataclass(frozen=True)
class RunConfig:
    db: str = "test"
    table: str = "t"
    addr: str = "127.0.0.1:4000"
    user: str = "root"
    password: str = ""
    concurrency: int = 12
    txn_size: int = 50
    rounds: int = 1_000_000
    reconnect_probability: float = 0.001
    dial_attempts: int = 20
    seed: Optional[int] = None
    time_zone: Optional[str] = None
    log_file: Optional[str] = "gen_data.log"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        for name in ("concurrency", "txn_size", "rounds", "dial_attempts"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 1:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")
        if not 0.0 <= self.reconnect_probability <= 1.0:
            raise ConfigError(
                f"reconnect_probability must be within [0, 1], got {self.reconnect_probability!r}"
            )
        if not self.db or not self.table:
            raise ConfigError("both db and table must be set")
        split_addr(self.addr)
        if not isinstance(self.log_level, str) or self.log_level.strip().upper() not in LOG_LEVELS:
            raise ConfigError(f"unsupported log_level: {self.log_level!r}")
        if self.time_zone:
            resolve_time_zone(self.time_zone)

    @property
    def host(self) -> str:
        return split_addr(self.addr)[0]

    @property
    def port(self) -> int:
        return split_addr(self.addr)[1]

    def with_overrides(self, overrides: Dict[str, Any]) -> "RunConfig":
        """Return a copy with every non-None override applied."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigError(f"unknown config keys: {', '.join(sorted(unknown))}")
        values = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **values)


def split_addr(addr: str) -> Tuple[str, int]:
    """Split ``host:port`` into its parts; the port defaults to MySQL's."""
    host, sep, port = addr.rpartition(":")
    if not sep:
        return addr, DEFAULT_MYSQL_PORT
    if not host:
        raise ConfigError(f"missing host in address {addr!r}")
    try:
        port_num = int(port)
    except ValueError as exc:
        raise ConfigError(f"invalid port in address {addr!r}") from exc
    if not 0 < port_num < 65536:
        raise ConfigError(f"invalid port in address {addr!r}")
    return host, port_num


def load_config_file(path: Path) -> Dict[str, Any]:
    """Read a TOML config file and flatten it into RunConfig overrides."""
    if not path.exists():
        raise ConfigError(f"config file {path} not found")
    try:
        raw = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"failed to parse {path}: {exc}") from exc

    overrides: Dict[str, Any] = {}
    for section, keys in CONFIG_SECTIONS.items():
        table = raw.get(section, {})
        if not isinstance(table, dict):
            raise ConfigError(f"[{section}] in {path} must be a table")
        for key, value in table.items():
            if key not in keys:
                raise ConfigError(f"unknown key {key!r} in [{section}] of {path}")
            overrides[keys[key]] = value
    return overrides
