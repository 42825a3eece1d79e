"""Column type parsing and random value generation.

A column type string as reported by ``information_schema.columns.column_type``
(``int(11) unsigned``, ``decimal(10,2)``, ``enum('a','b')`` ...) is parsed into
an immutable :class:`ColumnDescriptor`. :class:`ValueGenerator` then draws
random values that fit the declared type, width, sign and precision.
"""

from __future__ import annotations

import enum
import json
import logging
import os
import random
import re
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pymysql.converters import escape_string

from .errors import ConfigError, UnknownColumnTypeError


class ColumnKind(enum.Enum):
    TINYINT = "tinyint"
    SMALLINT = "smallint"
    MEDIUMINT = "mediumint"
    INT = "int"
    BIGINT = "bigint"
    FLOAT = "float"
    DOUBLE = "double"
    DECIMAL = "decimal"
    BIT = "bit"
    BOOL = "bool"
    CHAR = "char"
    VARCHAR = "varchar"
    BINARY = "binary"
    VARBINARY = "varbinary"
    TINYTEXT = "tinytext"
    TEXT = "text"
    MEDIUMTEXT = "mediumtext"
    LONGTEXT = "longtext"
    TINYBLOB = "tinyblob"
    BLOB = "blob"
    MEDIUMBLOB = "mediumblob"
    LONGBLOB = "longblob"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    TIMESTAMP = "timestamp"
    YEAR = "year"
    ENUM = "enum"
    SET = "set"
    JSON = "json"


TYPE_NAMES: Dict[str, ColumnKind] = {kind.value: kind for kind in ColumnKind}
TYPE_NAMES.update(
    {
        "integer": ColumnKind.INT,
        "real": ColumnKind.DOUBLE,
        "numeric": ColumnKind.DECIMAL,
        "boolean": ColumnKind.BOOL,
    }
)

INTEGER_BITS: Dict[ColumnKind, int] = {
    ColumnKind.TINYINT: 8,
    ColumnKind.SMALLINT: 16,
    ColumnKind.MEDIUMINT: 24,
    ColumnKind.INT: 32,
    ColumnKind.BIGINT: 64,
}

STRING_KINDS = frozenset(
    {
        ColumnKind.CHAR,
        ColumnKind.VARCHAR,
        ColumnKind.BINARY,
        ColumnKind.VARBINARY,
        ColumnKind.TINYTEXT,
        ColumnKind.TEXT,
        ColumnKind.MEDIUMTEXT,
        ColumnKind.LONGTEXT,
        ColumnKind.TINYBLOB,
        ColumnKind.BLOB,
        ColumnKind.MEDIUMBLOB,
        ColumnKind.LONGBLOB,
    }
)

# MySQL's precision for a bare DECIMAL.
DEFAULT_DECIMAL_DIGITS = 10

MODIFIERS = frozenset({"unsigned", "signed", "zerofill"})

_TYPE_RE = re.compile(
    r"^(?P<name>[A-Za-z]+)\s*(?:\((?P<params>.*)\))?\s*(?P<modifiers>[A-Za-z ]*)$",
    re.DOTALL,
)
_MEMBER_RE = re.compile(r"'((?:[^']|'')*)'")

# [start, start + gap) in seconds, UTC.
DATETIME_MIN = datetime(1000, 1, 1, tzinfo=timezone.utc)
DATETIME_GAP = int((datetime(9999, 12, 31, 23, 59, 59, tzinfo=timezone.utc) - DATETIME_MIN).total_seconds())
TIMESTAMP_MIN = datetime(1970, 1, 1, 0, 0, 1, tzinfo=timezone.utc)
TIMESTAMP_GAP = int((datetime(2038, 1, 19, 3, 14, 7, tzinfo=timezone.utc) - TIMESTAMP_MIN).total_seconds())

YEAR_MIN = 1901
YEAR_MAX = 2155

LETTERS = string.ascii_lowercase + string.digits


@dataclass(frozen=True)
class ColumnDescriptor:
    name: str
    kind: ColumnKind
    m: int = 0  # VARCHAR(10) -> m=10
    d: int = 0  # DECIMAL(10,5) -> d=5
    unsigned: bool = False
    primary_key: bool = False
    default: Optional[str] = None
    members: Tuple[str, ...] = ()  # ENUM / SET values

    @property
    def quoted_name(self) -> str:
        return "`" + self.name.replace("`", "``") + "`"


@dataclass(frozen=True)
class ValueAssignment:
    """A column paired with a value, used for SET lists and WHERE anchors."""

    column: ColumnDescriptor
    value: Any

    def literal(self) -> str:
        if self.value is None:
            return "NULL"
        # make bit data visible
        if self.column.kind is ColumnKind.BIT:
            return f"b'{self.value}'"
        return "'" + escape_string(str(self.value)) + "'"

    def assignment_sql(self) -> str:
        return f"{self.column.quoted_name} = {self.literal()}"

    def condition_sql(self) -> str:
        name = self.column.quoted_name
        if self.value is None:
            return f"{name} IS NULL"
        if self.column.kind is ColumnKind.FLOAT:
            return f"abs({name} - {self.literal()}) < 0.0000001"
        if self.column.kind is ColumnKind.DOUBLE:
            return f"abs({name} - {self.literal()}) < 0.0000000000000001"
        if self.column.kind is ColumnKind.JSON:
            return f"{name} = CAST({self.literal()} AS JSON)"
        return f"{name} = {self.literal()}"


def parse_column(
    name: str,
    type_string: str,
    *,
    primary_key: bool = False,
    default: Optional[str] = None,
) -> ColumnDescriptor:
    """Parse ``type_string`` into a descriptor for column ``name``."""
    match = _TYPE_RE.match(type_string.strip())
    if not match:
        raise UnknownColumnTypeError(type_string, name)

    kind = TYPE_NAMES.get(match.group("name").lower())
    modifiers = match.group("modifiers").lower().split()
    if kind is None or any(word not in MODIFIERS for word in modifiers):
        raise UnknownColumnTypeError(type_string, name)

    unsigned = "unsigned" in modifiers
    params = match.group("params")
    m = d = 0
    members: Tuple[str, ...] = ()

    if kind in (ColumnKind.ENUM, ColumnKind.SET):
        if not params:
            raise UnknownColumnTypeError(type_string, name)
        members = tuple(value.replace("''", "'") for value in _MEMBER_RE.findall(params))
    elif params is not None:
        nums = [part.strip() for part in params.split(",")]
        try:
            m = int(nums[0])
            if len(nums) > 1:
                d = int(nums[1])
        except ValueError as exc:
            raise UnknownColumnTypeError(type_string, name) from exc

    if kind is ColumnKind.DECIMAL and params is None:
        m = DEFAULT_DECIMAL_DIGITS

    return ColumnDescriptor(
        name=name,
        kind=kind,
        m=m,
        d=d,
        unsigned=unsigned,
        primary_key=primary_key,
        default=default,
        members=members,
    )


def resolve_time_zone(name: Optional[str] = None) -> tzinfo:
    """Return the zone generated DATETIME/TIMESTAMP values are expressed in."""
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigError(f"unknown time zone {name!r}") from exc

    env_name = os.environ.get("TZ", "").lstrip(":")
    if env_name:
        try:
            return ZoneInfo(env_name)
        except (ZoneInfoNotFoundError, ValueError):
            logging.warning("TZ=%s is not a known zone; falling back to /etc/localtime", env_name)

    localtime = Path("/etc/localtime")
    if localtime.exists():
        with localtime.open("rb") as fh:
            return ZoneInfo.from_file(fh, key="localtime")
    return timezone.utc


def is_ambiguous(wall_time: datetime, zone: tzinfo) -> bool:
    """True when ``wall_time`` is repeated or skipped by a DST transition in ``zone``."""
    naive = wall_time.replace(tzinfo=None)
    return zone.utcoffset(naive.replace(fold=0)) != zone.utcoffset(naive.replace(fold=1))


def rand_seq(rng: random.Random, n: int) -> str:
    return "".join(rng.choice(LETTERS) for _ in range(n))


def rand_digits(rng: random.Random, n: int) -> str:
    return "".join(rng.choice(string.digits) for _ in range(n))


def _scaled(value: float, d: int) -> float:
    """Round to the declared scale of FLOAT(M,D) / DOUBLE(M,D)."""
    return round(value, d) if d > 0 else value


def rand_decimal(rng: random.Random, m: int, d: int) -> str:
    """Random fixed-point literal with ``m - d`` integer and ``d`` fraction digits.

    Leading zeros of the integer part are dropped (keeping a single ``0``), and
    a value that is exactly zero never carries a minus sign.
    """
    int_digits = rand_digits(rng, max(m - d, 0))
    frac_digits = rand_digits(rng, max(d, 0))
    int_part = int_digits.lstrip("0") or "0"

    negative = rng.randrange(2) == 1
    if not (int_digits + frac_digits).strip("0"):
        negative = False

    value = ("-" if negative else "") + int_part
    if frac_digits:
        value += "." + frac_digits
    return value


class ValueGenerator:
    """Draws random column values from its own random source."""

    def __init__(self, rng: Optional[random.Random] = None, zone: Optional[tzinfo] = None) -> None:
        self.rng = rng or random.Random()
        self.zone = zone or timezone.utc

    def value(self, column: ColumnDescriptor) -> Any:
        """Return one random value that fits ``column``."""
        rng = self.rng
        kind = column.kind

        if kind in INTEGER_BITS:
            bits = INTEGER_BITS[kind]
            if column.unsigned:
                return rng.randrange(0, 1 << bits)
            return rng.randrange(-(1 << (bits - 1)), 1 << (bits - 1))
        if kind is ColumnKind.FLOAT:
            # exact single precision value in [1, 2)
            return _scaled(1.0 + rng.getrandbits(23) / (1 << 23), column.d)
        if kind is ColumnKind.DOUBLE:
            return _scaled(1.0 + rng.getrandbits(52) / (1 << 52), column.d)
        if kind is ColumnKind.DECIMAL:
            value = rand_decimal(rng, column.m, column.d)
            if column.unsigned:
                return value.lstrip("-")
            return value
        if kind in STRING_KINDS:
            if column.m == 0:
                return ""
            value = rand_seq(rng, rng.randrange(column.m))
            if kind is ColumnKind.BINARY:
                # the server right-pads BINARY(n) with 0x00
                return value.ljust(column.m, "\0")
            return value
        if kind is ColumnKind.BOOL:
            return rng.randrange(2)
        if kind is ColumnKind.BIT:
            return self._bit(column.m)
        if kind is ColumnKind.DATE:
            return self._local_time(DATETIME_MIN, DATETIME_GAP).date().isoformat()
        if kind is ColumnKind.TIME:
            return self._local_time(TIMESTAMP_MIN, TIMESTAMP_GAP).time().isoformat()
        if kind is ColumnKind.DATETIME:
            return self._local_time(DATETIME_MIN, DATETIME_GAP, reject_ambiguous=True).isoformat(sep=" ")
        if kind is ColumnKind.TIMESTAMP:
            return self._local_time(TIMESTAMP_MIN, TIMESTAMP_GAP, reject_ambiguous=True).isoformat(sep=" ")
        if kind is ColumnKind.YEAR:
            return rng.randrange(YEAR_MIN, YEAR_MAX)
        if kind is ColumnKind.ENUM:
            return rng.choice(column.members) if column.members else ""
        if kind is ColumnKind.SET:
            return ",".join(member for member in column.members if rng.randrange(2))
        if kind is ColumnKind.JSON:
            doc = {rand_seq(rng, rng.randint(1, 8)): rng.randrange(1000) for _ in range(rng.randint(0, 3))}
            return json.dumps(doc, sort_keys=True)
        raise UnknownColumnTypeError(kind.value, column.name)

    def _bit(self, width: int) -> str:
        if width >= 64:
            return format(self.rng.getrandbits(64), "b")
        # Widths above 7 lose their top bit; kept as-is, see DESIGN.md.
        if width > 7:
            width -= 1
        bound = (1 << width) - 1
        if bound <= 0:
            return "0"
        return format(self.rng.randrange(bound), "b")

    def _local_time(self, start: datetime, gap: int, *, reject_ambiguous: bool = False) -> datetime:
        """Random instant in ``[start, start + gap)`` as a naive local wall time."""
        while True:
            instant = start + timedelta(seconds=self.rng.randrange(gap))
            try:
                local = instant.astimezone(self.zone).replace(tzinfo=None)
            except (OverflowError, ValueError):
                continue
            if reject_ambiguous and is_ambiguous(local, self.zone):
                continue
            return local
