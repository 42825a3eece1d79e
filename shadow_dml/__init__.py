"""Random DML workload generator with a shadow mirror of committed rows."""

from .columns import ColumnDescriptor, ColumnKind, ValueAssignment, ValueGenerator, parse_column
from .config import RunConfig
from .errors import (
    ConfigError,
    ConnectionExhaustedError,
    SchemaError,
    UnknownColumnTypeError,
    WorkloadError,
)
from .shadow import ShadowTable
from .tasks import TaskKind

__all__ = [
    "ColumnDescriptor",
    "ColumnKind",
    "ConfigError",
    "ConnectionExhaustedError",
    "RunConfig",
    "SchemaError",
    "ShadowTable",
    "TaskKind",
    "UnknownColumnTypeError",
    "ValueAssignment",
    "ValueGenerator",
    "WorkloadError",
    "parse_column",
]

__version__ = "0.1.0"
