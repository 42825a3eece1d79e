"""Exception types raised by the workload harness."""

from __future__ import annotations


class WorkloadError(Exception):
    """Base class for fatal harness errors."""


class ConfigError(WorkloadError):
    """Raised when the run configuration is invalid."""


class UnknownColumnTypeError(WorkloadError):
    """Raised when a column type string cannot be mapped to a column kind."""

    def __init__(self, type_string: str, column: str) -> None:
        super().__init__(f"unknown column type: {type_string} of column {column}")
        self.type_string = type_string
        self.column = column


class SchemaError(WorkloadError):
    """Raised when the target table cannot be introspected."""


class ConnectionExhaustedError(WorkloadError):
    """Raised when every dial attempt against the server failed."""
