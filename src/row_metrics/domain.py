import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class RowMetricsError(Exception):
    """Base class for every error raised by row_metrics."""


class Severity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"

    @property
    def log_level(self) -> int:
        return logging.getLevelName(self.value)


@dataclass(frozen=True)
class Issue:
    """
    A non-fatal condition reported by a component that does no logging itself.

    The caller decides where the issue ends up (usually `Issue.log`).
    """
    severity: Severity
    message: str
    context: Mapping[str, Any] = field(default_factory=dict)

    def log(self, logger: logging.Logger) -> None:
        if self.context:
            details = ", ".join(f"{k}={v}" for k, v in sorted(self.context.items()))
            logger.log(self.severity.log_level, "%s (%s)", self.message, details)
        else:
            logger.log(self.severity.log_level, "%s", self.message)


class CounterKind(str, Enum):
    INCREMENT = "increment"
    ROW = "row"


def _freeze(counts: Mapping[str, int]) -> Mapping[str, int]:
    return MappingProxyType(dict(counts))


@dataclass(frozen=True)
class Snapshot:
    """
    Counters observed for one database target during one run.

    increment_counts:
      table name -> AUTO_INCREMENT watermark (or live tuple count on PostgreSQL)

    row_counts:
      table name -> approximate row count
    """
    increment_counts: Mapping[str, int] = field(default_factory=dict)
    row_counts: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "increment_counts", _freeze(self.increment_counts))
        object.__setattr__(self, "row_counts", _freeze(self.row_counts))


@dataclass(frozen=True)
class Delta:
    """Per-table `current - previous`, shaped like a Snapshot. Values may be negative."""
    increment_counts: Mapping[str, int] = field(default_factory=dict)
    row_counts: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "increment_counts", _freeze(self.increment_counts))
        object.__setattr__(self, "row_counts", _freeze(self.row_counts))


# database identifier -> Snapshot, one full run across all targets
SnapshotCollection = dict[str, Snapshot]


@dataclass(frozen=True)
class RunContext:
    """Per-run context."""
    run_id: str
