import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from row_metrics.domain import RowMetricsError, Snapshot, SnapshotCollection

logger = logging.getLogger(__name__)


class SnapshotStoreError(RowMetricsError):
    pass


class SnapshotRecord(BaseModel):
    """On-disk shape of one database's counts."""
    model_config = ConfigDict(extra="forbid", strict=True)

    increment: dict[str, int] = Field(default_factory=dict)
    row: dict[str, int] = Field(default_factory=dict)

    @field_validator("increment", "row", mode="before")
    @classmethod
    def none_is_empty(cls, value: object) -> object:
        return {} if value is None else value

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> "SnapshotRecord":
        return cls(increment=dict(snapshot.increment_counts), row=dict(snapshot.row_counts))

    def to_snapshot(self) -> Snapshot:
        return Snapshot(increment_counts=self.increment, row_counts=self.row)


class SnapshotStore:
    """
    The last run's counters, kept in a single YAML file.

    File layout:
      <database name>:
        increment: {<table>: <count>, ...}
        row:       {<table>: <count>, ...}

    The file is the only state carried between runs. `save` replaces it
    wholesale; nothing is merged.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> SnapshotCollection | None:
        """Returns None when no file exists yet (first run)."""
        if not self.exists():
            logger.info("No snapshot file at %s", self.path)
            return None

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                payload = yaml.safe_load(f)
        except OSError as e:
            raise SnapshotStoreError(f"Cannot read snapshot file {self.path}: {e}") from e
        except yaml.YAMLError as e:
            raise SnapshotStoreError(f"Invalid YAML in snapshot file {self.path}: {e}") from e

        if payload is None:
            return {}
        if not isinstance(payload, dict):
            raise SnapshotStoreError(f"Snapshot file {self.path} must contain a mapping, got {type(payload).__name__}")

        collection: SnapshotCollection = {}
        for name, record in payload.items():
            try:
                collection[str(name)] = SnapshotRecord.model_validate(record or {}).to_snapshot()
            except ValidationError as e:
                raise SnapshotStoreError(f"Invalid counts for database {name} in {self.path}: {e}") from e

        logger.debug("Loaded snapshots for %s databases from %s", len(collection), self.path)
        return collection

    def save(self, collection: SnapshotCollection) -> None:
        """Writes the file atomically: tmp -> rename."""
        payload = {
            name: SnapshotRecord.from_snapshot(snapshot).model_dump()
            for name, snapshot in collection.items()
        }

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_name(self.path.name + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(payload, f, default_flow_style=False, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise SnapshotStoreError(f"Cannot write snapshot file {self.path}: {e}") from e

        logger.info("Saved snapshots for %s databases to %s", len(collection), self.path)
