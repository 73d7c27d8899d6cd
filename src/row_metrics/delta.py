from typing import Mapping

from row_metrics.domain import Delta, Snapshot, SnapshotCollection


def _subtract(current: Mapping[str, int], previous: Mapping[str, int]) -> dict[str, int]:
    # Tables seen for the first time get 0, which establishes the baseline.
    return {
        table: count - previous[table] if table in previous else 0
        for table, count in current.items()
    }


def diff(current: Snapshot, previous: Snapshot) -> Delta:
    """
    Per-table `current - previous` for both counter kinds.

    Negative values are kept: a truncated or recreated table should show up as
    a drop on the graph, not be hidden.
    """
    return Delta(
        increment_counts=_subtract(current.increment_counts, previous.increment_counts),
        row_counts=_subtract(current.row_counts, previous.row_counts),
    )


def diff_collections(current: SnapshotCollection, previous: SnapshotCollection) -> dict[str, Delta]:
    """
    Deltas for every database present in both runs.

    Databases new in this run have no baseline and are skipped; databases that
    disappeared since the last run produce nothing.
    """
    return {
        name: diff(snapshot, previous[name])
        for name, snapshot in current.items()
        if name in previous
    }
