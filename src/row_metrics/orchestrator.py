from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Mapping, Protocol, Sequence

from row_metrics.app_config import DatabaseTarget
from row_metrics.connections import TargetConnectionError
from row_metrics.delta import diff_collections
from row_metrics.domain import Delta, RunContext, Snapshot, SnapshotCollection
from row_metrics.publisher import PublishError, PublishReport
from row_metrics.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


class Collector(Protocol):
    def collect(self, target: DatabaseTarget) -> Snapshot:
        ...


class Publisher(Protocol):
    def publish(self, deltas: Mapping[str, Delta]) -> PublishReport:
        ...


@dataclass(frozen=True)
class OrchestrationConfig:
    max_parallel_collections: int = 1
    abort_on_connection_failure: bool = False


@dataclass
class RunReport:
    run_id: str
    first_run: bool = False
    collected: SnapshotCollection = field(default_factory=dict)
    skipped_targets: list[str] = field(default_factory=list)
    deltas: dict[str, Delta] = field(default_factory=dict)
    publish_report: PublishReport | None = None


class Orchestrator:
    """
    Coordinates one run: collect -> load previous -> diff -> publish -> save.

    The snapshot file is the only state kept between runs. It is loaded once and
    overwritten once; publishing problems never prevent the save.
    """

    def __init__(
        self,
        *,
        targets: Sequence[DatabaseTarget],
        store: SnapshotStore,
        collector: Collector,
        publisher: Publisher,
        config: OrchestrationConfig = OrchestrationConfig(),
    ):
        self.targets = list(targets)
        self.store = store
        self.collector = collector
        self.publisher = publisher
        self.config = config

    def run(self, ctx: RunContext) -> RunReport:
        report = RunReport(run_id=ctx.run_id)
        logger.info("Run %s started for %s databases", ctx.run_id, len(self.targets))

        report.collected = self._collect_all(report)

        previous = self.store.load()

        try:
            if previous is None:
                report.first_run = True
                logger.info("No previous snapshots found; recording baseline without publishing")
            else:
                report.deltas = diff_collections(report.collected, previous)
                logger.info("Computed deltas for %s of %s databases", len(report.deltas), len(report.collected))
                try:
                    report.publish_report = self.publisher.publish(report.deltas)
                except PublishError:
                    logger.exception("Failed to push CloudWatch metrics")
        finally:
            self.store.save(report.collected)

        logger.info("Run %s complete.", ctx.run_id)
        return report

    def _collect_all(self, report: RunReport) -> SnapshotCollection:
        collected: SnapshotCollection = {}
        workers = max(1, self.config.max_parallel_collections)

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures: list[tuple[DatabaseTarget, Future[Snapshot]]] = [
                (target, executor.submit(self.collector.collect, target)) for target in self.targets
            ]

            # Results are gathered here only, in configuration order.
            for target, fut in futures:
                try:
                    collected[target.name] = fut.result()
                except TargetConnectionError:
                    if self.config.abort_on_connection_failure:
                        for _, pending in futures:
                            pending.cancel()
                        raise
                    logger.exception("Skipping database %s", target.name)
                    report.skipped_targets.append(target.name)
                    continue

                logger.info("Collected counters for database %s", target.name)

        return collected
