import logging
import uuid
from enum import Enum
from logging.config import dictConfig
from pathlib import Path
from typing import Annotated, Optional

import typer

from core.settings import DEFAULT_CONFIG_PATH, build_logging_config
from row_metrics.app_config import ConfigurationError, load_application_config
from row_metrics.collector import SnapshotCollector
from row_metrics.connections import TargetConnectionError
from row_metrics.domain import RunContext
from row_metrics.orchestrator import OrchestrationConfig, Orchestrator
from row_metrics.publisher import CloudWatchPublisher
from row_metrics.snapshot_store import SnapshotStore, SnapshotStoreError

logger = logging.getLogger(__name__)


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


app = typer.Typer(add_completion=False, help="Publish table row/insert deltas to CloudWatch.")


@app.command()
def run(
    config: Annotated[Path, typer.Option("--config", "-c", help="Path to the application config YAML file")] = DEFAULT_CONFIG_PATH,
    log_level: Annotated[
        LogLevel, typer.Option("--log-level", case_sensitive=False, help="Console log level")
    ] = LogLevel.INFO,
    log_dir: Annotated[Optional[Path], typer.Option("--log-dir", help="Also write a rotating log file here")] = None,
    parallel: Annotated[int, typer.Option("--parallel", min=1, help="Databases to collect concurrently")] = 1,
    abort_on_connection_failure: Annotated[
        bool, typer.Option("--abort-on-connection-failure", help="Stop the run when any database is unreachable")
    ] = False,
) -> None:
    """Collect counters, publish deltas since the last run, save the new counts."""
    dictConfig(build_logging_config(level=log_level.value, log_folder=log_dir))

    try:
        application_config = load_application_config(config)
        orchestrator = Orchestrator(
            targets=application_config.databases,
            store=SnapshotStore(application_config.snapshot_path),
            collector=SnapshotCollector(),
            publisher=CloudWatchPublisher(application_config.aws),
            config=OrchestrationConfig(
                max_parallel_collections=parallel,
                abort_on_connection_failure=abort_on_connection_failure,
            ),
        )
        orchestrator.run(RunContext(run_id=uuid.uuid4().hex[:12]))
    except ConfigurationError as e:
        logger.critical("FATAL: Failed to load application config: %s", e)
        raise typer.Exit(code=1)
    except SnapshotStoreError as e:
        logger.critical("FATAL: Snapshot file error: %s", e)
        raise typer.Exit(code=1)
    except TargetConnectionError as e:
        logger.critical("FATAL: %s", e)
        raise typer.Exit(code=1)


def main() -> None:
    app()
