import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from core.settings import DIMENSION_NAME, METRIC_UNIT
from row_metrics.app_config import PublisherConfig
from row_metrics.domain import CounterKind, Delta, RowMetricsError

logger = logging.getLogger(__name__)


class PublishError(RowMetricsError):
    pass


class PublisherSessionError(PublishError):
    pass


class PublisherCredentialsError(PublishError):
    pass


@dataclass(frozen=True)
class MetricPoint:
    name: str
    value: float
    namespace: str
    dimension_value: str
    counter_kind: CounterKind
    dimension_name: str = DIMENSION_NAME
    unit: str = METRIC_UNIT

    def to_metric_datum(self) -> dict[str, Any]:
        return {
            "MetricName": self.name,
            "Unit": self.unit,
            "Value": self.value,
            "Dimensions": [{"Name": self.dimension_name, "Value": self.dimension_value}],
        }


@dataclass(frozen=True)
class PublishReport:
    published: int = 0
    failed: int = 0


def build_metric_points(deltas: Mapping[str, Delta], namespace: str) -> list[MetricPoint]:
    """One point per (database, table, delta), both counter kinds."""
    points: list[MetricPoint] = []
    for database_name, delta in deltas.items():
        for counter_kind, counts in (
            (CounterKind.INCREMENT, delta.increment_counts),
            (CounterKind.ROW, delta.row_counts),
        ):
            for table_name, difference in counts.items():
                points.append(
                    MetricPoint(
                        name=table_name,
                        value=float(difference),
                        namespace=namespace,
                        dimension_value=database_name,
                        counter_kind=counter_kind,
                    )
                )
    return points


class CloudWatchPublisher:
    """
    Pushes deltas to CloudWatch, one PutMetricData call per point.

    Session and credential problems abort the whole publish before anything is
    sent. A failed point is logged and the remaining points still go out.
    """

    def __init__(self, config: PublisherConfig, session_factory: Callable[..., Any] = boto3.Session):
        self.config = config
        self.session_factory = session_factory

    @property
    def namespace(self) -> str:
        return self.config.resolved_namespace

    def _session_kwargs(self) -> dict[str, str]:
        kwargs: dict[str, str] = {}
        if self.config.region:
            kwargs["region_name"] = self.config.region
        if self.config.has_static_credentials:
            kwargs["aws_access_key_id"] = self.config.access_key_id
            kwargs["aws_secret_access_key"] = self.config.secret_access_key
            if self.config.session_token:
                kwargs["aws_session_token"] = self.config.session_token
        return kwargs

    def _create_client(self) -> Any:
        try:
            session = self.session_factory(**self._session_kwargs())
        except (BotoCoreError, ClientError) as e:
            raise PublisherSessionError(f"Failed to create AWS session: {e}") from e

        try:
            credentials = session.get_credentials()
            if credentials is None:
                raise PublisherCredentialsError("No AWS credentials found")
            credentials.get_frozen_credentials()
        except (BotoCoreError, ClientError) as e:
            raise PublisherCredentialsError(f"Failed to resolve AWS credentials: {e}") from e

        client_kwargs: dict[str, str] = {}
        if self.config.endpoint_url:
            client_kwargs["endpoint_url"] = self.config.endpoint_url

        try:
            return session.client("cloudwatch", **client_kwargs)
        except (BotoCoreError, ClientError) as e:
            raise PublisherSessionError(f"Failed to create CloudWatch client: {e}") from e

    def publish(self, deltas: Mapping[str, Delta]) -> PublishReport:
        points = build_metric_points(deltas, self.namespace)
        if not points:
            logger.info("No metric points to publish")
            return PublishReport()

        client = self._create_client()

        published = 0
        failed = 0
        for point in points:
            try:
                client.put_metric_data(Namespace=point.namespace, MetricData=[point.to_metric_datum()])
            except (BotoCoreError, ClientError) as e:
                failed += 1
                logger.error("Failed to push CloudWatch metric for table %s in database %s with difference %d: %s",
                             point.name, point.dimension_value, point.value, e)
                continue

            published += 1
            logger.info("Pushed CloudWatch metric for table %s in database %s with difference %d",
                        point.name, point.dimension_value, point.value)

        logger.info("Published %s metric points to namespace %s (%s failed)", published, self.namespace, failed)
        return PublishReport(published=published, failed=failed)
