import logging
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from core.settings import DEFAULT_MYSQL_PORT, DEFAULT_NAMESPACE, DEFAULT_POSTGRES_PORT
from row_metrics.dialects import Dialect, get_dialect_strategy
from row_metrics.domain import RowMetricsError

logger = logging.getLogger(__name__)


class ConfigurationError(RowMetricsError):
    pass


class StrictBaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True, frozen=True, populate_by_name=True)


class TableSets(StrictBaseModel):
    # AUTO_INCREMENT watermark tables
    increment: list[str] = Field(default_factory=list)
    # approximate row count tables (less accurate)
    row: list[str] = Field(default_factory=list)

    @field_validator("increment", "row", mode="before")
    @classmethod
    def none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class DatabaseTarget(StrictBaseModel):
    name: str = Field(min_length=1)
    dialect: Dialect = Field(default=Dialect.MYSQL, alias="type")
    host: str
    port: int | None = None
    user: str = ""
    password: str = Field(default="", repr=False)
    database: str = ""
    schema_name: str | None = Field(default=None, alias="schema")
    tables: TableSets = Field(default_factory=TableSets)

    @field_validator("dialect", mode="before")
    @classmethod
    def parse_dialect(cls, value: Any) -> Dialect:
        dialect = Dialect.parse(value)
        if dialect is None:
            logger.warning("Unknown database type '%s', falling back to %s", value, Dialect.MYSQL.value)
            return Dialect.MYSQL
        return dialect

    @property
    def resolved_schema(self) -> str:
        if self.schema_name:
            return self.schema_name
        return get_dialect_strategy(self.dialect).default_schema(self.database)

    @property
    def endpoint(self) -> tuple[str, int]:
        """
        (hostname, port); `host` may carry the port as `host:port`.

        IPv6 literals carry a port only in the bracketed `[addr]:port` form;
        a bare `::1` is a hostname.
        """
        hostname, port_text = self.host, ""
        if self.host.startswith("[") and "]" in self.host:
            hostname, _, rest = self.host[1:].partition("]")
            if rest.startswith(":") and rest[1:].isdigit():
                port_text = rest[1:]
        elif self.host.count(":") == 1:
            name, _, text = self.host.partition(":")
            if name and text.isdigit():
                hostname, port_text = name, text

        if self.port is not None:
            return hostname, self.port
        if port_text:
            return hostname, int(port_text)
        if self.dialect is Dialect.POSTGRES:
            return hostname, DEFAULT_POSTGRES_PORT
        return hostname, DEFAULT_MYSQL_PORT


class PublisherConfig(StrictBaseModel):
    """
    CloudWatch settings. Every field is optional.

    Explicit keys take precedence; without them boto3 resolves credentials the
    usual way (environment -> shared credentials file -> instance role).
    """
    region: str | None = None
    access_key_id: str | None = Field(default=None, alias="accessKeyId")
    secret_access_key: str | None = Field(default=None, alias="secretAccessKey", repr=False)
    session_token: str | None = Field(default=None, alias="sessionToken", repr=False)
    namespace: str | None = None
    endpoint_url: str | None = Field(default=None, alias="endpointUrl")

    @model_validator(mode="after")
    def validate_keys(self) -> Self:
        if bool(self.access_key_id) ^ bool(self.secret_access_key):
            raise ValueError("accessKeyId and secretAccessKey must be specified together")
        return self

    @property
    def has_static_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    @property
    def resolved_namespace(self) -> str:
        return self.namespace or DEFAULT_NAMESPACE


class ApplicationConfig(StrictBaseModel):
    count_path: str = Field(alias="countPath", min_length=1)
    aws: PublisherConfig = Field(default_factory=PublisherConfig)
    databases: list[DatabaseTarget] = Field(default_factory=list)

    @field_validator("aws", mode="before")
    @classmethod
    def none_is_default(cls, value: Any) -> Any:
        return {} if value is None else value

    @model_validator(mode="after")
    def validate_databases(self) -> Self:
        names = [database.name for database in self.databases]
        if duplicates := {name for name in names if names.count(name) > 1}:
            raise ValueError(f"Duplicate database names found in databases: {sorted(duplicates)}")
        return self

    @property
    def snapshot_path(self) -> Path:
        return Path(self.count_path)


def load_application_config(file_path: Path | str) -> ApplicationConfig:
    file_path = Path(file_path)
    try:
        with open(file_path, "r", encoding="utf-8") as file:
            config_yaml = yaml.safe_load(file)
    except OSError as e:
        raise ConfigurationError(f"Cannot read application config {file_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in application config {file_path}: {e}") from e

    if not isinstance(config_yaml, dict):
        raise ConfigurationError(f"Application config {file_path} must be a mapping")

    try:
        config = ApplicationConfig.model_validate(config_yaml)
    except ValidationError as e:
        raise ConfigurationError(f"Error loading application config from {file_path}: {e}") from e

    if not config.databases:
        logger.warning("No databases configured in %s", file_path)

    logger.debug("Loaded application config from %s with %s databases", file_path, len(config.databases))
    return config
