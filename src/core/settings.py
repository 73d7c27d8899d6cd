import os
from typing import Any
from pathlib import Path

# Paths
DEFAULT_CONFIG_PATH = Path(os.getenv("ROW_METRICS_CONFIG", "config.yml"))
LOG_FILENAME = "row_metrics.log"

# Metrics
DEFAULT_NAMESPACE = "RowMetrics"
DIMENSION_NAME = "DBInstanceIdentifier"
METRIC_UNIT = "Count"

# Databases
DEFAULT_MYSQL_PORT = 3306
DEFAULT_POSTGRES_PORT = 5432
DEFAULT_POSTGRES_SCHEMA = "public"
CONNECT_TIMEOUT_SECONDS = 10


# Logging Configuration

def build_logging_config(level: str = "INFO", log_folder: Path | None = None) -> dict[str, Any]:
    logging_config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(message)s"
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "level": level,
            },
        },
        "loggers": {
            "": {  # root logger
                "handlers": ["console"],
                "level": "DEBUG",
                "propagate": True
            },
        }
    }

    if log_folder is not None:
        os.makedirs(log_folder, exist_ok=True)
        logging_config["handlers"]["rotating_file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "standard",
            "level": "DEBUG",
            "filename": str(Path(log_folder) / LOG_FILENAME),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
            "encoding": "utf8",
        }
        logging_config["loggers"][""]["handlers"].append("rotating_file")

    return logging_config
