from typing import Any

import pytest

from row_metrics.app_config import DatabaseTarget


@pytest.fixture
def make_target():
    def _make(name: str = "orders", dialect: str = "mysql", **overrides: Any) -> DatabaseTarget:
        payload: dict[str, Any] = {
            "name": name,
            "type": dialect,
            "host": "db.internal",
            "user": "metrics",
            "password": "secret",
            "database": "shop",
        }
        payload.update(overrides)
        return DatabaseTarget.model_validate(payload)

    return _make
