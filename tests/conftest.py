"""Pytest configuration and fixtures for SimpleDB tests."""

import json
import logging
import os
from unittest.mock import patch

import pytest

from simpledb.config.settings import Settings
from simpledb.providers.registry import reset_registry


@pytest.fixture(autouse=True)
def mock_environment_variables():
    """Pin settings so a developer's .env cannot change test behaviour."""
    env_vars = {
        "SIMPLEDB_LOG_LEVEL": "ERROR",
        "SIMPLEDB_TIMEOUT": "5",
        "SIMPLEDB_REDIS_SCAN_COUNT": "500",
        "SIMPLEDB_MONGO_QUERY_LIMIT": "1000",
        "SIMPLEDB_MONGO_DEFAULT_DB": "test",
        "SIMPLEDB_STRICT_CSV": "false",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        Settings.refresh_from_env()
        yield
    Settings.refresh_from_env()


@pytest.fixture(autouse=True)
def fresh_registry():
    reset_registry()
    yield
    reset_registry()


@pytest.fixture
def users_json(tmp_path):
    """Two users as a JSON import file."""
    path = tmp_path / "users.json"
    path.write_text(
        json.dumps(
            [
                {"id": "1", "name": "Ann", "email": "ann@example.com"},
                {"id": "2", "name": "Bob", "email": "bob@example.com"},
            ]
        )
    )
    return path


@pytest.fixture
def cities_csv(tmp_path):
    path = tmp_path / "cities.csv"
    path.write_text(
        'id,name,country\n1,Lisbon,Portugal\n2,"Washington, D.C.",USA\n\n3,Kyoto,Japan\n'
    )
    return path


# Disable logging to reduce noise during tests
logging.getLogger().setLevel(logging.ERROR)
