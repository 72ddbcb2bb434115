import sqlite3
from unittest.mock import patch

import pytest

from simpledb.providers.postgres import PostgreSQLProvider
from simpledb.providers.sqlite import SQLiteProvider
from simpledb.utils import drivers
from simpledb.utils.drivers import load_driver, loaded_drivers, reset_drivers
from simpledb.utils.errors import (
    ConfigurationError,
    ConnectivityError,
    DriverNotInstalledError,
    ErrorKind,
    OperationNotSupportedError,
    SafetyViolationError,
    SimpleDBError,
)


@pytest.fixture(autouse=True)
def clean_driver_cache():
    reset_drivers()
    yield
    reset_drivers()


class TestSimpleDBError:
    """Test error payloads and terminal formatting."""

    def test_to_dict(self):
        error = ConnectivityError(
            "Connection refused", solutions=["Start the server"], engine="postgresql"
        )

        assert error.to_dict() == {
            "error": True,
            "kind": "connectivity",
            "title": "Connection Failed",
            "message": "Connection refused",
            "solutions": ["Start the server"],
            "engine": "postgresql",
        }
        assert str(error) == "Connection refused"

    def test_format_for_user(self):
        error = SafetyViolationError("Identifier is required", solutions=["Pick a row", "Retry"])
        assert error.format_for_user() == (
            "Operation Refused: Identifier is required\n\nHow to fix:\n1. Pick a row\n2. Retry"
        )

    def test_format_without_solutions(self):
        assert ConfigurationError("bad").format_for_user() == "Configuration Error: bad"

    def test_not_supported_is_a_safety_violation(self):
        error = OperationNotSupportedError("Import is not supported")
        assert isinstance(error, SafetyViolationError)
        assert error.kind is ErrorKind.SAFETY_VIOLATION

    def test_driver_error_is_configuration(self):
        error = DriverNotInstalledError("missing")
        assert isinstance(error, ConfigurationError)
        assert isinstance(error, SimpleDBError)


class TestDrivers:
    def test_loads_once(self):
        first = load_driver("aiosqlite")
        with patch.object(drivers.importlib, "import_module") as import_module:
            assert load_driver("aiosqlite") is first
        import_module.assert_not_called()
        assert "aiosqlite" in loaded_drivers()

    def test_missing_driver_names_package(self):
        with patch.object(
            drivers.importlib, "import_module", side_effect=ImportError("No module named 'x'")
        ):
            with pytest.raises(DriverNotInstalledError) as exc_info:
                load_driver("libsql_client")

        message = str(exc_info.value)
        assert "libsql-client is required" in message
        assert "pip install libsql-client" in message
        assert "libsql_client" not in loaded_drivers()

    @pytest.mark.asyncio
    async def test_missing_driver_does_not_affect_other_engines(self, tmp_path):
        real_import = drivers.importlib.import_module

        def import_module(name):
            if name == "asyncpg":
                raise ImportError("No module named 'asyncpg'")
            return real_import(name)

        db = str(tmp_path / "ok.db")
        conn = sqlite3.connect(db)
        conn.execute("CREATE TABLE t (a TEXT)")
        conn.commit()
        conn.close()

        with patch.object(drivers.importlib, "import_module", side_effect=import_module):
            with pytest.raises(DriverNotInstalledError, match="pip install asyncpg"):
                await PostgreSQLProvider().list_tables("postgresql://localhost/db")

            assert await SQLiteProvider().list_tables(db) == ["t"]
