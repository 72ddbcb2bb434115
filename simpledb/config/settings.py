"""Provider settings resolved from the environment and an optional .env file."""

from __future__ import annotations

import logging
import os
from typing import Any, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _value_from_sources(key: str, default: Any = None) -> Any:
    env_val = os.getenv(key)
    if env_val is not None:
        return env_val
    return default


def _as_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value
    return str(value)


def _as_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        return normalized in {"1", "true", "yes", "on"}
    return default


def _as_int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (ValueError, TypeError):
        return default


def _as_float(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except (ValueError, TypeError):
        return default


class Settings:
    """Runtime knobs shared by every provider."""

    SIMPLEDB_LOG_LEVEL: str = "WARNING"

    # Seconds; applied to connect and command timeouts of each driver
    SIMPLEDB_TIMEOUT: float = 30.0

    SIMPLEDB_REDIS_SCAN_COUNT: int = 500
    SIMPLEDB_MONGO_QUERY_LIMIT: int = 1000
    SIMPLEDB_MONGO_DEFAULT_DB: str = "test"

    SIMPLEDB_STRICT_CSV: bool = False

    @classmethod
    def _populate(cls) -> None:
        cls.SIMPLEDB_LOG_LEVEL = _as_str(
            _value_from_sources("SIMPLEDB_LOG_LEVEL", "WARNING"), "WARNING"
        ).upper()

        timeout = _as_float(_value_from_sources("SIMPLEDB_TIMEOUT"), 30.0)
        cls.SIMPLEDB_TIMEOUT = timeout if timeout > 0 else 30.0

        scan_count = _as_int(_value_from_sources("SIMPLEDB_REDIS_SCAN_COUNT"), 500)
        cls.SIMPLEDB_REDIS_SCAN_COUNT = scan_count if scan_count > 0 else 500

        query_limit = _as_int(_value_from_sources("SIMPLEDB_MONGO_QUERY_LIMIT"), 1000)
        cls.SIMPLEDB_MONGO_QUERY_LIMIT = query_limit if query_limit > 0 else 1000

        cls.SIMPLEDB_MONGO_DEFAULT_DB = _as_str(
            _value_from_sources("SIMPLEDB_MONGO_DEFAULT_DB", "test"), "test"
        )

        cls.SIMPLEDB_STRICT_CSV = _as_bool(_value_from_sources("SIMPLEDB_STRICT_CSV"), False)

    @classmethod
    def refresh_from_env(cls) -> None:
        cls._populate()

    @classmethod
    def log_config(cls) -> None:
        logger.info("SimpleDB Configuration:")
        logger.info(f"  Log Level: {cls.SIMPLEDB_LOG_LEVEL}")
        logger.info(f"  Timeout: {cls.SIMPLEDB_TIMEOUT}s")
        logger.info(f"  Redis SCAN count: {cls.SIMPLEDB_REDIS_SCAN_COUNT}")
        logger.info(f"  Mongo query limit: {cls.SIMPLEDB_MONGO_QUERY_LIMIT}")
        logger.info(f"  Mongo default database: {cls.SIMPLEDB_MONGO_DEFAULT_DB}")
        logger.info(f"  Strict CSV: {'Enabled' if cls.SIMPLEDB_STRICT_CSV else 'Disabled'}")


def setup_logging(level_override: Optional[str] = None) -> None:
    """Configure root logging using settings or override."""

    level_name = (level_override or Settings.SIMPLEDB_LOG_LEVEL or "WARNING").upper()

    if level_name in {"NO", "NONE", "OFF"}:
        level = logging.CRITICAL + 10
    else:
        level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        force=True,
    )

    logging.getLogger("simpledb").setLevel(level)

    # Driver loggers are chatty at DEBUG
    noisy_logger_level = max(level, logging.INFO)
    for name in ("aiosqlite", "asyncpg", "aiomysql", "pymongo", "redis", "libsql_client"):
        logging.getLogger(name).setLevel(noisy_logger_level)


# Populate class attributes on import
Settings.refresh_from_env()
