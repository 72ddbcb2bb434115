"""Provider lookup by engine id or connection descriptor."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Type

from ..utils.errors import ConfigurationError
from .base import DatabaseProvider, sanitize_connection_string

logger = logging.getLogger(__name__)

ENGINES = ("sqlite", "libsql", "postgresql", "mysql", "mongodb", "redis")

_SCHEMES = {
    "sqlite": "sqlite",
    "libsql": "libsql",
    "postgresql": "postgresql",
    "postgres": "postgresql",
    "mysql": "mysql",
    "mariadb": "mysql",
    "mongodb": "mongodb",
    "mongodb+srv": "mongodb",
    "redis": "redis",
    "rediss": "redis",
}

_SQLITE_SUFFIXES = (".db", ".sqlite", ".sqlite3", ".db3")


def detect_engine(conn: str) -> str:
    """Guess the engine from a connection descriptor.

    Supports:
        - sqlite:///path/to/db.sqlite or a bare path ending in .db/.sqlite
        - libsql://host (Turso) and file:local.db
        - postgresql://, postgres://
        - mysql://, mariadb://
        - mongodb://, mongodb+srv://
        - redis://, rediss://
    """
    descriptor = conn.strip()
    scheme, sep, _ = descriptor.partition("://")
    if sep:
        engine = _SCHEMES.get(scheme.lower())
        if engine:
            return engine
    elif descriptor.startswith("file:"):
        return "libsql"
    elif descriptor == ":memory:" or descriptor.lower().endswith(_SQLITE_SUFFIXES):
        return "sqlite"

    raise ConfigurationError(
        f"Cannot determine the database engine for {sanitize_connection_string(descriptor)}",
        solutions=[f"Pass the engine explicitly, one of: {', '.join(ENGINES)}"],
    )


def _sqlite() -> Type[DatabaseProvider]:
    from .sqlite import SQLiteProvider

    return SQLiteProvider


def _libsql() -> Type[DatabaseProvider]:
    from .libsql import LibSQLProvider

    return LibSQLProvider


def _postgresql() -> Type[DatabaseProvider]:
    from .postgres import PostgreSQLProvider

    return PostgreSQLProvider


def _mysql() -> Type[DatabaseProvider]:
    from .mysql import MySQLProvider

    return MySQLProvider


def _mongodb() -> Type[DatabaseProvider]:
    from .mongodb import MongoDBProvider

    return MongoDBProvider


def _redis() -> Type[DatabaseProvider]:
    from .redis import RedisProvider

    return RedisProvider


class ProviderRegistry:
    """Creates one provider per engine on first use."""

    def __init__(self, timeout: Optional[float] = None):
        self._timeout = timeout
        self._factories: Dict[str, Callable[[], Type[DatabaseProvider]]] = {
            "sqlite": _sqlite,
            "libsql": _libsql,
            "postgresql": _postgresql,
            "mysql": _mysql,
            "mongodb": _mongodb,
            "redis": _redis,
        }
        self._providers: Dict[str, DatabaseProvider] = {}

    @property
    def engines(self) -> List[str]:
        return list(self._factories)

    def register(self, engine: str, factory: Callable[[], Type[DatabaseProvider]]) -> None:
        """Add or replace the provider class factory for ``engine``."""
        self._factories[engine] = factory
        self._providers.pop(engine, None)

    def get(self, engine: str) -> DatabaseProvider:
        key = engine.strip().lower()
        key = _SCHEMES.get(key, key)

        provider = self._providers.get(key)
        if provider is not None:
            return provider

        factory = self._factories.get(key)
        if factory is None:
            raise ConfigurationError(
                f"Unknown database engine: {engine}",
                solutions=[f"Use one of: {', '.join(self.engines)}"],
            )

        provider_cls = factory()
        provider = provider_cls(timeout=self._timeout)
        self._providers[key] = provider
        logger.debug(f"Created {provider_cls.__name__} for engine {key}")
        return provider

    def for_connection(self, conn: str) -> DatabaseProvider:
        return self.get(detect_engine(conn))


# Global registry instance
_registry: Optional[ProviderRegistry] = None


def get_registry() -> ProviderRegistry:
    global _registry
    if _registry is None:
        _registry = ProviderRegistry()
    return _registry


def get_provider(engine: str) -> DatabaseProvider:
    return get_registry().get(engine)


def get_provider_for(conn: str) -> DatabaseProvider:
    return get_registry().for_connection(conn)


def reset_registry() -> None:
    """Drop the global registry (used by tests)."""
    global _registry
    _registry = None
