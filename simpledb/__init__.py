"""SimpleDB: one asynchronous interface to browse, query, edit, import and
export data held in SQLite, LibSQL, PostgreSQL, MySQL, MongoDB and Redis.
"""

from .providers import (
    NO_PREFIX,
    DatabaseProvider,
    ProviderRegistry,
    QueryContext,
    SortDirection,
    SortKey,
    UpdateResult,
    detect_engine,
    get_provider,
    get_provider_for,
)
from .utils.errors import (
    ConfigurationError,
    ConnectivityError,
    DataShapeError,
    DriverNotInstalledError,
    ErrorKind,
    IdentifierError,
    OperationNotSupportedError,
    QuerySyntaxError,
    SafetyViolationError,
    SimpleDBError,
    UnsupportedFeatureError,
)

__version__ = "0.1.0"

__all__ = [
    "NO_PREFIX",
    "DatabaseProvider",
    "ProviderRegistry",
    "QueryContext",
    "SortDirection",
    "SortKey",
    "UpdateResult",
    "detect_engine",
    "get_provider",
    "get_provider_for",
    "ErrorKind",
    "SimpleDBError",
    "ConnectivityError",
    "SafetyViolationError",
    "OperationNotSupportedError",
    "QuerySyntaxError",
    "UnsupportedFeatureError",
    "DataShapeError",
    "IdentifierError",
    "ConfigurationError",
    "DriverNotInstalledError",
]
