"""Lazy loading of native database client libraries.

Each provider only needs its own driver, so nothing is imported until an
operation actually runs. Loaded modules are cached for the life of the
process; a missing driver raises an error that names the package to install.
"""

from __future__ import annotations

import importlib
import logging
from types import ModuleType
from typing import Dict

from .errors import DriverNotInstalledError

logger = logging.getLogger(__name__)

# import name -> distribution name on PyPI
DRIVER_PACKAGES: Dict[str, str] = {
    "aiosqlite": "aiosqlite",
    "libsql_client": "libsql-client",
    "asyncpg": "asyncpg",
    "aiomysql": "aiomysql",
    "pymongo": "pymongo",
    "bson": "pymongo",
    "pymongo.errors": "pymongo",
    "redis.exceptions": "redis",
    "redis.asyncio": "redis",
}

_loaded: Dict[str, ModuleType] = {}


def load_driver(module_name: str) -> ModuleType:
    """Import a driver module once and return it."""
    module = _loaded.get(module_name)
    if module is not None:
        return module

    package = DRIVER_PACKAGES.get(module_name, module_name.split(".")[0])
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise DriverNotInstalledError(
            f"{package} is required for this database. Install it with: pip install {package}",
            solutions=[f"pip install {package}"],
        ) from e

    logger.debug(f"Loaded database driver {module_name}")
    _loaded[module_name] = module
    return module


def loaded_drivers() -> Dict[str, ModuleType]:
    return dict(_loaded)


def reset_drivers() -> None:
    """Forget cached driver modules (used by tests)."""
    _loaded.clear()
