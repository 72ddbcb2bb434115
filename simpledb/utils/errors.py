"""Typed errors raised by database providers, with actionable solutions."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class ErrorKind(Enum):
    CONNECTIVITY = "connectivity"
    SAFETY_VIOLATION = "safety_violation"
    QUERY_SYNTAX = "query_syntax"
    UNSUPPORTED_FEATURE = "unsupported_feature"
    DATA_SHAPE = "data_shape"
    IDENTIFIER = "identifier"
    CONFIGURATION = "configuration"


class SimpleDBError(Exception):
    """Base class for every error a provider raises on purpose.

    Engine errors raised by a native driver after a connection is open are
    not wrapped; they propagate unchanged.
    """

    kind: ErrorKind = ErrorKind.CONFIGURATION
    title: str = "Database Error"

    def __init__(
        self,
        message: str,
        solutions: Optional[Sequence[str]] = None,
        engine: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.solutions: List[str] = list(solutions or [])
        self.engine = engine

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": True,
            "kind": self.kind.value,
            "title": self.title,
            "message": self.message,
            "solutions": self.solutions,
            "engine": self.engine,
        }

    def format_for_user(self) -> str:
        """Format error for display on a terminal."""
        output = f"{self.title}: {self.message}"

        if self.solutions:
            output += "\n\nHow to fix:"
            for i, solution in enumerate(self.solutions, 1):
                output += f"\n{i}. {solution}"

        return output


class ConnectivityError(SimpleDBError):
    """The engine could not be reached or refused the credentials."""

    kind = ErrorKind.CONNECTIVITY
    title = "Connection Failed"


class SafetyViolationError(SimpleDBError):
    """A mutation was refused before touching the engine."""

    kind = ErrorKind.SAFETY_VIOLATION
    title = "Operation Refused"


class OperationNotSupportedError(SafetyViolationError):
    """The engine does not allow this operation through the provider."""

    title = "Operation Not Supported"


class QuerySyntaxError(SimpleDBError):
    kind = ErrorKind.QUERY_SYNTAX
    title = "Invalid Query"


class UnsupportedFeatureError(SimpleDBError):
    """The request was understood but is not implemented for this engine."""

    kind = ErrorKind.UNSUPPORTED_FEATURE
    title = "Unsupported Feature"


class DataShapeError(SimpleDBError):
    kind = ErrorKind.DATA_SHAPE
    title = "Invalid Data"


class IdentifierError(SimpleDBError):
    """A record lacks the fields needed to address it uniquely."""

    kind = ErrorKind.IDENTIFIER
    title = "Cannot Identify Record"


class ConfigurationError(SimpleDBError):
    kind = ErrorKind.CONFIGURATION
    title = "Configuration Error"


class DriverNotInstalledError(ConfigurationError):
    title = "Driver Not Installed"
