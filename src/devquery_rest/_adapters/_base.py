"""Uniform capability contract over engine-specific drivers."""

from __future__ import annotations

import base64
from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, ClassVar, Mapping, Sequence, Union
from uuid import UUID

from .._models import ConnectionTarget, EngineType, ResultSet, SchemaDescription

Parameters = Union[Sequence[Any], Mapping[str, Any], None]

_AUTH_MARKERS = (
    "password",
    "authentication",
    "access denied",
    "login failed",
    "not authorized",
    "ora-01017",
)
_TIMEOUT_MARKERS = ("timeout", "timed out")
_PASSTHROUGH = (str, int, float, bool, type(None), Decimal, datetime, date, time, timedelta, UUID)


class Connection(ABC):
    """A live, engine-specific connection.

    Implementations are blocking; the connection manager runs them off the event
    loop and enforces deadlines. A connection is owned by exactly one registry
    entry and is never shared between keys.
    """

    engine_type: EngineType

    @abstractmethod
    def execute(
        self,
        statement: str,
        parameters: Parameters = None,
        row_limit: int | None = None,
    ) -> ResultSet:
        """Run a statement and return at most ``row_limit`` rows.

        Raises:
            QueryError: If the engine rejects or fails the statement.
        """

    @abstractmethod
    def fetch_schema(self) -> SchemaDescription:
        """Describe every table or collection visible to this connection.

        Raises:
            SchemaError: If the catalog cannot be read.
        """

    @abstractmethod
    def close(self) -> None:
        """Release the underlying pool or handle. Safe to call repeatedly."""


class EngineAdapter(ABC):
    """Opens :class:`Connection` objects for one engine type."""

    engine_type: ClassVar[EngineType]

    @abstractmethod
    def connect(self, target: ConnectionTarget, timeout: float) -> Connection:
        """Open a connection and verify it with a trivial probe.

        Never retries.

        Raises:
            DatabaseConnectionError: On auth, network, timeout or missing-driver failures.
        """


def classify_connect_error(exc: BaseException) -> str:
    """Map a driver failure at connect time to a connection error reason."""
    if isinstance(exc, ImportError):
        return "unsupported_engine"
    text = driver_message(exc).lower()
    if any(marker in text for marker in _AUTH_MARKERS):
        return "auth"
    if any(marker in text for marker in _TIMEOUT_MARKERS):
        return "timeout"
    return "network"


def driver_message(exc: BaseException, secret: str | None = None) -> str:
    """First line of the underlying driver's message, with ``secret`` masked."""
    orig = getattr(exc, "orig", None)
    text = str(orig if orig is not None else exc).strip()
    message = text.splitlines()[0] if text else type(exc).__name__
    if secret:
        message = message.replace(secret, "***")
    return message


def normalize_value(value: Any) -> Any:
    """Make a driver value JSON-friendly. Binary data becomes base64 text."""
    if isinstance(value, _PASSTHROUGH):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, Mapping):
        return {str(k): normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [normalize_value(v) for v in value]
    return str(value)
