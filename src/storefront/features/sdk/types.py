from __future__ import annotations

from collections.abc import Generator, Mapping
from enum import Enum
from typing import Any, Protocol

# simpy process bodies: yield events, return a value
SimGen = Generator[Any, Any, Any]


class PersonalizationError(Exception):
    """Base for every personalization failure."""


class NotConfigured(PersonalizationError):
    """The personalization project id is missing."""


class ConnectionFailure(PersonalizationError):
    """Connection setup or attribute submission failed."""


class InitError(ConnectionFailure):
    """client.init() failed; cached by the provider until rearm()."""


class GeolocationFailure(PersonalizationError):
    """No geolocation backend produced a country."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"country detection failed: {reason}")
        self.reason = reason


class ImpressionDeliveryFailure(PersonalizationError):
    """A single impression could not be delivered."""

    def __init__(self, alias: str, reason: str) -> None:
        super().__init__(f"impression for alias {alias} failed: {reason}")
        self.alias = alias
        self.reason = reason


class ConnectionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class PersonalizationConnection(Protocol):
    """
    Vendor connection surface. Network calls are simpy process bodies.
    """

    def set_attributes(self, attributes: Mapping[str, str]) -> SimGen: ...

    def get_variant_identifiers(self) -> list[str]: ...

    def record_impression(self, short_alias: str) -> SimGen: ...

    def record_event(self, name: str, payload: Mapping[str, Any]) -> SimGen: ...


class PersonalizationClient(Protocol):
    def init(self, project_id: str) -> SimGen: ...


class ProjectIdSource(Protocol):
    """Re-read on every uninitialized get_connection() call."""

    def __call__(self) -> str | None: ...
