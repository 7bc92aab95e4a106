from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import simpy

from storefront.core.logging import get_logger

from .types import (
    ConnectionState,
    InitError,
    NotConfigured,
    PersonalizationClient,
    PersonalizationConnection,
    PersonalizationError,
    ProjectIdSource,
    SimGen,
)


@dataclass(frozen=True, slots=True)
class _InitOutcome:
    connection: PersonalizationConnection | None
    error: PersonalizationError | None


class SdkConnectionProvider:
    """
    Owns the one personalization connection of a client process.

    Lifecycle: uninitialized -> initializing -> ready | failed.

    Policy:
      - missing project id: NotConfigured, raised every call, never cached
        (config is re-read on the next call)
      - client.init() error: cached as failed; later calls raise the same
        InitError without another network attempt until rearm()
      - concurrent callers during initializing all wait on one shared event
    """

    def __init__(
        self,
        *,
        env: simpy.Environment,
        client: PersonalizationClient,
        project_id: str | None | ProjectIdSource,
        logger: logging.Logger | None = None,
    ) -> None:
        self.env = env
        self._client = client
        self._project_id_source: ProjectIdSource = (
            project_id if callable(project_id) else (lambda: project_id)
        )
        self._logger = logger or get_logger(__name__)

        self._state = ConnectionState.UNINITIALIZED
        self._connection: PersonalizationConnection | None = None
        self._error: PersonalizationError | None = None
        self._pending: simpy.Event | None = None

        self.init_attempts = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connection(self) -> PersonalizationConnection | None:
        """The ready connection, or None. Never triggers initialization."""
        return self._connection if self._state is ConnectionState.READY else None

    def get_connection(self) -> SimGen:
        """
        Process body: returns the ready connection or raises
        NotConfigured / InitError. Use `yield from` or env.process().
        """
        if self._state is ConnectionState.READY:
            return self._connection

        if self._state is ConnectionState.FAILED and self._error is not None:
            raise self._error

        if self._state is ConnectionState.INITIALIZING and self._pending is not None:
            outcome = yield self._pending
            return self._unwrap(outcome)

        project_id = self._project_id_source()
        if not project_id:
            self._logger.error(
                "personalize_not_configured",
                extra={"feature": "sdk", "reason": "missing_project_id"},
            )
            raise NotConfigured("personalization project id is not configured")

        self._state = ConnectionState.INITIALIZING
        pending = self.env.event()
        self._pending = pending
        self.env.process(self._initialize(project_id=project_id, pending=pending))

        outcome = yield pending
        return self._unwrap(outcome)

    def rearm(self) -> bool:
        """
        Allow one more initialization attempt after a cached failure.
        Returns False when there is nothing to re-arm.
        """
        if self._state is not ConnectionState.FAILED:
            return False
        self._state = ConnectionState.UNINITIALIZED
        self._error = None
        self._pending = None
        self._logger.info("personalize_rearmed", extra={"feature": "sdk"})
        return True

    def _initialize(self, *, project_id: str, pending: simpy.Event) -> SimGen:
        self.init_attempts += 1
        try:
            connection = yield from self._client.init(project_id)
        except Exception as exc:  # noqa: BLE001 - vendor SDK may raise anything
            error = InitError(f"personalization init failed: {exc}")
            error.__cause__ = exc
            self._state = ConnectionState.FAILED
            self._error = error
            self._logger.error(
                "personalize_init_failed",
                extra={"feature": "sdk", "reason": str(exc), "state": self._state.value},
            )
            pending.succeed(_InitOutcome(connection=None, error=error))
            return

        self._connection = connection
        self._state = ConnectionState.READY
        self._logger.info(
            "personalize_initialized",
            extra={"feature": "sdk", "state": self._state.value},
        )
        pending.succeed(_InitOutcome(connection=connection, error=None))

    @staticmethod
    def _unwrap(outcome: Any) -> PersonalizationConnection:
        if outcome.error is not None:
            raise outcome.error
        return outcome.connection
