from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from storefront.core.clock import ClockLike

from .schema import ALLOWED_EVENT_TYPES, VISITOR_SCOPED_EVENT_TYPES, Event, json_dumps


class IdGenerator(Protocol):
    def next_event_id(self) -> str: ...


class PersistenceSink(Protocol):
    """
    Minimal surface area the events feature needs (PersistenceService matches).
    """

    def emit(self, e: Event) -> None: ...


@dataclass(slots=True)
class CounterEventIdGenerator:
    """
    Deterministic, monotonic event ids scoped to a run.
    """

    run_id: str
    counter: int = 0

    def next_event_id(self) -> str:
        self.counter += 1
        return f"{self.run_id}_{self.counter:08d}"


class EventService:
    def __init__(
        self,
        *,
        env: Any,
        clock: ClockLike,
        persistence: PersistenceSink,
        ids: IdGenerator,
        run_id: str,
        logger: logging.Logger | None = None,
    ) -> None:
        self._env = env
        self._clock = clock
        self._persistence = persistence
        self._ids = ids
        self._run_id = run_id
        self._logger = logger

    @property
    def run_id(self) -> str:
        return self._run_id

    def emit(
        self,
        *,
        event_type: str,
        visitor_id: str | None = None,
        page: str | None = None,
        epoch: int | None = None,
        value_str: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Event:
        """
        Emits a single audit event into cold storage via the persistence buffer.

        Contracts enforced:
        - event_type must be in ALLOWED_EVENT_TYPES
        - visitor-scoped event types require visitor_id
        """
        if event_type not in ALLOWED_EVENT_TYPES:
            raise ValueError(
                f"Unsupported event_type={event_type!r}. " f"Allowed={sorted(ALLOWED_EVENT_TYPES)}"
            )

        if event_type in VISITOR_SCOPED_EVENT_TYPES and visitor_id is None:
            raise ValueError(f"{event_type} requires visitor_id")

        event = Event(
            run_id=self._run_id,
            event_id=self._ids.next_event_id(),
            ts_utc=self._clock.get_current_time(),
            sim_time_s=float(self._env.now),
            event_type=event_type,
            visitor_id=visitor_id,
            page=page,
            epoch=epoch,
            value_str=value_str,
            payload_json=json_dumps(payload),
        )

        self._persistence.emit(event)

        if self._logger is not None:
            self._logger.debug(
                "event_emitted",
                extra={
                    "event_type": event.event_type,
                    "run_id": event.run_id,
                    "visitor_id": event.visitor_id,
                    "epoch": event.epoch,
                },
            )

        return event
