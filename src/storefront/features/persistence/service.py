from __future__ import annotations

from collections import Counter

import simpy

from storefront.core.logging import get_logger
from storefront.features.events.schema import Event

from .duckdb_adapter import DuckDBAdapter

# audit rows written through as soon as they arrive
DURABLE_EVENT_TYPES = frozenset({"manual_currency_override", "run_finished"})


class PersistenceService:
    """
    Buffered sink for storefront audit events.

    Events collect in memory and go to DuckDB when the buffer reaches
    `every_n_events`, when the periodic timer fires, on `close()`, or right
    away for event types listed in `flush_on`.
    """

    def __init__(
        self,
        *,
        adapter: DuckDBAdapter,
        every_n_events: int,
        or_every_seconds: float,
        flush_on: frozenset[str] = DURABLE_EVENT_TYPES,
    ) -> None:
        self.adapter = adapter
        self.every_n_events = int(every_n_events)
        self.or_every_seconds = float(or_every_seconds)
        self.flush_on = flush_on

        self._buf: list[Event] = []
        self._written: Counter[str] = Counter()
        self._logger = get_logger(__name__)

        self._is_open = False
        self._timer: simpy.Process | None = None

    def open(self) -> None:
        if self._is_open:
            return
        if not self.adapter.is_open:
            self.adapter.open()
        self._is_open = True

    def emit(self, e: Event) -> None:
        if not self._is_open:
            raise RuntimeError("PersistenceService not open. Call open() during bootstrap.")

        self._buf.append(e)

        if e.event_type in self.flush_on:
            self.flush(reason=e.event_type)
        elif self.every_n_events > 0 and len(self._buf) >= self.every_n_events:
            self.flush(reason="count")

    def pending(self) -> int:
        return len(self._buf)

    def written_by_type(self) -> dict[str, int]:
        """Rows written to DuckDB so far, per event type."""
        return dict(sorted(self._written.items()))

    def flush(self, *, reason: str) -> None:
        if not self._buf:
            return

        batch, self._buf = self._buf, []
        result = self.adapter.write_events([e.as_row() for e in batch])
        self._written.update(e.event_type for e in batch)

        self._logger.info(
            "audit_flush",
            extra={
                "event_type": "flush",
                "reason": reason,
                "duckdb_path": self.adapter.path,
                "num_events": result.num_events,
                "duration_ms": result.duration_ms,
            },
        )

    def close(self) -> None:
        self.flush(reason="shutdown")
        if self._timer is not None and self._timer.is_alive:
            self._timer.interrupt("shutdown")
        self.adapter.close()
        self._is_open = False

    def start_periodic_flush(self, env: simpy.Environment) -> None:
        """Flush every `or_every_seconds` of simulated time. Later calls are no-ops."""
        if self._timer is not None or self.or_every_seconds <= 0:
            return
        self._timer = env.process(self._periodic_flush(env))

    def _periodic_flush(self, env: simpy.Environment):
        try:
            while True:
                yield env.timeout(self.or_every_seconds)
                self.flush(reason="timer")
        except simpy.Interrupt:
            return
