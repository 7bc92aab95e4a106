from __future__ import annotations

from storefront.features.variants.types import ShortAlias


class ImpressionLedger:
    """
    Per-session record of (alias, render_epoch) pairs already reported.

    Only the current epoch is retained: advancing the epoch drops every older
    pair, so memory is bounded by the number of aliases on screen.
    Aliases being sent are tracked separately so two overlapping batches in the
    same epoch never report the same alias twice.
    """

    def __init__(self) -> None:
        self._epoch = 0
        self._recorded: set[tuple[ShortAlias, int]] = set()
        self._in_flight: set[tuple[ShortAlias, int]] = set()

    @property
    def epoch(self) -> int:
        return self._epoch

    def advance(self) -> int:
        self._epoch += 1
        self._recorded = {e for e in self._recorded if e[1] >= self._epoch}
        self._in_flight = {e for e in self._in_flight if e[1] >= self._epoch}
        return self._epoch

    def is_recorded(self, alias: ShortAlias, epoch: int | None = None) -> bool:
        epoch = self._epoch if epoch is None else epoch
        return (alias, epoch) in self._recorded

    def claim(self, alias: ShortAlias, epoch: int) -> bool:
        """Reserve an alias for sending. False when stale, recorded or already in flight."""
        if epoch != self._epoch:
            return False
        key = (alias, epoch)
        if key in self._recorded or key in self._in_flight:
            return False
        self._in_flight.add(key)
        return True

    def confirm(self, alias: ShortAlias, epoch: int) -> None:
        key = (alias, epoch)
        self._in_flight.discard(key)
        if epoch == self._epoch:
            self._recorded.add(key)

    def release(self, alias: ShortAlias, epoch: int) -> None:
        self._in_flight.discard((alias, epoch))

    def entries(self) -> frozenset[tuple[ShortAlias, int]]:
        return frozenset(self._recorded)

    def __len__(self) -> int:
        return len(self._recorded)
