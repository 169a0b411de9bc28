"""Deterministic scheduler that only runs work when a test advances time."""

from __future__ import annotations

import heapq
import itertools
from datetime import datetime, timedelta, timezone
from typing import Any

from reactivex.abc import DisposableBase
from reactivex.disposable import Disposable, MultipleAssignmentDisposable
from reactivex.scheduler.periodicscheduler import PeriodicScheduler

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _as_timedelta(value: Any) -> timedelta:
    if isinstance(value, timedelta):
        return value
    return timedelta(seconds=float(value))


class _Scheduled:
    __slots__ = ("action", "state", "cancelled", "result")

    def __init__(self, action: Any, state: Any) -> None:
        self.action = action
        self.state = state
        self.cancelled = False
        self.result: DisposableBase | None = None

    def cancel(self) -> None:
        self.cancelled = True
        if self.result is not None:
            self.result.dispose()


class ManualScheduler(PeriodicScheduler):
    def __init__(self, start: datetime = START) -> None:
        super().__init__()
        self._now = start
        self._queue: list[tuple[datetime, int, _Scheduled]] = []
        self._sequence = itertools.count()

    @property
    def now(self) -> datetime:
        return self._now

    @property
    def pending(self) -> int:
        return sum(1 for _, _, item in self._queue if not item.cancelled)

    def schedule(self, action: Any, state: Any = None) -> DisposableBase:
        return self.schedule_absolute(self._now, action, state)

    def schedule_relative(
        self, duetime: Any, action: Any, state: Any = None
    ) -> DisposableBase:
        return self.schedule_absolute(
            self._now + max(_as_timedelta(duetime), timedelta(0)), action, state
        )

    def schedule_absolute(
        self, duetime: Any, action: Any, state: Any = None
    ) -> DisposableBase:
        due = duetime if isinstance(duetime, datetime) else START + _as_timedelta(duetime)
        item = _Scheduled(action, state)
        heapq.heappush(self._queue, (due, next(self._sequence), item))
        return Disposable(item.cancel)

    def schedule_periodic(
        self, period: Any, action: Any, state: Any = None
    ) -> DisposableBase:
        interval = _as_timedelta(period)
        disposable = MultipleAssignmentDisposable()

        def tick(_scheduler: Any, current: Any) -> None:
            if disposable.is_disposed:
                return None
            following = action(current)
            disposable.disposable = self.schedule_relative(interval, tick, following)
            return None

        disposable.disposable = self.schedule_relative(interval, tick, state)
        return disposable

    def run_pending(self) -> None:
        self.advance(timedelta(0))

    def advance(self, delta: float | timedelta) -> None:
        """Run everything due within ``delta``, moving the clock as items fire."""

        target = self._now + _as_timedelta(delta)
        while self._queue and self._queue[0][0] <= target:
            due, _, item = heapq.heappop(self._queue)
            if item.cancelled:
                continue
            self._now = max(self._now, due)
            result = item.action(self, item.state)
            if isinstance(result, DisposableBase):
                item.result = result
        self._now = target
