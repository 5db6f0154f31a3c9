"""Dashboard time ranges and stale-response guarding."""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .aggregator import Aggregator, MetricsResult
from .records import as_utc

logger = logging.getLogger(__name__)

TIME_RANGES = {"today": 1, "7days": 7, "30days": 30}
DEFAULT_RANGE = "7days"


def since_for_range(range_name: str, now: Optional[datetime] = None) -> datetime:
    try:
        days = TIME_RANGES[range_name]
    except KeyError:
        raise ValueError(f"Unknown time range {range_name!r}; expected one of {sorted(TIME_RANGES)}") from None
    now = as_utc(now or datetime.now(timezone.utc))
    return now - timedelta(days=days)


class MetricsRequestGate:
    """Issues increasing request tokens; only the latest one is accepted."""

    def __init__(self) -> None:
        self._latest = 0
        self._lock = threading.Lock()

    def issue(self) -> int:
        with self._lock:
            self._latest += 1
            return self._latest

    def accept(self, token: int) -> bool:
        with self._lock:
            return token == self._latest

    @property
    def latest(self) -> int:
        return self._latest


class DashboardState:
    """Holds the metrics currently on screen for one dashboard.

    A refresh whose response arrives after a newer refresh was issued is
    discarded, so a slow query for an old range never overwrites a newer one.
    """

    def __init__(
        self,
        aggregator: Aggregator,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._aggregator = aggregator
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._gate = MetricsRequestGate()
        self.range_name: Optional[str] = None
        self.result: Optional[MetricsResult] = None

    async def refresh(self, range_name: str = DEFAULT_RANGE) -> bool:
        since = since_for_range(range_name, self._clock())
        token = self._gate.issue()
        result = await self._aggregator.compute(since)
        if not self._gate.accept(token):
            logger.debug("Discarding stale metrics for %s (token %s, latest %s)", range_name, token, self._gate.latest)
            return False
        self.range_name = range_name
        self.result = result
        return True
