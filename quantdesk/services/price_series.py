"""
PriceSeries — capped, time-ordered buffer of indicator-decorated PricePoints.

Merge policy:
  • same floored timestamp as the last point → replace (still-forming bar)
  • newer timestamp                           → append, evict oldest past capacity
  • older timestamp                           → ignored (out-of-order tick)

Indicators are recomputed over the full retained window after every merge.
"""
import logging
import math
from typing import Iterable, List, Optional, Tuple

from quantdesk.services.indicators import Indicators
from quantdesk.services.models import PricePoint

logger = logging.getLogger(__name__)

MAX_POINTS = 200


class PriceSeries:
    """Sliding window of price points for one symbol/timeframe."""

    def __init__(self, symbol: str = "", timeframe: str = "1m",
                 capacity: int = MAX_POINTS):
        self.symbol = symbol
        self.timeframe = timeframe
        self.capacity = capacity
        self._points: List[PricePoint] = []

    # ── Read-only views ─────────────────────────────────────────────────

    @property
    def points(self) -> Tuple[PricePoint, ...]:
        return tuple(self._points)

    @property
    def latest(self) -> Optional[PricePoint]:
        return self._points[-1] if self._points else None

    @property
    def closes(self) -> List[float]:
        return [p.close for p in self._points]

    def __len__(self) -> int:
        return len(self._points)

    # ── Mutation ────────────────────────────────────────────────────────

    def load(self, points: Iterable[PricePoint]) -> None:
        """Replace the whole window (initial history or symbol switch)."""
        ordered = sorted(points, key=lambda p: p.timestamp)
        self._points = Indicators.decorate(ordered[-self.capacity:])

    def clear(self) -> None:
        self._points = []

    def merge(self, point: PricePoint) -> str:
        """Merge one quote. Returns "replaced", "appended" or "ignored"."""
        if not math.isfinite(point.close) or point.close <= 0:
            logger.debug(f"Series {self.symbol}: dropping unusable quote {point}")
            return "ignored"

        last = self.latest
        if last is not None:
            last_ts = math.floor(last.timestamp)
            new_ts = math.floor(point.timestamp)
            if new_ts == last_ts:
                window = self._points[:-1] + [point]
                self._points = Indicators.decorate(window)
                return "replaced"
            if new_ts < last_ts:
                logger.debug(
                    f"Series {self.symbol}: out-of-order quote "
                    f"{point.timestamp} < {last.timestamp}, ignored"
                )
                return "ignored"

        window = (self._points + [point])[-self.capacity:]
        self._points = Indicators.decorate(window)
        return "appended"
