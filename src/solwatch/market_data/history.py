"""Per-instrument rolling price history with fixed capacity."""

from collections import deque
from decimal import Decimal

from solwatch.models import PricePoint

DEFAULT_CAPACITY = 30


class RollingHistoryBuffer:
    """Bounded FIFO of price samples in observation order.

    When full, appending evicts the oldest sample. ``snapshot()`` returns
    a tuple so callers can never mutate the live buffer.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._samples: deque[PricePoint] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        assert self._samples.maxlen is not None
        return self._samples.maxlen

    def append(self, price: Decimal, observed_at: float) -> None:
        self._samples.append(PricePoint(price=price, observed_at=observed_at))

    def snapshot(self) -> tuple[PricePoint, ...]:
        return tuple(self._samples)

    def latest(self) -> PricePoint | None:
        return self._samples[-1] if self._samples else None

    def clear(self) -> None:
        self._samples.clear()

    def __len__(self) -> int:
        return len(self._samples)
