"""Per-symbol bounded history of the 24h change metric.

Each symbol gets its own FIFO deque. Capacity changes are lazy by default:
a smaller capacity only trims the window at the next push, matching how
the poll loop applies the configured window size once per tick.
"""

from collections import deque

from gatewatch.logging import get_logger

logger = get_logger(__name__)


class SlidingWindowTracker:
    """Capacity-bounded FIFO windows keyed by symbol.

    The poll cycle is the only mutator and touches each symbol once per
    tick, so the plain dicts below need no lock.

    Args:
        default_capacity: Capacity for symbols seen for the first time.
        eager_shrink: Trim immediately when set_capacity() lowers capacity.
    """

    def __init__(self, default_capacity: int = 300, eager_shrink: bool = False) -> None:
        self._default_capacity = max(1, int(default_capacity))
        self._eager_shrink = eager_shrink
        self._windows: dict[str, deque[float]] = {}
        self._capacities: dict[str, int] = {}

    @property
    def eager_shrink(self) -> bool:
        return self._eager_shrink

    @eager_shrink.setter
    def eager_shrink(self, value: bool) -> None:
        self._eager_shrink = value

    def set_capacity(self, symbol: str, capacity: int) -> None:
        """Set the window bound used for future evictions of one symbol."""
        capacity = max(1, int(capacity))
        self._capacities[symbol] = capacity
        if self._eager_shrink:
            window = self._windows.get(symbol)
            if window is not None:
                self._evict(window, capacity)

    def capacity(self, symbol: str) -> int:
        return self._capacities.get(symbol, self._default_capacity)

    def push(self, symbol: str, value: float) -> tuple[float, ...]:
        """Append a value and return the window, oldest first."""
        window = self._windows.get(symbol)
        if window is None:
            window = deque()
            self._windows[symbol] = window
        window.append(value)
        self._evict(window, self.capacity(symbol))
        return tuple(window)

    def window(self, symbol: str) -> tuple[float, ...]:
        return tuple(self._windows.get(symbol, ()))

    def symbols(self) -> list[str]:
        return list(self._windows)

    def __len__(self) -> int:
        return len(self._windows)

    @staticmethod
    def _evict(window: deque[float], capacity: int) -> None:
        while len(window) > capacity:
            window.popleft()
