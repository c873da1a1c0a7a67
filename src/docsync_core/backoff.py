from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class IdleBackoff:
    """Doubling delay used while polling finds nothing new.

    After N consecutive calls to ``next_delay`` the current delay is
    ``min(floor * 2**N, ceiling)``; ``reset`` brings it back to ``floor``.
    """

    floor: float = 10.0
    ceiling: float = 60.0
    _current: float = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.floor <= 0:
            raise ValueError("backoff floor must be positive")
        if self.ceiling < self.floor:
            raise ValueError("backoff ceiling must not be below the floor")
        self._current = self.floor

    @property
    def current(self) -> float:
        return self._current

    def next_delay(self) -> float:
        delay = self._current
        self._current = min(self._current * 2, self.ceiling)
        return delay

    def reset(self) -> None:
        self._current = self.floor
