from __future__ import annotations

import math
from collections import deque
from statistics import fmean, median_high, pstdev


class RollingWindow:
    """Ventana FIFO acotada con estadísticos recalculados en cada inserción."""

    def __init__(self, capacity: int = 100) -> None:
        if capacity < 1:
            raise ValueError("La capacidad debe ser al menos 1")
        self.capacity = capacity
        self.samples: deque[float] = deque(maxlen=capacity)
        self.mean = 0.0
        self.stddev = 0.0
        self.median = 0.0

    def __len__(self) -> int:
        return len(self.samples)

    def append(self, value: float) -> None:
        value = float(value)
        if not math.isfinite(value):
            raise ValueError(f"Valor no finito en la ventana: {value!r}")
        self.samples.append(value)
        self._recompute()

    def values(self) -> list[float]:
        return list(self.samples)

    @property
    def latest(self) -> float | None:
        return self.samples[-1] if self.samples else None

    @property
    def previous(self) -> float | None:
        return self.samples[-2] if len(self.samples) >= 2 else None

    def resize(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("La capacidad debe ser al menos 1")
        self.capacity = capacity
        self.samples = deque(self.samples, maxlen=capacity)
        self._recompute()

    def clear(self) -> None:
        self.samples.clear()
        self._recompute()

    def _recompute(self) -> None:
        if not self.samples:
            self.mean = self.stddev = self.median = 0.0
            return
        self.mean = fmean(self.samples)
        # Population deviation over the retained window.
        self.stddev = pstdev(self.samples)
        self.median = median_high(self.samples)
