from __future__ import annotations

import numpy as np


class ScalarEma:
    """
    Exponential moving average of a single scalar signal.

    - The first finite observation initializes the state
    - Non-finite observations leave the state untouched
    - value is NaN until initialized
    """

    def __init__(self, alpha: float) -> None:
        if not (0.0 < alpha <= 1.0):
            raise ValueError("alpha must be in (0, 1]")
        self.alpha = float(alpha)
        self.value = float("nan")

    @property
    def ready(self) -> bool:
        return bool(np.isfinite(self.value))

    def reset(self) -> None:
        self.value = float("nan")

    def seed(self, observation: float) -> None:
        self.value = float(observation)

    def update(self, observation: float) -> float:
        if not np.isfinite(observation):
            return self.value
        if not self.ready:
            self.value = float(observation)
        else:
            a = self.alpha
            self.value = a * float(observation) + (1.0 - a) * self.value
        return self.value
