from __future__ import annotations

from typing import Optional

from .backend import Pose, PoseSample


HOLDOVER_SECONDS = 1.2


class PoseHoldover:
    """
    Keeps the most recent usable pose so brief tracking dropouts do not read as bad form.

    - A sample carrying a pose is stored and returned as-is
    - A sample without a pose returns the stored pose while it is younger than `window`
    - Past the window, None is returned until a new pose arrives
    """

    def __init__(self, window: float = HOLDOVER_SECONDS) -> None:
        if window < 0.0:
            raise ValueError("window must be non-negative")
        self.window = float(window)
        self._pose: Optional[Pose] = None
        self._at: Optional[float] = None

    def reset(self) -> None:
        self._pose = None
        self._at = None

    def resolve(self, sample: PoseSample) -> Optional[Pose]:
        if sample.pose is not None:
            self._pose = sample.pose
            self._at = float(sample.timestamp)
            return sample.pose
        if self._pose is None or self._at is None:
            return None
        if float(sample.timestamp) - self._at < self.window:
            return self._pose
        return None
