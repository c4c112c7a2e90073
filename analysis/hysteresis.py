from __future__ import annotations

from typing import Optional


class HysteresisLatch:
    """
    Latches the per-frame verdict into a stable good/bad status.

    - flips to good after `good_frames_to_green` consecutive good frames
    - flips to bad after `bad_frames_to_red` consecutive bad frames
    - starts neutral (None) until one of the streaks completes
    """

    def __init__(self, good_frames_to_green: int, bad_frames_to_red: int) -> None:
        if good_frames_to_green < 1 or bad_frames_to_red < 1:
            raise ValueError("frame counts must be >= 1")
        self.good_frames_to_green = int(good_frames_to_green)
        self.bad_frames_to_red = int(bad_frames_to_red)
        self.reset()

    def reset(self) -> None:
        self.good_streak = 0
        self.bad_streak = 0
        self.latched: Optional[bool] = None

    @property
    def status(self) -> str:
        if self.latched is None:
            return "neutral"
        return "good" if self.latched else "bad"

    def update(self, ok: bool) -> Optional[bool]:
        if ok:
            self.good_streak += 1
            self.bad_streak = 0
            if self.good_streak >= self.good_frames_to_green:
                self.latched = True
        else:
            self.bad_streak += 1
            self.good_streak = 0
            if self.bad_streak >= self.bad_frames_to_red:
                self.latched = False
        return self.latched
