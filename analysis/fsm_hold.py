from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

from .fsm_reps import ExerciseEvent


logger = logging.getLogger(__name__)


@dataclass
class HoldState:
    bucket: Optional[int] = None
    good: int = 0
    total: int = 0
    seconds: int = 0   # good seconds this session; never decreases
    current: int = 0   # visible hold streak
    best: int = 0


class HoldTimer:
    """
    Hold-time accumulator over fixed time buckets.

    Every frame counts toward the current bucket's total (and good, when correct).
    On rollover the finished bucket is judged: good/total >= green_frac adds one
    second and fires a "holdSecond" event; otherwise the streak breaks. With
    reset_on_miss the visible streak is recorded into `best` and zeroed, without it
    the streak only stops advancing.
    """

    def __init__(
        self,
        green_frac: float,
        *,
        bucket_seconds: float = 1.0,
        reset_on_miss: bool = True,
    ) -> None:
        if bucket_seconds <= 0.0:
            raise ValueError("bucket_seconds must be positive")
        self.green_frac = float(green_frac)
        self.bucket_seconds = float(bucket_seconds)
        self.reset_on_miss = bool(reset_on_miss)
        self.state = HoldState()

    def reset(self) -> None:
        self.state = HoldState()

    @property
    def best(self) -> int:
        return max(self.state.best, self.state.current)

    def close_out(self) -> None:
        """Tracking lost: keep the streak as a best, zero the active counter and bucket."""
        st = self.state
        if st.current:
            logger.debug("hold closed out at %ds", st.current)
        st.best = max(st.best, st.current)
        st.current = 0
        st.bucket = None
        st.good = 0
        st.total = 0

    def process_frame(self, form_correct: bool, *, now: float) -> Optional[ExerciseEvent]:
        st = self.state
        bucket = int(math.floor(now / self.bucket_seconds))
        event: Optional[ExerciseEvent] = None

        if st.bucket is None:
            st.bucket = bucket
        elif bucket != st.bucket:
            if st.total > 0 and st.good / st.total >= self.green_frac:
                st.seconds += 1
                st.current += 1
                event = ExerciseEvent(kind="holdSecond", index=st.seconds, was_correct=True)
            else:
                logger.debug("hold second missed (%d/%d good)", st.good, st.total)
                if self.reset_on_miss:
                    st.best = max(st.best, st.current)
                    st.current = 0
            st.bucket = bucket
            st.good = 0
            st.total = 0

        st.total += 1
        if form_correct:
            st.good += 1
        return event
