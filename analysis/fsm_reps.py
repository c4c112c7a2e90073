from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np


logger = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = "idle"
    DESCENDING = "descending"
    ASCENDING = "ascending"


@dataclass(frozen=True)
class RepThresholds:
    """Displacement bands (fractions of the baseline) plus the rep debounce interval."""
    moved: float      # leave idle when displacement exceeds this
    near_top: float   # back at the top when displacement is within this
    min_interval: float  # seconds between two counted reps


@dataclass(frozen=True)
class ExerciseEvent:
    kind: str  # "rep" | "holdSecond"
    index: int
    was_correct: bool


@dataclass
class RepState:
    phase: Phase = Phase.IDLE
    reps: int = 0
    peak: float = 0.0
    depth_seen: bool = False
    posture_ok: bool = True
    last_rep_at: Optional[float] = None


class RepFSM:
    """
    Three-phase repetition counter over a normalized displacement signal.

    - idle -> descending: displacement > thresholds.moved
    - descending -> ascending: depth reached and displacement stopped increasing
    - ascending -> idle: displacement <= thresholds.near_top; counts a rep only if
      thresholds.min_interval elapsed since the last counted rep, otherwise the cycle is dropped
    - NaN displacement yields no state change
    """

    def __init__(self, thresholds: RepThresholds) -> None:
        self.thresholds = thresholds
        self.state = RepState()

    @property
    def phase(self) -> Phase:
        return self.state.phase

    def reset(self) -> None:
        self.state = RepState()

    def abandon(self) -> None:
        """Drop the repetition in progress without counting it; totals are kept."""
        st = self.state
        if st.phase is not Phase.IDLE:
            logger.debug("rep abandoned in phase %s", st.phase.value)
        st.phase = Phase.IDLE
        st.peak = 0.0
        st.depth_seen = False
        st.posture_ok = True

    def process_frame(
        self,
        displacement: float,
        *,
        now: float,
        depth_reached: bool,
        posture_ok: bool,
    ) -> Optional[ExerciseEvent]:
        if not np.isfinite(displacement):
            return None

        st = self.state
        th = self.thresholds

        if st.phase is not Phase.IDLE:
            st.depth_seen = st.depth_seen or depth_reached
            st.posture_ok = st.posture_ok and posture_ok

        if st.phase is Phase.IDLE:
            if displacement > th.moved:
                st.phase = Phase.DESCENDING
                st.peak = displacement
                st.depth_seen = depth_reached
                st.posture_ok = posture_ok
        elif st.phase is Phase.DESCENDING:
            if st.depth_seen and displacement <= st.peak:
                st.phase = Phase.ASCENDING
            st.peak = max(st.peak, displacement)
        elif st.phase is Phase.ASCENDING:
            if displacement <= th.near_top:
                st.phase = Phase.IDLE
                if st.last_rep_at is not None and now - st.last_rep_at < th.min_interval:
                    logger.debug("rep dropped: %.3fs since last rep", now - st.last_rep_at)
                    return None
                st.last_rep_at = now
                st.reps += 1
                was_correct = st.depth_seen and st.posture_ok
                logger.debug("rep %d counted (correct=%s)", st.reps, was_correct)
                return ExerciseEvent(kind="rep", index=st.reps, was_correct=was_correct)
        return None
