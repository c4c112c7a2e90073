from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from pose.backend import Keypoint
from .features import DEVIATION_SENTINEL, FeatureSet, horiz_offset, pixel_distance
from .form_base import AdaptiveBaseline, RepEvaluator, Verdict
from .fsm_reps import Phase, RepThresholds
from .utils import Exercise, ThresholdProfile


logger = logging.getLogger(__name__)


class DeadbugEvaluator(RepEvaluator):
    """
    Dead bug: lower back pressed into the floor, limbs moving under control.

    Back contact is approximated by the horizontal hip-to-shoulder offset. Reps follow the
    reach of the working limb (wrist, else ankle, else knee) away from the hip. When tracking
    falls back to another limb, speed, baseline and the rep in progress start over.
    """

    exercise = Exercise.DEADBUG

    def __init__(self, thresholds: ThresholdProfile) -> None:
        super().__init__(
            thresholds,
            RepThresholds(
                moved=thresholds.deadbug_reach_frac,
                near_top=thresholds.deadbug_return_frac,
                min_interval=thresholds.min_rep_interval,
            ),
        )
        self.baseline = AdaptiveBaseline(thresholds.baseline_alpha, direction=1, snap_to_rest=True)
        self.prev_limb: Optional[Keypoint] = None
        self.prev_at: Optional[float] = None

    def reset(self) -> None:
        super().reset()
        self.baseline.reset()
        self.prev_limb = None
        self.prev_at = None

    def _limb_speed(self, limb: Optional[Keypoint], now: float) -> float:
        speed = 0.0
        if limb is not None and self.prev_limb is not None and self.prev_at is not None:
            dt = now - self.prev_at
            if dt > 1e-6:
                speed = pixel_distance(limb, self.prev_limb) / dt
        if limb is not None:
            self.prev_limb = limb
            self.prev_at = now
        return speed

    def evaluate(self, features: FeatureSet, now: float) -> Verdict:
        th = self.thresholds
        back_px = horiz_offset(features.hip, features.shoulder)
        if not np.isfinite(back_px):
            back_px = DEVIATION_SENTINEL
        back_ok = back_px <= th.deadbug_back_contact_max_px

        limb = features.wrist or features.ankle or features.knee
        if limb is not None and self.prev_limb is not None and limb.name != self.prev_limb.name:
            logger.debug("dead bug limb switched: %s -> %s", self.prev_limb.name, limb.name)
            self.prev_limb = None
            self.prev_at = None
            self.baseline.reset()
            self.fsm.abandon()
        slow_enough = self._limb_speed(limb, now) <= th.deadbug_limb_speed_max_px

        if not back_ok:
            cue = "Press lower back into floor"
        elif not slow_enough:
            cue = "Slower reach"
        else:
            cue = ""

        reach = pixel_distance(limb, features.hip)
        displacement = self.baseline.displacement(reach)
        if self.fsm.phase is Phase.IDLE and displacement <= th.deadbug_reach_frac * 0.5:
            self.baseline.adapt(reach, displacement)

        return Verdict(
            form_correct=back_ok,
            cue=cue,
            displacement=displacement,
            depth_reached=bool(displacement >= th.deadbug_reach_frac),
            posture_ok=back_ok and slow_enough,
        )
