from __future__ import annotations

import numpy as np

from .features import DEVIATION_SENTINEL, FeatureSet, horiz_offset
from .form_base import HoldEvaluator, Verdict
from .utils import Exercise


class WallsitEvaluator(HoldEvaluator):
    """Wall sit: thighs near parallel, shins vertical over the feet, back flat on the wall."""

    exercise = Exercise.WALLSIT

    def evaluate(self, features: FeatureSet, now: float) -> Verdict:
        th = self.thresholds
        knee = features.knee_angle
        shin_px = horiz_offset(features.knee, features.ankle)
        back_px = horiz_offset(features.hip, features.shoulder)
        shin_px = shin_px if np.isfinite(shin_px) else DEVIATION_SENTINEL
        back_px = back_px if np.isfinite(back_px) else DEVIATION_SENTINEL

        depth_ok = bool(np.isfinite(knee) and th.wallsit_knee_min <= knee <= th.wallsit_knee_max)
        shin_ok = shin_px <= th.wallsit_shin_tilt_max
        back_ok = back_px <= th.wallsit_back_tilt_max
        ok = depth_ok and shin_ok and back_ok

        if not depth_ok:
            # too open (or unseen) -> go lower; too closed -> come up
            cue = "Rise slightly" if np.isfinite(knee) and knee < th.wallsit_knee_min else "Slide down a little"
        elif not shin_ok:
            cue = "Feet under knees"
        elif not back_ok:
            cue = "Back to wall"
        else:
            cue = ""

        return Verdict(form_correct=ok, cue=cue, posture_ok=ok)
