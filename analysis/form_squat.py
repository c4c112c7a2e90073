from __future__ import annotations

import numpy as np

from .features import FeatureSet, horiz_offset, pixel_distance
from .form_base import NO_VERDICT, AdaptiveBaseline, RepEvaluator, Verdict
from .fsm_reps import Phase, RepThresholds
from .utils import Exercise, ThresholdProfile


class SquatEvaluator(RepEvaluator):
    """
    Squat judged relative to the athlete's own standing height, no absolute knee angles.

    - depth: body center (mean hip/knee/shoulder y) dropped >= rep_down_frac below the standing baseline
    - torso: hip->shoulder tilt from vertical within squat_torso_change_max
    - knees: in a front view, knees must not cave inside the ankles by more than knee_cave_frac;
      stances narrower than knee_cave_min_stance_frac of the torso length are side views and skip this
    The baseline adapts slowly while standing and freezes once the descent has started.
    """

    exercise = Exercise.SQUAT

    def __init__(self, thresholds: ThresholdProfile) -> None:
        super().__init__(
            thresholds,
            RepThresholds(
                moved=thresholds.rep_down_frac,
                near_top=thresholds.rep_top_frac,
                min_interval=thresholds.min_rep_interval,
            ),
        )
        self.baseline = AdaptiveBaseline(thresholds.baseline_alpha, direction=1)

    def reset(self) -> None:
        super().reset()
        self.baseline.reset()

    def _knees_ok(self, f: FeatureSet) -> bool:
        knee_w = horiz_offset(f.left_knee, f.right_knee)
        ankle_w = horiz_offset(f.left_ankle, f.right_ankle)
        torso = pixel_distance(f.hip, f.shoulder)
        if not (np.isfinite(knee_w) and np.isfinite(ankle_w) and np.isfinite(torso)):
            return True
        # legs overlapping in a side view: knee width is only detector jitter
        if ankle_w < self.thresholds.knee_cave_min_stance_frac * torso:
            return True
        return knee_w >= ankle_w * (1.0 - self.thresholds.knee_cave_frac)

    def evaluate(self, features: FeatureSet, now: float) -> Verdict:
        th = self.thresholds
        center = features.center_y
        if not np.isfinite(center):
            return NO_VERDICT

        displacement = self.baseline.displacement(center)
        # only while standing: frozen during the descent and whenever already moving down
        moving_down = displacement > th.rep_down_frac * 0.5
        if self.fsm.phase is not Phase.DESCENDING and not moving_down:
            self.baseline.adapt(center, displacement)

        depth_ok = displacement >= th.rep_down_frac
        torso_ok = bool(np.isfinite(features.torso_tilt) and features.torso_tilt <= th.squat_torso_change_max)
        knees_ok = self._knees_ok(features)
        ok = depth_ok and torso_ok and knees_ok

        if not depth_ok:
            cue = "Lower more"
        elif not knees_ok:
            cue = "Push knees out"
        elif not torso_ok:
            cue = "Chest tall"
        else:
            cue = ""

        return Verdict(
            form_correct=ok,
            cue=cue,
            displacement=displacement,
            depth_reached=depth_ok,
            posture_ok=torso_ok and knees_ok,
        )
