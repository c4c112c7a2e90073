from __future__ import annotations

import numpy as np

from .features import FeatureSet
from .form_base import AdaptiveBaseline, RepEvaluator, Verdict
from .form_plank import measure_body_line
from .fsm_reps import Phase, RepThresholds
from .utils import Exercise, ThresholdProfile


class PushupEvaluator(RepEvaluator):
    """
    Push-up: plank-style body checks plus elbow-driven rep counting.

    The distal reference is the ankle, else the wrist, else the knee, so partially framed
    clips still get a body line. A level body excuses line, support and neck misses.
    Reps follow the elbow angle relative to the extended-arm baseline.
    """

    exercise = Exercise.PUSHUP

    def __init__(self, thresholds: ThresholdProfile) -> None:
        super().__init__(
            thresholds,
            RepThresholds(
                moved=thresholds.pushup_rep_down_frac,
                near_top=thresholds.pushup_rep_top_frac,
                min_interval=thresholds.min_rep_interval,
            ),
        )
        self.baseline = AdaptiveBaseline(thresholds.baseline_alpha, direction=-1, snap_to_rest=True)

    def reset(self) -> None:
        super().reset()
        self.baseline.reset()

    def evaluate(self, features: FeatureSet, now: float) -> Verdict:
        th = self.thresholds
        distal = features.ankle or features.wrist or features.knee
        body = measure_body_line(features, distal, elbow_support=False)

        line_ok = abs(body.deviation) <= th.line_dev_max
        neck_ok = features.neck_flexion <= th.neck_max
        horiz_ok = bool(np.isfinite(body.horizontal_tilt) and body.horizontal_tilt <= th.pushup_horizontal_max_deg)
        support_ok = bool(not np.isfinite(body.support_dx) or body.support_dx <= th.pushup_support_under_shoulder_px)

        if th.reference_clip_leniency:
            ok = line_ok or horiz_ok or support_ok
        else:
            ok = (line_ok or horiz_ok) and (support_ok or horiz_ok) and (neck_ok or horiz_ok)

        cue = ""
        if not ok:
            if not horiz_ok and not line_ok:
                cue = "Keep body level"
            elif not support_ok:
                cue = "Wrists under shoulders"
            elif not line_ok:
                cue = "Straight line head to heels"
            elif not neck_ok:
                cue = "Tuck chin slightly"

        elbow = features.elbow_angle
        displacement = self.baseline.displacement(elbow)
        if self.fsm.phase is Phase.IDLE and displacement <= th.pushup_rep_down_frac * 0.5:
            self.baseline.adapt(elbow, displacement)
        depth_ok = bool(np.isfinite(elbow) and elbow <= th.pushup_depth_elbow_max)

        return Verdict(
            form_correct=ok,
            cue=cue,
            displacement=displacement,
            depth_reached=depth_ok,
            posture_ok=ok,
        )
