from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from pose.backend import Keypoint
from .features import DEVIATION_SENTINEL, FeatureSet, hip_sagging, horiz_offset, line_deviation, tilt_from_horizontal
from .form_base import HoldEvaluator, Verdict
from .utils import Exercise


@dataclass(frozen=True)
class BodyLine:
    """Straight-body measures shared by plank and push-up."""
    deviation: float        # hip off the shoulder->distal line, approx degrees (signed)
    sagging: bool           # hip below that line
    horizontal_tilt: float  # shoulder->distal segment from horizontal, NaN if unknown
    reach_dx: float         # |shoulder.x - distal.x|, NaN if unknown
    support_dx: float       # smallest |shoulder.x - support.x|, NaN if no support point seen


def measure_body_line(
    features: FeatureSet,
    distal: Optional[Keypoint],
    *,
    elbow_support: bool,
) -> BodyLine:
    shoulder, hip = features.shoulder, features.hip
    offsets = [horiz_offset(shoulder, features.wrist)]
    if elbow_support:
        offsets.append(horiz_offset(shoulder, features.elbow))
    finite = [v for v in offsets if np.isfinite(v)]
    return BodyLine(
        deviation=line_deviation(shoulder, distal, hip),
        sagging=hip_sagging(shoulder, distal, hip),
        horizontal_tilt=tilt_from_horizontal(shoulder, distal),
        reach_dx=horiz_offset(shoulder, distal),
        support_dx=float(min(finite)) if finite else float("nan"),
    )


class PlankEvaluator(HoldEvaluator):
    """
    Plank held in seconds.

    Requires a straight body line (hip deviation), a relaxed neck, either a level body
    or elbows/wrists under the shoulders, and legs extended away from the shoulders
    unless the support is already stacked under them. Unseen ear or support points do not
    fail the frame; the ankle falls back to the knee as the distal reference.
    """

    exercise = Exercise.PLANK

    def evaluate(self, features: FeatureSet, now: float) -> Verdict:
        th = self.thresholds
        distal = features.ankle or features.knee
        body = measure_body_line(features, distal, elbow_support=True)

        line_ok = abs(body.deviation) <= th.line_dev_max
        neck_ok = features.neck_flexion <= th.neck_max
        horiz_ok = bool(np.isfinite(body.horizontal_tilt) and body.horizontal_tilt <= th.plank_horizontal_max_deg)
        support_ok = bool(not np.isfinite(body.support_dx) or body.support_dx <= th.support_under_shoulder_px)
        reach_ok = bool(not np.isfinite(body.reach_dx) or body.reach_dx >= th.plank_min_shoulder_ankle_dx_px)

        if th.reference_clip_leniency:
            ok = line_ok or horiz_ok or support_ok
        else:
            ok = line_ok and neck_ok and (horiz_ok or support_ok) and (reach_ok or support_ok)

        cue = ""
        if not ok:
            if not (reach_ok or support_ok):
                cue = "Extend legs"
            elif not (horiz_ok or support_ok):
                cue = "Elbows under shoulders"
            elif body.deviation >= DEVIATION_SENTINEL:
                cue = "Keep your whole body in view"
            elif not line_ok:
                cue = "Lift hips" if body.sagging else "Lower hips"
            elif not neck_ok:
                cue = "Relax neck"

        return Verdict(form_correct=ok, cue=cue, posture_ok=ok)
