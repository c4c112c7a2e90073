from __future__ import annotations

from dataclasses import dataclass
from math import acos, atan2, degrees, isfinite
from typing import Optional, Tuple

import numpy as np

from pose.backend import Keypoint, Pose


# Returned by line_deviation when the line or the point is unknown, so "<= max" fails closed
DEVIATION_SENTINEL = 9999.0

# Side preference: right first, left as fallback
SIDES: Tuple[str, ...] = ("right", "left")


def _finite(*kps: Optional[Keypoint]) -> bool:
    for kp in kps:
        if kp is None or not (isfinite(kp.x) and isfinite(kp.y)):
            return False
    return True


def joint_angle(a: Optional[Keypoint], b: Optional[Keypoint], c: Optional[Keypoint]) -> float:
    """
    Returns the angle at point B (in degrees, [0, 180]) for triangle (A,B,C).

    - If any point is None or has non-finite coordinates, returns NaN
    - If any ray is near-zero, returns NaN
    """
    if not _finite(a, b, c):
        return float("nan")

    abx, aby = a.x - b.x, a.y - b.y
    cbx, cby = c.x - b.x, c.y - b.y
    n1 = float(np.hypot(abx, aby))
    n2 = float(np.hypot(cbx, cby))
    if n1 <= 1e-12 or n2 <= 1e-12:
        return float("nan")

    cos_theta = (abx * cbx + aby * cby) / (n1 * n2)
    # Clamp due to numerical errors
    cos_theta = max(-1.0, min(1.0, float(cos_theta)))
    return float(degrees(acos(cos_theta)))


def line_deviation(s: Optional[Keypoint], a: Optional[Keypoint], h: Optional[Keypoint]) -> float:
    """
    Signed deviation of H from the line S->A, in approximate degrees.

    The perpendicular offset is normalized by the S-A length and read as the angle a
    mid-body point at that offset makes with the line: atan2(2 * offset, |SA|).
    Sign follows the 2D cross product. Returns DEVIATION_SENTINEL if inputs are missing
    or S == A.
    """
    if not _finite(s, a, h):
        return DEVIATION_SENTINEL

    vx, vy = a.x - s.x, a.y - s.y
    wx, wy = h.x - s.x, h.y - s.y
    seg_len = float(np.hypot(vx, vy))
    if seg_len <= 1e-6:
        return DEVIATION_SENTINEL

    offset = (vx * wy - vy * wx) / seg_len
    return float(degrees(atan2(2.0 * offset, seg_len)))


def hip_sagging(s: Optional[Keypoint], a: Optional[Keypoint], h: Optional[Keypoint]) -> bool:
    """True when H sits below (larger image y than) the S->A line at H's x position."""
    if not _finite(s, a, h):
        return False
    dx = a.x - s.x
    if abs(dx) <= 1e-6:
        return h.y > max(s.y, a.y)
    line_y = s.y + (a.y - s.y) * (h.x - s.x) / dx
    return h.y > line_y


def tilt_from_vertical(a: Optional[Keypoint], b: Optional[Keypoint]) -> float:
    """Angle of segment A-B from vertical, folded into [0, 90] degrees. NaN if missing."""
    if not _finite(a, b):
        return float("nan")
    dx = a.x - b.x
    dy = a.y - b.y
    if abs(dx) + abs(dy) <= 1e-12:
        return float("nan")
    tilt = abs(degrees(atan2(dx, dy)))
    return float(min(tilt, 180.0 - tilt))


def tilt_from_horizontal(a: Optional[Keypoint], b: Optional[Keypoint]) -> float:
    tilt = tilt_from_vertical(a, b)
    return float("nan") if np.isnan(tilt) else 90.0 - tilt


def pixel_distance(a: Optional[Keypoint], b: Optional[Keypoint]) -> float:
    if not _finite(a, b):
        return float("nan")
    return float(np.hypot(a.x - b.x, a.y - b.y))


def horiz_offset(a: Optional[Keypoint], b: Optional[Keypoint]) -> float:
    """Absolute horizontal offset in pixels. NaN if inputs invalid."""
    if not _finite(a, b):
        return float("nan")
    return float(abs(a.x - b.x))


def pick_keypoint(pose: Pose, name: str, min_confidence: float) -> Optional[Keypoint]:
    kp = pose.get(name)
    if kp is None or kp.confidence < min_confidence or not _finite(kp):
        return None
    return kp


def pick_side(pose: Pose, base: str, min_confidence: float) -> Optional[Keypoint]:
    for side in SIDES:
        kp = pick_keypoint(pose, f"{side}_{base}", min_confidence)
        if kp is not None:
            return kp
    return None


@dataclass(frozen=True)
class FeatureSet:
    """Per-frame landmarks (side-resolved) and geometric features. Never persisted."""

    hip: Optional[Keypoint]
    knee: Optional[Keypoint]
    ankle: Optional[Keypoint]
    shoulder: Optional[Keypoint]
    elbow: Optional[Keypoint]
    wrist: Optional[Keypoint]
    ear: Optional[Keypoint]
    left_knee: Optional[Keypoint]
    right_knee: Optional[Keypoint]
    left_ankle: Optional[Keypoint]
    right_ankle: Optional[Keypoint]

    knee_angle: float
    elbow_angle: float
    torso_tilt: float
    neck_flexion: float
    hip_deviation: float
    center_y: float
    visible_count: int


def extract_features(pose: Pose, min_confidence: float) -> FeatureSet:
    """
    Resolve landmarks (right side first) and compute the shared features.

    Keypoints scoring below `min_confidence` are treated as absent.
    """
    hip = pick_side(pose, "hip", min_confidence)
    knee = pick_side(pose, "knee", min_confidence)
    ankle = pick_side(pose, "ankle", min_confidence)
    shoulder = pick_side(pose, "shoulder", min_confidence)
    elbow = pick_side(pose, "elbow", min_confidence)
    wrist = pick_side(pose, "wrist", min_confidence)
    ear = pick_side(pose, "ear", min_confidence)

    # Neck flexion: how far the head bends off the hip->shoulder line; unknown reads as neutral
    neck = joint_angle(hip, shoulder, ear)
    neck_flexion = 180.0 - neck if np.isfinite(neck) else 0.0

    ys = []
    for side in SIDES:
        for base in ("hip", "knee", "shoulder"):
            kp = pick_keypoint(pose, f"{side}_{base}", min_confidence)
            if kp is not None:
                ys.append(kp.y)
    center_y = float(np.mean(ys)) if ys else float("nan")

    visible = sum(1 for kp in (hip, knee, ankle, shoulder, wrist, ear) if kp is not None)

    return FeatureSet(
        hip=hip,
        knee=knee,
        ankle=ankle,
        shoulder=shoulder,
        elbow=elbow,
        wrist=wrist,
        ear=ear,
        left_knee=pick_keypoint(pose, "left_knee", min_confidence),
        right_knee=pick_keypoint(pose, "right_knee", min_confidence),
        left_ankle=pick_keypoint(pose, "left_ankle", min_confidence),
        right_ankle=pick_keypoint(pose, "right_ankle", min_confidence),
        knee_angle=joint_angle(hip, knee, ankle),
        elbow_angle=joint_angle(shoulder, elbow, wrist),
        torso_tilt=tilt_from_vertical(hip, shoulder),
        neck_flexion=float(neck_flexion),
        hip_deviation=line_deviation(shoulder, ankle, hip),
        center_y=center_y,
        visible_count=visible,
    )
