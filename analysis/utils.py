from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Dict, Mapping, Optional, Union


class Exercise(str, Enum):
    SQUAT = "squat"
    PUSHUP = "pushup"
    PLANK = "plank"
    DEADBUG = "deadbug"
    WALLSIT = "wallsit"

    @classmethod
    def parse(cls, value: Union[str, "Exercise"]) -> "Exercise":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower().replace("-", "").replace("_", ""))
        except ValueError:
            raise ValueError(f"unknown exercise: {value!r}") from None


@dataclass(frozen=True)
class ThresholdProfile:
    """
    Every tunable of the evaluation engine. Angles in degrees, distances in pixels,
    durations in seconds. Values are not range-checked: supplying sane numbers is up
    to whoever owns the configuration.
    """

    # keypoints & gating
    min_kp_score: float = 0.25
    min_visible_keypoints: int = 2
    holdover_seconds: float = 1.2

    # cues & status latch
    cue_hold_seconds: float = 0.8
    good_frames_to_green: int = 2
    bad_frames_to_red: int = 6

    # hold exercises
    hold_second_green_frac: float = 0.6
    hold_bucket_seconds: float = 1.0
    hold_reset_on_miss: bool = True

    # rep counting
    min_rep_interval: float = 0.6
    rep_down_frac: float = 0.06
    rep_top_frac: float = 0.03

    # squat
    baseline_alpha: float = 0.015
    squat_torso_change_max: float = 30.0
    knee_cave_frac: float = 0.25
    knee_cave_min_stance_frac: float = 0.25  # ankle width / torso length below this reads as a side view

    # body line (plank / push-up)
    line_dev_max: float = 14.0
    neck_max: float = 28.0
    plank_horizontal_max_deg: float = 25.0
    support_under_shoulder_px: float = 60.0
    plank_min_shoulder_ankle_dx_px: float = 150.0
    pushup_horizontal_max_deg: float = 30.0
    pushup_support_under_shoulder_px: float = 70.0
    pushup_depth_elbow_max: float = 110.0
    pushup_rep_down_frac: float = 0.12
    pushup_rep_top_frac: float = 0.05

    # dead bug
    deadbug_back_contact_max_px: float = 55.0
    deadbug_limb_speed_max_px: float = 420.0  # per second
    deadbug_reach_frac: float = 0.15
    deadbug_return_frac: float = 0.05

    # wall sit
    wallsit_knee_min: float = 75.0
    wallsit_knee_max: float = 115.0
    wallsit_shin_tilt_max: float = 14.0
    wallsit_back_tilt_max: float = 14.0

    # looped reference clips get the lenient plank/push-up rule when set
    reference_clip_leniency: bool = False

    cycle_period: float = 0.3

    @classmethod
    def from_mapping(
        cls,
        mapping: Optional[Mapping[str, object]] = None,
        exercise: Optional[Union[str, Exercise]] = None,
    ) -> "ThresholdProfile":
        """
        Build a profile from a flat key -> number mapping.

        Unrecognized keys are ignored and missing keys keep their defaults. When
        `exercise` is given, "<exercise>_<key>" wins over "<key>" (e.g. plank_line_dev_max).
        """
        kind = Exercise.parse(exercise) if exercise is not None else None
        base = EXERCISE_DEFAULTS.get(kind, {}) if kind is not None else {}
        profile = replace(cls(), **base) if base else cls()
        if not mapping:
            return profile

        updates: Dict[str, object] = {}
        for f in fields(cls):
            raw = mapping.get(f.name)
            if kind is not None:
                raw = mapping.get(f"{kind.value}_{f.name}", raw)
            if raw is None:
                continue
            updates[f.name] = _coerce(f.type, raw)
        return replace(profile, **updates)


# Per-exercise defaults that differ from the global ones
EXERCISE_DEFAULTS: Dict[Exercise, Dict[str, object]] = {
    # wall-sit keeps the visible timer running through a weak second
    Exercise.WALLSIT: {"hold_reset_on_miss": False},
}


def _coerce(type_name: object, raw: object) -> object:
    name = getattr(type_name, "__name__", type_name)
    if name == "bool":
        return bool(float(raw))  # type: ignore[arg-type]
    if name == "int":
        return int(round(float(raw)))  # type: ignore[arg-type]
    return float(raw)  # type: ignore[arg-type]


ENV_PREFIX = "FORMCUE_"


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, float]:
    """Collect FORMCUE_<KEY> numeric overrides, e.g. FORMCUE_CUE_HOLD_SECONDS=1.0."""
    env = os.environ if environ is None else environ
    out: Dict[str, float] = {}
    for key, raw in env.items():
        if not key.startswith(ENV_PREFIX):
            continue
        try:
            out[key[len(ENV_PREFIX):].lower()] = float(str(raw).strip())
        except ValueError:
            continue
    return out


def load_profile(
    exercise: Union[str, Exercise],
    config: Optional[Mapping[str, object]] = None,
    *,
    use_env: bool = True,
) -> ThresholdProfile:
    """Environment overrides first, then the explicit mapping on top."""
    merged: Dict[str, object] = {}
    if use_env:
        merged.update(env_overrides())
    if config:
        merged.update(config)
    return ThresholdProfile.from_mapping(merged, exercise)
