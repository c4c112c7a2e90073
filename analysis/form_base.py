from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from pose.smoothing import ScalarEma
from .features import FeatureSet
from .fsm_hold import HoldTimer
from .fsm_reps import ExerciseEvent, RepFSM, RepThresholds
from .utils import Exercise, ThresholdProfile


@dataclass(frozen=True)
class Verdict:
    """
    Per-frame result of a form evaluator.

    displacement feeds the rep FSM (NaN means no signal this frame); depth_reached and
    posture_ok decide whether a counted rep was done correctly.
    """
    form_correct: bool
    cue: str
    displacement: float = float("nan")
    depth_reached: bool = False
    posture_ok: bool = False


NO_VERDICT = Verdict(form_correct=False, cue="")


class AdaptiveBaseline:
    """
    Slowly adapting reference level of a motion signal, expressed as a relative displacement.

    direction=+1 reads increases of the signal as movement away from the rest position,
    direction=-1 reads decreases that way. With snap_to_rest, a value beyond the rest
    position replaces the baseline at once (whenever adaptation is allowed).
    """

    def __init__(self, alpha: float, *, direction: int = 1, snap_to_rest: bool = False) -> None:
        self._ema = ScalarEma(alpha)
        self.direction = 1 if direction >= 0 else -1
        self.snap_to_rest = snap_to_rest

    @property
    def value(self) -> float:
        return self._ema.value

    def reset(self) -> None:
        self._ema.reset()

    def displacement(self, value: float) -> float:
        if not np.isfinite(value):
            return float("nan")
        if not self._ema.ready:
            self._ema.seed(value)
        base = self._ema.value
        if abs(base) <= 1e-9:
            return float("nan")
        return self.direction * (value - base) / abs(base)

    def adapt(self, value: float, displacement: float) -> None:
        if not np.isfinite(value):
            return
        if self.snap_to_rest and displacement < 0.0:
            self._ema.seed(value)
        else:
            self._ema.update(value)


class FormEvaluator:
    """
    Common shape of the per-exercise evaluators.

    evaluate() maps the frame's features to a Verdict using the evaluator's thresholds
    and state; advance() feeds that verdict to the exercise's rep or hold counter.
    """

    exercise: Exercise

    def __init__(self, thresholds: ThresholdProfile) -> None:
        self.thresholds = thresholds

    def reset(self) -> None:
        raise NotImplementedError

    def evaluate(self, features: FeatureSet, now: float) -> Verdict:
        raise NotImplementedError

    def advance(self, verdict: Verdict, now: float) -> Optional[ExerciseEvent]:
        raise NotImplementedError

    def close_out(self) -> None:
        """Tracking was lost beyond the holdover window."""

    @property
    def reps(self) -> int:
        return 0

    @property
    def hold_seconds(self) -> int:
        return 0

    @property
    def hold_current(self) -> int:
        return 0

    @property
    def hold_best(self) -> int:
        return 0


class RepEvaluator(FormEvaluator):
    """Evaluator whose exercise is counted in discrete repetitions."""

    def __init__(self, thresholds: ThresholdProfile, rep_thresholds: RepThresholds) -> None:
        super().__init__(thresholds)
        self.fsm = RepFSM(rep_thresholds)

    def reset(self) -> None:
        self.fsm.reset()

    def advance(self, verdict: Verdict, now: float) -> Optional[ExerciseEvent]:
        return self.fsm.process_frame(
            verdict.displacement,
            now=now,
            depth_reached=verdict.depth_reached,
            posture_ok=verdict.posture_ok,
        )

    @property
    def reps(self) -> int:
        return self.fsm.state.reps


class HoldEvaluator(FormEvaluator):
    """Evaluator whose exercise is scored in seconds of sustained correct posture."""

    def __init__(self, thresholds: ThresholdProfile) -> None:
        super().__init__(thresholds)
        self.timer = HoldTimer(
            thresholds.hold_second_green_frac,
            bucket_seconds=thresholds.hold_bucket_seconds,
            reset_on_miss=thresholds.hold_reset_on_miss,
        )

    def reset(self) -> None:
        self.timer.reset()

    def advance(self, verdict: Verdict, now: float) -> Optional[ExerciseEvent]:
        return self.timer.process_frame(verdict.form_correct, now=now)

    def close_out(self) -> None:
        self.timer.close_out()

    @property
    def hold_seconds(self) -> int:
        return self.timer.state.seconds

    @property
    def hold_current(self) -> int:
        return self.timer.state.current

    @property
    def hold_best(self) -> int:
        return self.timer.best


def make_evaluator(exercise: Exercise, thresholds: ThresholdProfile) -> FormEvaluator:
    from .form_deadbug import DeadbugEvaluator
    from .form_plank import PlankEvaluator
    from .form_pushup import PushupEvaluator
    from .form_squat import SquatEvaluator
    from .form_wallsit import WallsitEvaluator

    evaluators = {
        Exercise.SQUAT: SquatEvaluator,
        Exercise.PUSHUP: PushupEvaluator,
        Exercise.PLANK: PlankEvaluator,
        Exercise.DEADBUG: DeadbugEvaluator,
        Exercise.WALLSIT: WallsitEvaluator,
    }
    return evaluators[Exercise.parse(exercise)](thresholds)
