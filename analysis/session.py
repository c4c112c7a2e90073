from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Protocol, Union

from pose.backend import Pose, PoseSample, PoseSourceUnavailable
from pose.holdover import PoseHoldover
from .cues import CueDispatcher, NullSink, SpeechSink
from .features import extract_features
from .form_base import NO_VERDICT, FormEvaluator, make_evaluator
from .fsm_reps import ExerciseEvent
from .hysteresis import HysteresisLatch
from .utils import Exercise, ThresholdProfile, load_profile


logger = logging.getLogger(__name__)


class PoseSource(Protocol):
    async def get_next_pose(self, frame: object) -> Optional[Pose]:
        ...


@dataclass(frozen=True)
class CycleResult:
    exercise: str
    form_correct: bool
    cue: str
    status: str  # "good" | "bad" | "neutral"
    event: Optional[ExerciseEvent]
    spoken: Optional[str]
    reps: int
    hold_seconds: int
    hold_current: int
    hold_best: int


class _SessionState:
    """Everything one exercise run mutates; replaced wholesale, never patched in place."""

    def __init__(
        self,
        exercise: Exercise,
        profile: ThresholdProfile,
        sink: Optional[SpeechSink],
        holdover: Optional[PoseHoldover] = None,
    ) -> None:
        self.exercise = exercise
        self.profile = profile
        self.evaluator: FormEvaluator = make_evaluator(exercise, profile)
        self.latch = HysteresisLatch(profile.good_frames_to_green, profile.bad_frames_to_red)
        self.cues = CueDispatcher(profile.cue_hold_seconds, sink)
        self.holdover = holdover if holdover is not None else PoseHoldover(profile.holdover_seconds)


class Session:
    """
    One athlete, one evaluation pipeline.

    Per cycle: holdover resolves a pose -> features -> the active exercise's evaluator ->
    rep/hold counter -> status latch -> cue dispatcher. Commands (start, set_exercise,
    stop) swap the whole per-exercise state at once, so a cycle that was awaiting the
    pose source while a command ran is discarded instead of mixing old and new state.
    """

    def __init__(
        self,
        pose_source: Optional[PoseSource] = None,
        sink: Optional[SpeechSink] = None,
        config: Optional[Mapping[str, object]] = None,
        *,
        use_env: bool = True,
    ) -> None:
        self.pose_source = pose_source
        self.sink: SpeechSink = sink if sink is not None else NullSink()
        self.config = dict(config or {})
        self.use_env = use_env
        self._state: Optional[_SessionState] = None
        self._in_flight = False

    @property
    def active(self) -> bool:
        return self._state is not None

    @property
    def exercise(self) -> Optional[Exercise]:
        return self._state.exercise if self._state is not None else None

    @property
    def profile(self) -> Optional[ThresholdProfile]:
        return self._state.profile if self._state is not None else None

    def _build(self, exercise: Union[str, Exercise], holdover: Optional[PoseHoldover] = None) -> _SessionState:
        kind = Exercise.parse(exercise)
        profile = load_profile(kind, self.config, use_env=self.use_env)
        return _SessionState(kind, profile, self.sink, holdover)

    def start(self, exercise: Union[str, Exercise]) -> None:
        self._state = self._build(exercise)
        logger.debug("session started: %s", self._state.exercise.value)

    def set_exercise(self, exercise: Union[str, Exercise]) -> None:
        if self._state is None:
            raise RuntimeError("session is not started")
        # the pose buffer belongs to the camera, not to the exercise
        self._state = self._build(exercise, holdover=self._state.holdover)
        logger.debug("exercise switched: %s", self._state.exercise.value)

    def stop(self) -> None:
        if self._state is not None:
            logger.debug("session stopped: %s", self._state.exercise.value)
        self._state = None

    def process(self, sample: PoseSample) -> CycleResult:
        """Run one cycle on a pose that has already been fetched."""
        if self._state is None:
            raise RuntimeError("session is not started")
        return self._cycle(self._state, sample)

    async def step(self, frame: object, now: Optional[float] = None) -> Optional[CycleResult]:
        """
        Fetch a pose for `frame` and run one cycle.

        Returns None when the session is stopped, when another step is still in flight,
        or when a command swapped the session state while the pose was being fetched.
        Pose source failures count as "no pose"; PoseSourceUnavailable stops the session
        (unless a command already replaced its state) and propagates.
        """
        state = self._state
        if state is None:
            return None
        if self.pose_source is None:
            raise RuntimeError("session has no pose source")
        if self._in_flight:
            logger.debug("cycle skipped: previous cycle still in flight")
            return None

        timestamp = time.monotonic() if now is None else float(now)
        self._in_flight = True
        try:
            pose = await self.pose_source.get_next_pose(frame)
        except PoseSourceUnavailable:
            logger.error("pose source unavailable; stopping session")
            # a command may already have replaced the state this step belonged to
            if self._state is state:
                self.stop()
            raise
        except Exception as exc:
            logger.warning("pose source failed, treating as no pose: %s", exc)
            pose = None
        finally:
            self._in_flight = False

        if self._state is not state:
            logger.debug("cycle discarded: session state changed while awaiting pose")
            return None
        return self._cycle(state, PoseSample(pose, timestamp))

    def _cycle(self, st: _SessionState, sample: PoseSample) -> CycleResult:
        now = float(sample.timestamp)
        evaluator = st.evaluator
        verdict = NO_VERDICT
        event: Optional[ExerciseEvent] = None

        pose = st.holdover.resolve(sample)
        if pose is None:
            evaluator.close_out()
        else:
            features = extract_features(pose, st.profile.min_kp_score)
            if features.visible_count >= st.profile.min_visible_keypoints:
                verdict = evaluator.evaluate(features, now)
                event = evaluator.advance(verdict, now)

        st.latch.update(verdict.form_correct)
        spoken = st.cues.dispatch(verdict.cue, now)
        if event is not None:
            logger.debug("%s event %s #%d (correct=%s)", st.exercise.value, event.kind, event.index, event.was_correct)

        return CycleResult(
            exercise=st.exercise.value,
            form_correct=verdict.form_correct,
            cue=verdict.cue,
            status=st.latch.status,
            event=event,
            spoken=spoken,
            reps=evaluator.reps,
            hold_seconds=evaluator.hold_seconds,
            hold_current=evaluator.hold_current,
            hold_best=evaluator.hold_best,
        )


class PeriodicDriver:
    """
    Drives Session.step on a fixed period from an asyncio task.

    Each tick awaits its step before sleeping, so cycles never overlap. stop() cancels
    the pending tick and may be called any number of times.
    """

    def __init__(
        self,
        session: Session,
        frame_provider: Callable[[], object],
        *,
        period: Optional[float] = None,
        on_result: Optional[Callable[[CycleResult], None]] = None,
    ) -> None:
        self.session = session
        self.frame_provider = frame_provider
        self.period = period
        self.on_result = on_result
        self._task: Optional["asyncio.Task[None]"] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "asyncio.Task[None]":
        self.stop()
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    def _period(self) -> float:
        if self.period is not None:
            return float(self.period)
        profile = self.session.profile
        return profile.cycle_period if profile is not None else ThresholdProfile().cycle_period

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while self.session.active:
            t0 = loop.time()
            result = await self.session.step(self.frame_provider(), now=t0)
            if result is not None and self.on_result is not None:
                self.on_result(result)
            await asyncio.sleep(max(0.0, self._period() - (loop.time() - t0)))
