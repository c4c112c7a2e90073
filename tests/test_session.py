from __future__ import annotations

import asyncio
from typing import List, Optional

import pytest

from analysis.session import PeriodicDriver, Session
from pose.backend import Keypoint, Pose, PoseSample, PoseSourceUnavailable


def _pose(**points) -> Pose:
    return Pose(tuple(Keypoint(x=float(x), y=float(y), confidence=0.9, name=name) for name, (x, y) in points.items()))


SQUAT_CONFIG = {"rep_down_frac": 0.10, "rep_top_frac": 0.03, "min_rep_interval": 0.6}


def _squat(scale: float = 1.0, lean: float = 0.0) -> Pose:
    return _pose(
        right_shoulder=(300.0 + lean, 200.0 * scale),
        right_hip=(300.0, 400.0 * scale),
        right_knee=(300.0, 500.0 * scale),
    )


PLANK = dict(
    right_shoulder=(100.0, 300.0),
    right_hip=(300.0, 300.0),
    right_ankle=(500.0, 300.0),
    right_elbow=(100.0, 350.0),
    right_wrist=(100.0, 400.0),
    right_ear=(60.0, 300.0),
)


class _RecordingSink:
    def __init__(self) -> None:
        self.spoken: List[str] = []

    def speak(self, text: str) -> None:
        self.spoken.append(text)


class _ScriptedSource:
    def __init__(self, poses) -> None:
        self.poses = list(poses)
        self.calls = 0

    async def get_next_pose(self, frame) -> Optional[Pose]:
        self.calls += 1
        if not self.poses:
            return None
        return self.poses.pop(0) if len(self.poses) > 1 else self.poses[0]


class _FailingSource:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    async def get_next_pose(self, frame) -> Optional[Pose]:
        raise self.exc


def _run_squat(poses) -> List:
    session = Session(config=SQUAT_CONFIG, use_env=False)
    session.start("squat")
    return [session.process(PoseSample(p, float(t))) for t, p in enumerate(poses)]


# ---------- end to end through process() ----------

def test_squat_session_counts_one_correct_rep():
    poses = [_squat()] * 3 + [_squat(1.15)] * 5 + [_squat()] * 2
    results = _run_squat(poses)
    events = [r.event for r in results if r.event is not None]
    assert len(events) == 1
    assert events[0].kind == "rep" and events[0].index == 1 and events[0].was_correct
    assert results[-1].reps == 1
    assert results[-1].exercise == "squat"


def test_squat_session_flags_leaning_rep():
    poses = [_squat()] * 3 + [_squat(1.15, lean=200.0)] * 5 + [_squat()] * 2
    events = [r.event for r in _run_squat(poses) if r.event is not None]
    assert len(events) == 1
    assert events[0].was_correct is False


def _side_view_squat(scale: float = 1.0) -> Pose:
    # both legs tracked, overlapping up to a few pixels of jitter
    return _pose(
        right_shoulder=(300.0, 200.0 * scale),
        left_shoulder=(303.0, 202.0 * scale),
        right_hip=(300.0, 400.0 * scale),
        left_hip=(304.0, 401.0 * scale),
        right_knee=(301.0, 500.0 * scale),
        left_knee=(303.0, 502.0 * scale),
        right_ankle=(300.0, 600.0),
        left_ankle=(306.0, 600.0),
    )


def test_side_view_squat_rep_is_correct():
    poses = [_side_view_squat()] * 3 + [_side_view_squat(1.15)] * 5 + [_side_view_squat()] * 2
    results = _run_squat(poses)
    events = [r.event for r in results if r.event is not None]
    assert len(events) == 1
    assert events[0].was_correct is True
    assert all(r.cue != "Push knees out" for r in results)


def test_status_latches_and_cue_is_spoken_once():
    sink = _RecordingSink()
    session = Session(sink=sink, config=SQUAT_CONFIG, use_env=False)
    session.start("squat")
    results = [session.process(PoseSample(_squat(), t * 0.1)) for t in range(8)]
    assert [r.status for r in results[:5]] == ["neutral"] * 5
    assert results[5].status == "bad"
    assert all(r.cue == "Lower more" for r in results)
    assert sink.spoken == ["Lower more"]


def test_plank_hold_survives_dropout_and_closes_out():
    session = Session(config={}, use_env=False)
    session.start("plank")
    good = _pose(**PLANK)
    last = None
    for i in range(9):
        t = i * 0.25
        pose = None if t == 1.25 else good
        last = session.process(PoseSample(pose, t))
    assert last.form_correct is True
    assert last.hold_seconds == 2
    assert last.hold_current == 2

    lost = session.process(PoseSample(None, 4.0))
    assert lost.form_correct is False
    assert lost.hold_current == 0
    assert lost.hold_best == 2
    assert lost.hold_seconds == 2


def test_plank_sag_cue():
    session = Session(config={}, use_env=False)
    session.start("plank")
    r = session.process(PoseSample(_pose(**{**PLANK, "right_hip": (300.0, 360.0)}), 0.0))
    assert r.form_correct is False
    assert r.cue == "Lift hips"
    assert r.spoken == "Lift hips"


def test_too_few_keypoints_is_not_evaluated():
    session = Session(config={}, use_env=False)
    session.start("squat")
    r = session.process(PoseSample(_pose(right_hip=(300.0, 400.0)), 0.0))
    assert r.form_correct is False
    assert r.cue == ""
    assert r.event is None


def test_commands():
    session = Session(config={}, use_env=False)
    assert not session.active
    with pytest.raises(RuntimeError):
        session.set_exercise("plank")
    with pytest.raises(RuntimeError):
        session.process(PoseSample(None, 0.0))
    session.start("push-up")
    assert session.exercise.value == "pushup"
    session.set_exercise("wall_sit")
    assert session.exercise.value == "wallsit"
    assert session.profile.hold_reset_on_miss is False
    session.stop()
    session.stop()
    assert not session.active
    with pytest.raises(ValueError):
        session.start("burpee")


def test_set_exercise_keeps_recent_pose():
    session = Session(config={}, use_env=False)
    session.start("squat")
    session.process(PoseSample(_pose(**PLANK), 0.0))
    session.set_exercise("plank")
    r = session.process(PoseSample(None, 0.5))
    assert r.form_correct is True


# ---------- async step ----------

def test_step_returns_none_when_stopped():
    session = Session(pose_source=_ScriptedSource([_squat()]), config={}, use_env=False)
    assert asyncio.run(session.step(None, now=0.0)) is None


def test_step_without_source_raises():
    session = Session(config={}, use_env=False)
    session.start("squat")
    with pytest.raises(RuntimeError):
        asyncio.run(session.step(None, now=0.0))


def test_step_runs_a_cycle():
    source = _ScriptedSource([_squat()])
    session = Session(pose_source=source, config={}, use_env=False)
    session.start("squat")
    r = asyncio.run(session.step(None, now=0.0))
    assert r is not None and r.cue == "Lower more"
    assert source.calls == 1


def test_source_error_counts_as_no_pose():
    session = Session(pose_source=_FailingSource(ValueError("bad frame")), config={}, use_env=False)
    session.start("plank")
    r = asyncio.run(session.step(None, now=0.0))
    assert r is not None
    assert r.form_correct is False
    assert session.active


def test_unavailable_source_stops_session():
    session = Session(pose_source=_FailingSource(PoseSourceUnavailable("no model")), config={}, use_env=False)
    session.start("plank")
    with pytest.raises(PoseSourceUnavailable):
        asyncio.run(session.step(None, now=0.0))
    assert not session.active


def test_unavailable_source_after_restart_keeps_new_session():
    session = Session(config={}, use_env=False)

    class _RestartThenFail:
        async def get_next_pose(self, frame):
            session.start("plank")
            raise PoseSourceUnavailable("camera closed")

    session.pose_source = _RestartThenFail()
    session.start("squat")
    with pytest.raises(PoseSourceUnavailable):
        asyncio.run(session.step(None, now=0.0))
    assert session.active
    assert session.exercise.value == "plank"


def test_exercise_switch_during_fetch_discards_cycle():
    session = Session(config={}, use_env=False)

    class _SwitchingSource:
        async def get_next_pose(self, frame):
            session.set_exercise("plank")
            return _pose(**PLANK)

    session.pose_source = _SwitchingSource()
    session.start("squat")
    assert asyncio.run(session.step(None, now=0.0)) is None
    assert session.exercise.value == "plank"


def test_overlapping_step_is_skipped():
    class _GatedSource:
        def __init__(self) -> None:
            self.gate = asyncio.Event()

        async def get_next_pose(self, frame):
            await self.gate.wait()
            return _squat()

    async def scenario():
        source = _GatedSource()
        session = Session(pose_source=source, config={}, use_env=False)
        session.start("squat")
        first = asyncio.ensure_future(session.step(None, now=0.0))
        await asyncio.sleep(0)
        second = await session.step(None, now=0.1)
        source.gate.set()
        return await first, second

    first, second = asyncio.run(scenario())
    assert second is None
    assert first is not None


# ---------- periodic driver ----------

def test_driver_ticks_until_stopped():
    async def scenario():
        session = Session(pose_source=_ScriptedSource([_squat()]), config={}, use_env=False)
        session.start("squat")
        results = []
        driver = PeriodicDriver(session, lambda: None, period=0.01, on_result=results.append)
        task = driver.start()
        assert driver.running
        await asyncio.sleep(0.08)
        driver.stop()
        driver.stop()
        with pytest.raises(asyncio.CancelledError):
            await task
        return driver, results

    driver, results = asyncio.run(scenario())
    assert not driver.running
    assert len(results) >= 2
    assert all(r.exercise == "squat" for r in results)


def test_driver_ends_when_source_is_unavailable():
    async def scenario():
        session = Session(pose_source=_FailingSource(PoseSourceUnavailable("camera denied")), config={}, use_env=False)
        session.start("plank")
        driver = PeriodicDriver(session, lambda: None, period=0.01)
        task = driver.start()
        with pytest.raises(PoseSourceUnavailable):
            await task
        return session, driver

    session, driver = asyncio.run(scenario())
    assert not session.active
    assert not driver.running


def test_driver_uses_profile_period():
    session = Session(config={"cycle_period": 0.5}, use_env=False)
    session.start("squat")
    assert PeriodicDriver(session, lambda: None)._period() == 0.5
