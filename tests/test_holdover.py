from __future__ import annotations

import pytest

from pose.backend import Keypoint, Pose, PoseSample
from pose.holdover import PoseHoldover


def _pose(x: float = 1.0) -> Pose:
    return Pose((Keypoint(x=x, y=2.0, confidence=0.9, name="right_hip"),))


def test_fresh_pose_is_stored_and_returned():
    buf = PoseHoldover(window=1.2)
    p = _pose()
    assert buf.resolve(PoseSample(p, 0.0)) is p


def test_missing_pose_within_window_reuses_last():
    buf = PoseHoldover(window=1.2)
    p = _pose()
    buf.resolve(PoseSample(p, 10.0))
    assert buf.resolve(PoseSample(None, 10.5)) is p
    assert buf.resolve(PoseSample(None, 11.19)) is p


def test_missing_pose_past_window_returns_none():
    buf = PoseHoldover(window=1.2)
    buf.resolve(PoseSample(_pose(), 10.0))
    assert buf.resolve(PoseSample(None, 11.25)) is None
    assert buf.resolve(PoseSample(None, 12.0)) is None


def test_new_pose_refreshes_window():
    buf = PoseHoldover(window=1.0)
    buf.resolve(PoseSample(_pose(1.0), 0.0))
    p2 = _pose(2.0)
    buf.resolve(PoseSample(p2, 0.9))
    assert buf.resolve(PoseSample(None, 1.5)) is p2


def test_nothing_stored_and_reset():
    buf = PoseHoldover()
    assert buf.resolve(PoseSample(None, 0.0)) is None
    buf.resolve(PoseSample(_pose(), 1.0))
    buf.reset()
    assert buf.resolve(PoseSample(None, 1.1)) is None


def test_negative_window_rejected():
    with pytest.raises(ValueError):
        PoseHoldover(window=-0.1)
