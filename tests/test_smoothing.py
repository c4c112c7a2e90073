from __future__ import annotations

import math

import pytest

from pose.smoothing import ScalarEma


def test_ema_initialization_and_update():
    ema = ScalarEma(alpha=0.5)
    assert not ema.ready
    assert math.isnan(ema.value)

    assert ema.update(0.2) == pytest.approx(0.2)
    # EMA: 0.5*0.4 + 0.5*0.2 = 0.3
    assert ema.update(0.4) == pytest.approx(0.3)


def test_ema_ignores_non_finite_observations():
    ema = ScalarEma(alpha=0.8)
    ema.update(0.5)
    assert ema.update(float("nan")) == pytest.approx(0.5)
    # EMA: 0.8*0.7 + 0.2*0.5 = 0.66
    assert ema.update(0.7) == pytest.approx(0.66)


def test_ema_seed_and_reset():
    ema = ScalarEma(alpha=0.1)
    ema.update(10.0)
    ema.seed(2.0)
    assert ema.value == 2.0
    ema.reset()
    assert not ema.ready


def test_ema_rejects_bad_alpha():
    with pytest.raises(ValueError):
        ScalarEma(alpha=0.0)
    with pytest.raises(ValueError):
        ScalarEma(alpha=1.5)
