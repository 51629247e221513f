"""Tests for the step-at-a-time L-BFGS maximizer."""

import numpy
import pytest

from pacrf import LimitedMemoryBFGS
from pacrf.utility import OptimizationException


class Quadratic(object):
    '''Concave quadratic with its maximum at `center`.'''

    def __init__(self, center, curvature, start):
        self.center = numpy.asarray(center, dtype=float)
        self.curvature = numpy.asarray(curvature, dtype=float)
        self.params = numpy.asarray(start, dtype=float)

    def get_parameters(self, buf=None):
        return self.params.copy()

    def set_parameters(self, params):
        self.params = numpy.array(params, dtype=float)

    def get_value(self):
        d = self.params - self.center
        return -0.5 * numpy.sum(self.curvature * d * d)

    def get_value_gradient(self, buf=None):
        return -self.curvature * (self.params - self.center)


class Impossible(Quadratic):

    def get_value(self):
        return -numpy.inf


@pytest.fixture
def quadratic():
    return Quadratic([1.0, -2.0, 0.5], [1.0, 3.0, 10.0], [0.0, 0.0, 0.0])


def test_climbs_to_maximum(quadratic):
    opt = LimitedMemoryBFGS(quadratic)
    assert opt.optimize(100)
    assert opt.converged
    assert numpy.allclose(quadratic.params, quadratic.center, atol=1e-2)


def test_one_step_per_call(quadratic):
    """optimize(1) moves once and keeps one curvature pair."""
    start = quadratic.get_value()
    opt = LimitedMemoryBFGS(quadratic)
    assert not opt.optimize(1)
    assert quadratic.get_value() > start
    assert len(opt.s) == 1


def test_history_is_bounded(quadratic):
    opt = LimitedMemoryBFGS(quadratic, m=2)
    for _ in range(4):
        if opt.optimize(1):
            break
    assert len(opt.s) <= 2
    assert len(opt.s) == len(opt.y)


def test_reset_forgets_history(quadratic):
    opt = LimitedMemoryBFGS(quadratic)
    opt.optimize(1)
    opt.optimize(1)
    before = quadratic.get_value()
    opt.reset()
    assert len(opt.s) == 0
    opt.optimize(1)
    assert quadratic.get_value() >= before
    assert len(opt.s) <= 1


def test_non_finite_start():
    objective = Impossible([0.0], [1.0], [1.0])
    with pytest.raises(OptimizationException):
        LimitedMemoryBFGS(objective).optimize(1)
