# -*- coding: utf-8 -*-
"""
Limited-memory BFGS that maximizes an objective one iteration at a time, so
the trainer can interleave evaluation, early stopping and recovery.

The step direction comes from the usual two-loop recursion; step lengths
come from scipy's Wolfe line search.

License (BSD)
==============
Copyright (c) 2013, Huang,Zheng.  huang-zheng@sjtu.edu.cn
All rights reserved.

THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS" AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.

"""

import collections
import logging

import numpy
from scipy import optimize

from .utility import OptimizationException

logger = logging.getLogger(__name__)

EPS = 1e-10


class LimitedMemoryBFGS(object):
    '''Maximizes `objective` (get_value, get_value_gradient, get_parameters,
    set_parameters). Internally minimizes the negated value.

    scipy.optimize.fmin_l_bfgs_b only runs a whole optimization per call;
    the trainer drives one step per optimize(1) and calls reset() after a
    failure, so the two-loop recursion lives here and only the line search
    comes from scipy.'''

    def __init__(self, objective, m=4, tolerance=1e-4, gradient_tolerance=1e-3):
        self.objective = objective
        self.m = m
        self.tolerance = tolerance
        self.gradient_tolerance = gradient_tolerance
        self.converged = False
        self.reset()

    def reset(self):
        '''Forget the curvature history; the next step is steepest ascent.'''
        self.s = collections.deque(maxlen=self.m)
        self.y = collections.deque(maxlen=self.m)
        self._x = None
        self._fval = None
        self._grad = None

    def _f(self, x):
        self.objective.set_parameters(x)
        return -self.objective.get_value()

    def _fprime(self, x):
        self.objective.set_parameters(x)
        return -self.objective.get_value_gradient()

    def _direction(self, grad):
        if not self.s:
            norm = numpy.linalg.norm(grad)
            return -grad / norm if norm > 0 else -grad
        q = grad.copy()
        alphas = []
        for s, y in zip(reversed(self.s), reversed(self.y)):
            rho = 1.0 / numpy.dot(y, s)
            a = rho * numpy.dot(s, q)
            q -= a * y
            alphas.append((rho, a))
        s, y = self.s[-1], self.y[-1]
        q *= numpy.dot(s, y) / numpy.dot(y, y)
        for (s, y), (rho, a) in zip(zip(self.s, self.y), reversed(alphas)):
            b = rho * numpy.dot(y, q)
            q += (a - b) * s
        return -q

    def step(self):
        '''One line-search iteration. Returns True when converged.'''
        if self._x is None:
            self._x = numpy.array(self.objective.get_parameters())
            self._fval = self._f(self._x)
            self._grad = self._fprime(self._x)
            if not numpy.isfinite(self._fval):
                raise OptimizationException("Objective is not finite at the starting point: %s" % -self._fval)
        x, fval, grad = self._x, self._fval, self._grad

        if numpy.linalg.norm(grad) < self.gradient_tolerance:
            logger.info("L-BFGS: gradient norm below %g, converged", self.gradient_tolerance)
            return True

        direction = self._direction(grad)
        if numpy.dot(direction, grad) >= 0:
            logger.warning("L-BFGS: not an ascent direction, resetting history")
            self.s.clear()
            self.y.clear()
            direction = self._direction(grad)

        alpha = optimize.line_search(self._f, self._fprime, x, direction, gfk=grad, old_fval=fval)[0]
        if alpha is None:
            raise OptimizationException("Line search failed to find a step from value %s" % -fval)

        new_x = x + alpha * direction
        new_fval = self._f(new_x)
        new_grad = self._fprime(new_x)
        if not numpy.isfinite(new_fval):
            raise OptimizationException("Line search stepped to a non-finite value")

        s = new_x - x
        y = new_grad - grad
        if numpy.dot(s, y) > EPS:
            self.s.append(s)
            self.y.append(y)

        self._x, self._fval, self._grad = new_x, new_fval, new_grad
        logger.info("L-BFGS: value = %s, step = %g", -new_fval, alpha)
        return 2.0 * abs(new_fval - fval) <= self.tolerance * (abs(new_fval) + abs(fval) + EPS)

    def optimize(self, num_iterations=1):
        for _ in range(num_iterations):
            if self.step():
                self.converged = True
                return True
        return False
