# -*- coding: utf-8 -*-
"""
Inference over unrolled graphs.

Both engines expose the same small surface: compute_marginals(graph), then
lookup_marginal(...) and lookup_log_joint(assignment) against the last graph;
best_assignment(graph) decodes.

License (BSD)
==============
Copyright (c) 2013, Huang,Zheng.  huang-zheng@sjtu.edu.cn
All rights reserved.

THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS" AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.

"""

import copy
import logging

import numpy
from scipy.special import logsumexp

from .factors import LogTableFactor
from .instances import Assignment, Variable
from .utility import (log_normalize, logdotexp_mat_vec, logdotexp_vec_mat,
                      maxdotexp_mat_vec, maxdotexp_vec_mat)

logger = logging.getLogger(__name__)


def _variables_of(obj):
    if isinstance(obj, Variable):
        return (obj,)
    if isinstance(obj, (list, tuple)):
        return tuple(obj)
    return tuple(obj.variables)


class Inferencer(object):

    def compute_marginals(self, graph):
        raise NotImplementedError

    def lookup_marginal(self, obj):
        raise NotImplementedError

    def lookup_log_joint(self, assn):
        raise NotImplementedError

    def best_assignment(self, graph):
        raise NotImplementedError

    def duplicate(self):
        return copy.copy(self)


class BruteForceInferencer(Inferencer):
    '''Exact inference by building the full joint table. Only for small graphs.'''

    def __init__(self):
        self.variables = ()
        self.log_joint = None

    def compute_marginals(self, graph):
        variables = tuple(graph.variables)
        joint = numpy.zeros([v.num_outcomes for v in variables])
        for factor in graph.factors:
            joint = joint + factor.expand(variables)
        self.variables = variables
        self.log_joint = log_normalize(joint)

    def lookup_marginal(self, obj):
        joint = LogTableFactor(self.variables, self.log_joint)
        return joint.marginalize(_variables_of(obj))

    def lookup_log_joint(self, assn):
        return float(self.log_joint[tuple(assn.get(v) for v in self.variables)])

    def best_assignment(self, graph):
        self.compute_marginals(graph)
        if not self.variables:
            return Assignment()
        best = numpy.unravel_index(int(numpy.argmax(self.log_joint)), self.log_joint.shape)
        return Assignment(self.variables, best)


class BeliefPropagation(Inferencer):
    '''Log-space loopy belief propagation with a flooding schedule.

    Exact on trees. With max_product=True the beliefs are max-marginals and
    the instance can serve as the model's decoder.'''

    def __init__(self, max_product=False, max_iter=100, tolerance=1e-8):
        self.max_product = max_product
        self.max_iter = max_iter
        self.tolerance = tolerance
        self.iterations_used = 0

    def _reduce(self, table, keep_axis):
        axes = tuple(i for i in range(table.ndim) if i != keep_axis)
        if not axes:
            return table
        if self.max_product:
            return numpy.max(table, axis=axes)
        return logsumexp(table, axis=axes)

    def _factor_message(self, fi, pos):
        table = self._tables[fi]
        incoming = self._msg_vf[fi]
        if table.ndim == 1:
            return table
        if table.ndim == 2:
            other = incoming[1 - pos]
            if self.max_product:
                if pos == 0:
                    return maxdotexp_vec_mat(other, table)
                return maxdotexp_mat_vec(table, other)
            if pos == 0:
                return logdotexp_vec_mat(other, table)
            return logdotexp_mat_vec(table, other)
        total = table
        for q, msg in enumerate(incoming):
            if q != pos:
                shape = [1] * table.ndim
                shape[q] = len(msg)
                total = total + msg.reshape(shape)
        return self._reduce(total, pos)

    def _var_message(self, var, skip):
        n = var.num_outcomes
        msg = numpy.zeros(n)
        for k, (fi, pos) in enumerate(self._var_factors[var]):
            if k != skip:
                msg = msg + self._msg_fv[fi][pos]
        return log_normalize(msg)

    def compute_marginals(self, graph):
        factors = list(graph.factors)
        self._factors = factors
        self._tables = [f.log_values for f in factors]
        self._factor_index = dict((f.varset, fi) for fi, f in enumerate(factors))
        self.variables = tuple(graph.variables)
        self._var_factors = dict((v, []) for v in self.variables)
        for fi, f in enumerate(factors):
            for pos, v in enumerate(f.variables):
                self._var_factors[v].append((fi, pos))

        uniform = lambda v: numpy.full(v.num_outcomes, -numpy.log(v.num_outcomes))
        self._msg_vf = [[uniform(v) for v in f.variables] for f in factors]
        self._msg_fv = [[uniform(v) for v in f.variables] for f in factors]

        self.iterations_used = 0
        for it in range(self.max_iter):
            self.iterations_used = it + 1
            delta = 0.0
            new_fv = []
            for fi, f in enumerate(factors):
                row = []
                for pos in range(len(f.variables)):
                    msg = log_normalize(self._factor_message(fi, pos))
                    old = self._msg_fv[fi][pos]
                    diff = numpy.where(msg == old, 0.0, numpy.abs(msg - old))
                    delta = max(delta, float(numpy.max(diff, initial=0.0)))
                    row.append(msg)
                new_fv.append(row)
            self._msg_fv = new_fv
            for v in self.variables:
                for k, (fi, pos) in enumerate(self._var_factors[v]):
                    self._msg_vf[fi][pos] = self._var_message(v, k)
            if delta < self.tolerance:
                break
        else:
            logger.debug("BP did not converge after %d iterations", self.max_iter)

        self._var_beliefs = dict()
        for v in self.variables:
            self._var_beliefs[v] = self._var_message(v, -1)
        self._factor_beliefs = []
        for fi, table in enumerate(self._tables):
            total = table
            for q, msg in enumerate(self._msg_vf[fi]):
                shape = [1] * table.ndim
                shape[q] = len(msg)
                total = total + msg.reshape(shape)
            if self.max_product:
                total = total - numpy.max(total, initial=-numpy.inf)
            else:
                total = log_normalize(total)
            self._factor_beliefs.append(total)

    def lookup_marginal(self, obj):
        wanted = _variables_of(obj)
        if len(wanted) == 1:
            return LogTableFactor(wanted, self._var_beliefs[wanted[0]])
        fi = self._factor_index.get(frozenset(wanted))
        if fi is None:
            raise KeyError("No factor over %r in the last graph" % (wanted,))
        factor = self._factors[fi]
        return LogTableFactor(factor.variables, self._factor_beliefs[fi]).aligned(wanted)

    def lookup_log_joint(self, assn):
        '''Bethe approximation of log p(assn); exact on trees.'''
        total = 0.0
        for fi, f in enumerate(self._factors):
            val = self._factor_beliefs[fi][tuple(assn.get(v) for v in f.variables)]
            if val == -numpy.inf:
                return -numpy.inf
            total += val
        for v in self.variables:
            degree = len(self._var_factors[v])
            if degree != 1:
                total -= (degree - 1) * self._var_beliefs[v][assn.get(v)]
        return float(total)

    def best_assignment(self, graph):
        if self.max_product:
            bp = self
        else:
            bp = self.duplicate()
            bp.max_product = True
        bp.compute_marginals(graph)
        variables = bp.variables
        return Assignment(variables, [int(numpy.argmax(bp._var_beliefs[v])) for v in variables])
