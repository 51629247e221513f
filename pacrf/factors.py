# -*- coding: utf-8 -*-
"""
Log-space table factors over discrete variables.

License (BSD)
==============
Copyright (c) 2013, Huang,Zheng.  huang-zheng@sjtu.edu.cn
All rights reserved.

THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS" AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.

"""

import numpy
from scipy.special import logsumexp

from .utility import log_normalize


class Factor(object):
    '''Operations shared by table factors. Subclasses provide `variables`
    (an ordered tuple) and `log_values` (an array with one axis per variable,
    in that order).'''

    @property
    def varset(self):
        return frozenset(self.variables)

    def shape(self):
        return tuple(v.num_outcomes for v in self.variables)

    def logsum(self):
        '''log partition of the table'''
        return float(logsumexp(self.log_values))

    def values(self):
        return numpy.exp(self.log_values)

    def normalize(self):
        return LogTableFactor(self.variables, log_normalize(self.log_values))

    def log_value(self, assn):
        return float(self.log_values[tuple(assn.get(v) for v in self.variables)])

    def aligned(self, variables):
        '''The same table with its axes in the order of `variables`.'''
        variables = tuple(variables)
        if frozenset(variables) != self.varset or len(variables) != len(self.variables):
            raise ValueError("Cannot align factor over %r to %r" % (self.variables, variables))
        if variables == self.variables:
            return LogTableFactor(variables, self.log_values)
        perm = [self.variables.index(v) for v in variables]
        return LogTableFactor(variables, numpy.transpose(self.log_values, perm))

    def expand(self, variables):
        '''Log table broadcastable against a table over the superset `variables`.'''
        mine = self.varset
        sub = [v for v in variables if v in mine]
        table = self.aligned(sub).log_values
        shape = [v.num_outcomes if v in mine else 1 for v in variables]
        return table.reshape(shape)

    def marginalize(self, variables):
        '''Sum out every variable not in `variables`; axes follow `variables`.'''
        keep = frozenset(variables)
        axes = tuple(i for i, v in enumerate(self.variables) if v not in keep)
        table = self.log_values
        if axes:
            table = logsumexp(table, axis=axes)
        kept = [v for v in self.variables if v in keep]
        return LogTableFactor(kept, table).aligned(variables)

    def slice(self, assn):
        '''Condition on the outcomes `assn` gives to any of this factor's variables.'''
        index = []
        remaining = []
        for v in self.variables:
            if v in assn:
                index.append(assn.get(v))
            else:
                index.append(slice(None))
                remaining.append(v)
        return LogTableFactor(remaining, self.log_values[tuple(index)])

    def dist_linf(self, other):
        '''L-infinity distance between the two tables in probability space.'''
        theirs = other.aligned(self.variables).values()
        return float(numpy.max(numpy.abs(self.values() - theirs), initial=0.0))

    def duplicate(self):
        return LogTableFactor(self.variables, numpy.array(self.log_values))

    def __repr__(self):
        return "%s(%r)\n%s" % (type(self).__name__, self.variables, self.log_values)


class LogTableFactor(Factor):

    def __init__(self, variables, log_values=None):
        self.variables = tuple(variables)
        shape = self.shape()
        if log_values is None:
            self._log_values = numpy.zeros(shape)
        else:
            self._log_values = numpy.asarray(log_values, dtype=float).reshape(shape)

    @property
    def log_values(self):
        return self._log_values

    def set_log_values(self, table):
        self._log_values[...] = numpy.asarray(table, dtype=float).reshape(self.shape())


class CompositeFactor(Factor):
    '''Product of several factors over exactly the same variables.

    The table is rebuilt from the children on every access, so in-place
    updates of a child are always reflected.'''

    def __init__(self, factors):
        factors = list(factors)
        self.variables = factors[0].variables
        self.factors = []
        for f in factors:
            self.multiply_by(f)

    def multiply_by(self, factor):
        if factor.varset != self.varset:
            raise ValueError("Composite over %r cannot take a factor over %r"
                             % (self.variables, factor.variables))
        self.factors.append(factor)

    @property
    def log_values(self):
        total = numpy.zeros(self.shape())
        for f in self.factors:
            total = total + f.aligned(self.variables).log_values
        return total
