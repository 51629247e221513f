# -*- coding: utf-8 -*-
"""
Unrolled factor graphs: the concrete cliques a set of templates produces for
one instance, and a cache that keeps them across objective evaluations.

License (BSD)
==============
Copyright (c) 2013, Huang,Zheng.  huang-zheng@sjtu.edu.cn
All rights reserved.

THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS" AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.

"""

import logging

import numpy

from .factors import CompositeFactor, LogTableFactor
from .instances import Assignment
from .utility import StructureMismatchException

logger = logging.getLogger(__name__)


class UnrolledVarSet(object):
    '''A clique of the unrolled graph: one instantiation of a template over
    specific variables, with the feature vector attached to it.

    `index` is the clique's dense id inside its graph, assigned by
    UnrolledGraph.add_clique.'''

    def __init__(self, template, variables, fv):
        self.template = template
        self.variables = tuple(variables)
        self.fv = fv
        self.factor = None
        self.last_change = 0.0
        self.index = -1

    @property
    def varset(self):
        return frozenset(self.variables)

    def var_dimensions(self):
        return [v.num_outcomes for v in self.variables]

    def weight(self):
        '''Number of joint assignments of the clique.'''
        return int(numpy.prod(self.var_dimensions(), dtype=int))

    def assignment_from_index(self, idx):
        return Assignment.from_index(self.variables, idx)

    def assignment_index_of(self, assn):
        dims = self.var_dimensions()
        outcomes = [assn.get(v) for v in self.variables]
        for v, o, d in zip(self.variables, outcomes, dims):
            if o < 0 or o >= d:
                raise StructureMismatchException("Outcome %d of %r is outside [0, %d) in clique %r"
                                                 % (o, v, d, self))
        return int(numpy.ravel_multi_index(outcomes, dims))

    def set_factor(self, factor):
        if self.factor is not None:
            self.last_change = factor.dist_linf(self.factor)
        self.factor = factor

    def __len__(self):
        return len(self.variables)

    def __iter__(self):
        return iter(self.variables)

    def __contains__(self, var):
        return var in self.variables

    def __repr__(self):
        return "UnrolledVarSet(%d, %s, %r)" % (self.index, self.template, list(self.variables))


class UnrolledGraph(object):
    '''The factor graph of one instance.

    Every distinct set of variables owns at most one factor: when a second
    clique lands on a domain that already has one, both are folded into a
    CompositeFactor.'''

    def __init__(self, instance, templates, fixed=None, setup_potentials=True):
        self.instance = instance
        self.fvs = instance.data
        self.assignment = instance.target
        self.all_templates = list(fixed or []) + list(templates)
        self.cliques = []
        self.variables = []
        self._var_index = dict()
        self._var_cliques = dict()
        self._domain_cliques = dict()
        self._domain_factors = dict()
        self._factor_cliques = dict()
        self.factors_added = False
        self.last_resids = None
        for tmpl in self.all_templates:
            tmpl.add_instantiated_cliques(self, instance)
        if setup_potentials:
            self.compute_cpfs()

    def add_clique(self, clique):
        clique.index = len(self.cliques)
        self.cliques.append(clique)
        for var in clique.variables:
            if var not in self._var_index:
                self._var_index[var] = len(self.variables)
                self.variables.append(var)
                self._var_cliques[var] = []
            self._var_cliques[var].append(clique)
        self._domain_cliques.setdefault(clique.varset, []).append(clique)

    def compute_cpfs(self):
        self.factors_added = True
        resids = numpy.zeros(len(self.cliques))
        for clique in self.cliques:
            ptl = clique.template.compute_factor(clique)
            self._add_factor_internal(clique, ptl)
            clique.template.modify_potential(self, clique, ptl)
            self._factor_cliques[id(ptl)] = clique.index
            resids[clique.index] = LogTableFactor(clique.variables).normalize().dist_linf(ptl.normalize())
        self.last_resids = resids

    def _add_factor_internal(self, clique, factor):
        clique.set_factor(factor)
        key = factor.varset
        prev = self._domain_factors.get(key)
        if prev is None:
            self._domain_factors[key] = factor
        elif isinstance(prev, CompositeFactor):
            prev.multiply_by(factor)
        else:
            del self._domain_factors[key]
            self._domain_factors[key] = CompositeFactor([factor, prev])

    def recompute_factors(self):
        '''Re-evaluate every clique potential from the current weights, keeping
        the structure. Residuals between old and new normalized potentials are
        left in last_resids, one per clique.'''
        if not self.factors_added:
            self.compute_cpfs()
            return
        resids = numpy.zeros(len(self.cliques))
        for clique in self.cliques:
            old = clique.factor
            new = clique.template.compute_factor(clique)
            resids[clique.index] = old.normalize().dist_linf(new.normalize())
            clique.last_change = resids[clique.index]
            old.set_log_values(new.aligned(old.variables).log_values)
            clique.template.modify_potential(self, clique, old)
        self.last_resids = resids

    # Accessors

    @property
    def factors(self):
        return list(self._domain_factors.values())

    def num_variables(self):
        return len(self.variables)

    def var_index(self, var):
        return self._var_index[var]

    def get_variable(self, idx):
        return self.variables[idx]

    def get_clique(self, idx):
        return self.cliques[idx]

    def get_unrolled_var_set(self, factor):
        '''Clique whose template computed `factor`, or None.'''
        idx = self._factor_cliques.get(id(factor))
        if idx is None:
            return None
        return self.cliques[idx]

    def factor_of(self, variables):
        return self._domain_factors.get(frozenset(variables))

    def cliques_of(self, template):
        return [c for c in self.cliques if c.template is template]

    def cliques_over(self, variables):
        '''Cliques whose domain is exactly `variables`.'''
        return list(self._domain_cliques.get(frozenset(variables), []))

    def cliques_containing(self, var):
        return list(self._var_cliques.get(var, []))

    def assignment_number(self, clique):
        '''Joint index of the gold labels restricted to `clique`.'''
        return clique.assignment_index_of(self.assignment)

    def log_num_assignments(self):
        return float(numpy.sum(numpy.log([v.num_outcomes for v in self.variables])))

    def max_time(self):
        return len(self.fvs)

    def num_slices(self):
        return self.assignment.num_slices()

    def var_of_index(self, t, j):
        return self.assignment.var_of_index(t, j)

    def dump(self, level=logging.DEBUG):
        '''Log every clique with its gold outcomes and potential.'''
        if not logger.isEnabledFor(level):
            return
        assn = self.assignment
        for clique in self.cliques:
            logger.log(level, "Clique %r", clique)
            for var in clique.variables:
                logger.log(level, "  %r ==> %d", var, assn.get(var))
            ptl = self.factor_of(clique.variables)
            if ptl is not None:
                logger.log(level, "  Value = %s", ptl.log_value(assn))
                logger.log(level, "  %r", ptl)


class GraphCache(object):
    '''Unrolled graphs kept across objective evaluations, keyed by instance.

    Reusing a graph is valid because templates always generate the same
    cliques for a given instance; only the potentials are recomputed. The
    cache is not shared between worker processes.'''

    def __init__(self, enabled=False):
        self.enabled = enabled
        self._graphs = dict()

    def enable(self):
        self.enabled = True

    def disable(self):
        self.enabled = False

    def clear(self):
        self._graphs.clear()

    def get(self, instance):
        if not self.enabled:
            return None
        return self._graphs.get(id(instance))

    def put(self, instance, graph):
        if self.enabled:
            self._graphs[id(instance)] = graph

    def __len__(self):
        return len(self._graphs)

    def __contains__(self, instance):
        return id(instance) in self._graphs
