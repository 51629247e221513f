# -*- coding: utf-8 -*-
"""
Clique templates: rules that instantiate structurally identical cliques over
an instance and own the weights those cliques share.

License (BSD)
==============
Copyright (c) 2013, Huang,Zheng.  huang-zheng@sjtu.edu.cn
All rights reserved.

THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS" AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.

"""

import logging

import numpy

from .factors import LogTableFactor
from .graph import UnrolledGraph, UnrolledVarSet
from .instances import SparseVector
from .utility import StructureMismatchException, WeightsLengthException

logger = logging.getLogger(__name__)

SOME_UNSUPPORTED_THRESHOLD = 0.1


class Template(object):
    '''Generates cliques for an instance and computes their potentials.

    weights[a] is the SparseVector used by every clique of this template whose
    joint assignment index is a; default_weights[a] is the feature-independent
    bias of that assignment. Once allocated, len(weights) never changes.'''

    def __init__(self):
        self.weights = None
        self.default_weights = None
        self.index = -1
        self.supported_only = True
        self._trainable = True
        self.unsupported_weights_added = False
        self.assignments_present = None

    @property
    def trainable(self):
        return self._trainable

    @trainable.setter
    def trainable(self, flag):
        self._trainable = bool(flag)

    def add_instantiated_cliques(self, graph, instance):
        raise NotImplementedError

    def modify_potential(self, graph, clique, factor):
        pass

    def set_weights(self, weights):
        if self.weights is not None and len(self.weights) and len(weights) != len(self.weights):
            raise WeightsLengthException("%r: cannot change number of weight vectors from %d to %d"
                                         % (self, len(self.weights), len(weights)))
        self.weights = list(weights)

    def set_default_weights(self, default_weights):
        default_weights = numpy.array(default_weights, dtype=float)
        if self.default_weights is not None and len(self.default_weights) \
                and len(default_weights) != len(self.default_weights):
            raise WeightsLengthException("%r: cannot change number of default weights from %d to %d"
                                         % (self, len(self.default_weights), len(default_weights)))
        self.default_weights = default_weights

    def num_parameters(self):
        if self.weights is None:
            return 0
        return len(self.default_weights) + sum(len(w) for w in self.weights)

    # Weight allocation

    def init_weights(self, training, num_features):
        '''Size the weights against the cliques this template produces on
        `training` and return the number of parameters it now owns.'''
        size = self._clique_size(training)
        if size == 0:
            logger.warning("%r was never instantiated in the training data", self)
            if self.weights is None:
                self.weights = []
                self.default_weights = numpy.zeros(0)
            return self.num_parameters()
        self._check_size(size)
        self._allocate_default_weights(size)
        if self.supported_only:
            return self._init_sparse_weights(training, size)
        return self._init_dense_weights(size, num_features)

    def _clique_size(self, training):
        size = 0
        for inst in training:
            graph = UnrolledGraph(inst, [self], None, False)
            for clique in graph.cliques:
                size = max(size, clique.weight())
        return size

    def _check_size(self, size):
        if self.weights is None or len(self.weights) == 0:
            return
        if len(self.weights) != size:
            raise WeightsLengthException("%r: weights were allocated for %d assignments, data needs %d"
                                         % (self, len(self.weights), size))

    def _allocate_default_weights(self, size):
        old = self.default_weights
        self.default_weights = numpy.zeros(size)
        if old is not None and len(old):
            self.default_weights[:len(old)] = old[:size]

    def _init_dense_weights(self, size, num_features):
        present = [numpy.arange(num_features) for _ in range(size)]
        self._allocate_new_weights(present)
        return self.num_parameters()

    def _init_sparse_weights(self, training, size):
        present = [set() for _ in range(size)]
        for inst in training:
            graph = UnrolledGraph(inst, [self], None, False)
            for clique in graph.cliques:
                assn = graph.assignment_number(clique)
                present[assn].update(clique.fv.indices.tolist())
        self._add_in_current_weights(present)
        self.assignments_present = [len(p) > 0 for p in present]
        self._allocate_new_weights([sorted(p) for p in present])
        return self.num_parameters()

    def _add_in_current_weights(self, present):
        if self.weights is None:
            return
        for a, w in enumerate(self.weights):
            present[a].update(w.indices.tolist())

    def _allocate_new_weights(self, present):
        old = self.weights
        weights = []
        for a, idxs in enumerate(present):
            w = SparseVector(idxs)
            if old is not None and a < len(old):
                w.plus_equals_sparse(old[a])
            weights.append(w)
        self.weights = weights

    def add_some_unsupported_weights(self, training):
        '''Extend each assignment's support with the features of cliques where
        the current model gives that assignment probability above 0.1. Existing
        weight values are kept. Returns the number of weights added.'''
        if self.weights is None:
            return 0
        present = [set(w.indices.tolist()) for w in self.weights]
        before = sum(len(p) for p in present)
        for inst in training:
            graph = UnrolledGraph(inst, [self], None, True)
            for clique in graph.cliques:
                probs = clique.factor.normalize().values().ravel()
                idxs = clique.fv.indices.tolist()
                for a in numpy.flatnonzero(probs > SOME_UNSUPPORTED_THRESHOLD):
                    present[a].update(idxs)
        added = sum(len(p) for p in present) - before
        self._allocate_new_weights([sorted(p) for p in present])
        self.unsupported_weights_added = True
        logger.info("%r: %d unsupported weights added", self, added)
        return added

    # Potentials

    def compute_factor(self, clique):
        num = clique.weight()
        if self.weights is None or num > len(self.weights):
            raise StructureMismatchException("%r: clique %r has %d assignments but only %s weight vectors"
                                             % (self, clique, num,
                                                None if self.weights is None else len(self.weights)))
        fv = clique.fv
        phi = numpy.empty(num)
        for a in range(num):
            phi[a] = self.weights[a].dot(fv) + self.default_weights[a]
        return LogTableFactor(clique.variables, phi)

    def log_value_of(self, assn_idx, fv):
        return self.weights[assn_idx].dot(fv) + self.default_weights[assn_idx]

    def __repr__(self):
        return "[%s (%d)]" % (type(self).__name__, self.index)


class SequenceTemplate(Template):
    '''Template over a label sequence: cliques are placed by time step and slice.'''

    def add_instantiated_cliques(self, graph, instance):
        self.add_sequence_cliques(graph, instance.data, instance.target)

    def add_sequence_cliques(self, graph, fvs, lblseq):
        raise NotImplementedError


class UnigramTemplate(SequenceTemplate):

    def __init__(self, factor):
        SequenceTemplate.__init__(self)
        self.factor = factor

    def add_sequence_cliques(self, graph, fvs, lblseq):
        for t in range(lblseq.max_time()):
            var = lblseq.var_of_index(t, self.factor)
            graph.add_clique(UnrolledVarSet(self, [var], fvs[t]))


class BigramTemplate(SequenceTemplate):
    '''Pairs of adjacent time steps within one slice, with the features of the earlier step.'''

    def __init__(self, factor):
        SequenceTemplate.__init__(self)
        self.factor = factor

    def add_sequence_cliques(self, graph, fvs, lblseq):
        for t in range(lblseq.max_time() - 1):
            v0 = lblseq.var_of_index(t, self.factor)
            v1 = lblseq.var_of_index(t + 1, self.factor)
            graph.add_clique(UnrolledVarSet(self, [v0, v1], fvs[t]))


class PairwiseFactorTemplate(SequenceTemplate):
    '''Co-temporal pairs across two slices.'''

    def __init__(self, factor0, factor1):
        SequenceTemplate.__init__(self)
        self.factor0 = factor0
        self.factor1 = factor1

    def add_sequence_cliques(self, graph, fvs, lblseq):
        for t in range(lblseq.max_time()):
            v0 = lblseq.var_of_index(t, self.factor0)
            v1 = lblseq.var_of_index(t, self.factor1)
            graph.add_clique(UnrolledVarSet(self, [v0, v1], fvs[t]))


class FixedFactorTemplate(Template):
    '''A template that contributes precomputed potentials and no parameters.

    Subclasses implement add_instantiated_cliques and compute_factor.'''

    def __init__(self):
        Template.__init__(self)
        self.weights = []
        self.default_weights = numpy.zeros(0)
        self._trainable = False

    @property
    def trainable(self):
        return False

    @trainable.setter
    def trainable(self, flag):
        if flag:
            raise ValueError("%r is fixed and cannot be made trainable" % self)

    def init_weights(self, training, num_features):
        return 0

    def add_some_unsupported_weights(self, training):
        return 0

    def compute_factor(self, clique):
        raise NotImplementedError
