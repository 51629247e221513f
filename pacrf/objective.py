# -*- coding: utf-8 -*-
"""
Training objectives for the ACRF.

One objective core (ACRFObjective) does the bookkeeping shared by every
criterion: empirical constraints, model expectations, the Gaussian prior and
gradient assembly over a flat parameter vector. The criteria differ only in
how an instance's expectations and value are computed, which is delegated to
an evidence strategy:

    LikelihoodEvidence        exact (or BP) joint likelihood
    PiecewiseEvidence         every factor normalized on its own
    PseudolikelihoodEvidence  local conditionals per variable or per edge
    PwplEvidence              piecewise pseudolikelihood, optionally with
                              harvested wrong-wrong terms

Flat layout: the default weights of all templates come first, template by
template, then for every template and every assignment index the values of
that assignment's SparseVector.

License (BSD)
==============
Copyright (c) 2013, Huang,Zheng.  huang-zheng@sjtu.edu.cn
All rights reserved.

THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS" AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.

"""

import collections
import logging
import multiprocessing
import time
import traceback
from multiprocessing import Process, Queue

import numpy

from .factors import LogTableFactor
from .graph import GraphCache, UnrolledGraph
from .utility import UnsupportedStructureException, log_normalize

logger = logging.getLogger(__name__)


def _counted(clique):
    tmpl = clique.template
    return tmpl.index >= 0 and tmpl.trainable


class ParameterLayout(object):
    '''Maps (template, assignment, feature) to positions in the flat parameter vector.'''

    def __init__(self, templates):
        self.templates = list(templates)
        self.default_offsets = []
        self.weight_offsets = []
        offset = 0
        for tmpl in self.templates:
            self.default_offsets.append(offset)
            if tmpl.default_weights is not None:
                offset += len(tmpl.default_weights)
        for tmpl in self.templates:
            offsets = []
            for w in tmpl.weights or []:
                offsets.append(offset)
                offset += len(w)
            self.weight_offsets.append(offsets)
        self.size = offset

    def get_parameters(self, buf=None):
        if buf is None:
            buf = numpy.empty(self.size)
        for ti, tmpl in enumerate(self.templates):
            if tmpl.weights is None:
                continue
            start = self.default_offsets[ti]
            buf[start:start + len(tmpl.default_weights)] = tmpl.default_weights
            for a, w in enumerate(tmpl.weights):
                start = self.weight_offsets[ti][a]
                buf[start:start + len(w)] = w.values
        return buf

    def set_parameters(self, params):
        for ti, tmpl in enumerate(self.templates):
            if tmpl.weights is None:
                continue
            start = self.default_offsets[ti]
            tmpl.default_weights[:] = params[start:start + len(tmpl.default_weights)]
            for a, w in enumerate(tmpl.weights):
                start = self.weight_offsets[ti][a]
                w.values[:] = params[start:start + len(w)]

    def positions(self, tidx, assn, fv):
        '''Flat positions of the features of `fv` present in weights[assn], with their values.'''
        locs = self.templates[tidx].weights[assn].locations(fv.indices)
        mask = locs >= 0
        return self.weight_offsets[tidx][assn] + locs[mask], fv.values[mask]

    def default_position(self, tidx, assn):
        return self.default_offsets[tidx] + assn

    def trainable_mask(self):
        mask = numpy.ones(self.size, dtype=bool)
        for ti, tmpl in enumerate(self.templates):
            if tmpl.trainable or tmpl.weights is None:
                continue
            start = self.default_offsets[ti]
            mask[start:start + len(tmpl.default_weights)] = False
            for a, w in enumerate(tmpl.weights):
                start = self.weight_offsets[ti][a]
                mask[start:start + len(w)] = False
        return mask

    def describe(self, pos):
        for ti, tmpl in enumerate(self.templates):
            start = self.default_offsets[ti]
            if tmpl.default_weights is not None and start <= pos < start + len(tmpl.default_weights):
                return "%r default[%d]" % (tmpl, pos - start)
        for ti, tmpl in enumerate(self.templates):
            for a, w in enumerate(tmpl.weights or []):
                start = self.weight_offsets[ti][a]
                if start <= pos < start + len(w):
                    return "%r weights[%d] feature %d" % (tmpl, a, w.indices[pos - start])
        return "parameter %d" % pos


class SufficientStatistics(object):
    '''Flat feature counts in parameter layout.

    Additions are buffered until commit(), so the counts of an instance that
    turns out to be excluded can be thrown away with discard().'''

    def __init__(self, layout):
        self.layout = layout
        self.values = numpy.zeros(layout.size)
        self._pending = []

    def add(self, clique, assn, scale=1.0):
        if not _counted(clique) or scale == 0.0:
            return
        tidx = clique.template.index
        pos, vals = self.layout.positions(tidx, assn, clique.fv)
        self._pending.append((pos, scale * vals))
        self._pending.append(([self.layout.default_position(tidx, assn)], [scale]))

    def add_distribution(self, clique, probs):
        probs = numpy.ravel(probs)
        for a in numpy.flatnonzero(probs):
            self.add(clique, int(a), probs[a])

    def commit(self):
        for pos, vals in self._pending:
            numpy.add.at(self.values, pos, vals)
        self._pending = []

    def discard(self):
        self._pending = []

    def reset(self):
        self.values[:] = 0.0
        self._pending = []


class Evidence(object):
    '''How one training criterion turns an instance into expectations and a value.'''

    def unroll(self, acrf, instance, cache=None):
        return acrf.unroll(instance, cache)

    def collect_constraints(self, acrf, graph, stats):
        for clique in graph.cliques:
            stats.add(clique, graph.assignment_number(clique))

    def compute_expectations_and_value(self, acrf, graph, stats):
        raise NotImplementedError


class LikelihoodEvidence(Evidence):

    def __init__(self, inferencer=None):
        self.inferencer = inferencer

    def compute_expectations_and_value(self, acrf, graph, stats):
        inferencer = self.inferencer if self.inferencer is not None else acrf.inferencer
        inferencer.compute_marginals(graph)
        for clique in graph.cliques:
            if not _counted(clique):
                continue
            marginal = inferencer.lookup_marginal(clique)
            stats.add_distribution(clique, marginal.values())
        return inferencer.lookup_log_joint(graph.assignment)


class PiecewiseEvidence(Evidence):
    '''Each domain factor is trained as if it were the whole model. Needs no inference.'''

    def compute_expectations_and_value(self, acrf, graph, stats):
        gold = graph.assignment
        value = 0.0
        for factor in graph.factors:
            local = factor.normalize()
            value += local.log_value(gold)
            for clique in graph.cliques_over(factor.variables):
                if _counted(clique):
                    stats.add_distribution(clique, local.aligned(clique.variables).values())
        return value


def _clique_indices(clique, targets, assn):
    '''Assignment index of `clique` for every joint outcome of `targets` (a
    subset of its variables, in clique order); the rest are read from `assn`.'''
    dims = clique.var_dimensions()
    outcomes = [assn.get(v) for v in clique.variables]
    positions = [clique.variables.index(v) for v in targets]
    target_dims = [dims[p] for p in positions]
    indices = []
    for k in range(int(numpy.prod(target_dims, dtype=int))):
        for p, o in zip(positions, numpy.unravel_index(k, target_dims)):
            outcomes[p] = int(o)
        indices.append(int(numpy.ravel_multi_index(outcomes, dims)))
    return indices


class PseudolikelihoodEvidence(Evidence):
    '''Sum of local conditional log-probabilities, each conditioned on the
    gold labels of everything outside the target.'''

    BY_VARIABLE = "variable"
    BY_EDGE = "edge"

    def __init__(self, structure_type=BY_VARIABLE):
        if structure_type not in (self.BY_VARIABLE, self.BY_EDGE):
            raise UnsupportedStructureException("Unknown pseudolikelihood structure %r" % (structure_type,))
        self.structure_type = structure_type

    def _terms(self, graph):
        '''Yield (targets, cliques) for every local conditional of the graph.'''
        if self.structure_type == self.BY_VARIABLE:
            for var in graph.variables:
                yield (var,), graph.cliques_containing(var)
            return
        covered = set()
        seen = set()
        for clique in graph.cliques:
            if len(clique) > 2:
                raise UnsupportedStructureException("Edge pseudolikelihood cannot handle clique %r of size %d"
                                                    % (clique, len(clique)))
            if len(clique) < 2 or clique.varset in seen:
                continue
            seen.add(clique.varset)
            cliques = dict()
            for var in clique.variables:
                covered.add(var)
                for c in graph.cliques_containing(var):
                    cliques[c.index] = c
            yield clique.variables, [cliques[i] for i in sorted(cliques)]
        for var in graph.variables:
            if var not in covered:
                yield (var,), graph.cliques_containing(var)

    def collect_constraints(self, acrf, graph, stats):
        for targets, cliques in self._terms(graph):
            for clique in cliques:
                stats.add(clique, graph.assignment_number(clique))

    def _local_conditional(self, targets, cliques, gold):
        table = numpy.zeros([v.num_outcomes for v in targets])
        for clique in cliques:
            others = [v for v in clique.variables if v not in targets]
            sliced = clique.factor.slice(gold.restrict(others))
            table = table + sliced.expand(targets)
        return LogTableFactor(targets, log_normalize(table))

    def compute_expectations_and_value(self, acrf, graph, stats):
        gold = graph.assignment
        value = 0.0
        for targets, cliques in self._terms(graph):
            local = self._local_conditional(targets, cliques, gold)
            value += local.log_value(gold)
            for clique in cliques:
                if not _counted(clique):
                    continue
                mine = [v for v in clique.variables if v in targets]
                probs = local.marginalize(mine).values().ravel()
                for idx, p in zip(_clique_indices(clique, mine, gold), probs):
                    stats.add(clique, idx, p)
        return value


WrongWrong = collections.namedtuple("WrongWrong", ["var_index", "clique_index", "assignment_index"])


class PwplEvidence(Evidence):
    '''Piecewise pseudolikelihood: every clique contributes, for each of its
    variables, the conditional of that variable given the gold labels of its
    clique-mates under the clique's own potential.

    With CONDITION_WW, harvested wrong-wrong records add one more conditional
    each: the recorded variable's clique-mates, jointly, given the recorded
    variable at its wrong value.'''

    NO_WRONG_WRONG = "none"
    CONDITION_WW = "condition"

    def __init__(self, wrong_wrong_type=NO_WRONG_WRONG):
        if wrong_wrong_type not in (self.NO_WRONG_WRONG, self.CONDITION_WW):
            raise UnsupportedStructureException("Unknown wrong-wrong type %r" % (wrong_wrong_type,))
        self.wrong_wrong_type = wrong_wrong_type
        self.wrong_wrongs = dict()

    def unroll(self, acrf, instance, cache=None):
        return acrf.unroll_structure_only(instance, cache)

    def _records(self, graph):
        if self.wrong_wrong_type == self.NO_WRONG_WRONG:
            return []
        return self.wrong_wrongs.get(graph.instance, [])

    def collect_constraints(self, acrf, graph, stats):
        for clique in graph.cliques:
            stats.add(clique, graph.assignment_number(clique), float(len(clique)))
        for ww in self._records(graph):
            stats.add(graph.get_clique(ww.clique_index), ww.assignment_index, 1.0)

    def _conditional(self, clique, factor, var, assn, stats):
        others = [v for v in clique.variables if v is not var]
        logp = log_normalize(factor.slice(assn.restrict(others)).log_values)
        for idx, p in zip(_clique_indices(clique, [var], assn), numpy.exp(logp)):
            stats.add(clique, idx, p)
        return float(logp[assn.get(var)])

    def _mates_conditional(self, clique, factor, var, assn, stats):
        mates = [v for v in clique.variables if v is not var]
        logp = log_normalize(factor.slice(assn.restrict([var])).log_values).ravel()
        for idx, p in zip(_clique_indices(clique, mates, assn), numpy.exp(logp)):
            stats.add(clique, idx, p)
        observed = numpy.ravel_multi_index([assn.get(v) for v in mates], [v.num_outcomes for v in mates])
        return float(logp[observed])

    def compute_expectations_and_value(self, acrf, graph, stats):
        gold = graph.assignment
        value = 0.0
        factors = dict()
        for clique in graph.cliques:
            if not _counted(clique):
                continue
            factor = clique.template.compute_factor(clique)
            factors[clique.index] = factor
            for var in clique.variables:
                value += self._conditional(clique, factor, var, gold, stats)
        for ww in self._records(graph):
            clique = graph.get_clique(ww.clique_index)
            var = graph.get_variable(ww.var_index)
            assn = clique.assignment_from_index(ww.assignment_index)
            value += self._mates_conditional(clique, factors[clique.index], var, assn, stats)
        return value

    def harvest_wrong_wrongs(self, acrf, training, threshold, inferencer=None, cache=None):
        '''Record every clique assignment with marginal above `threshold` that
        disagrees with gold on exactly one variable. Single-variable cliques
        have nothing to condition and are passed over. Returns the record count.'''
        if inferencer is None:
            inferencer = acrf.inferencer
        self.wrong_wrongs = dict()
        total = 0
        for inst in training:
            graph = acrf.unroll(inst, cache)
            if graph.num_variables() == 0:
                continue
            inferencer.compute_marginals(graph)
            gold = graph.assignment
            records = []
            for clique in graph.cliques:
                if not _counted(clique) or len(clique) < 2:
                    continue
                probs = inferencer.lookup_marginal(clique).values().ravel()
                for a in numpy.flatnonzero(probs > threshold):
                    assn = clique.assignment_from_index(int(a))
                    wrong = [v for v in clique.variables if assn.get(v) != gold.get(v)]
                    if len(wrong) == 1:
                        records.append(WrongWrong(graph.var_index(wrong[0]), clique.index, int(a)))
            if records:
                self.wrong_wrongs[inst] = records
                total += len(records)
        logger.info("Number of wrong-wrongs: %d", total)
        return total


# Per-chunk evaluation, shared by the sequential and the multiprocess paths.

ChunkResult = collections.namedtuple("ChunkResult",
                                     ["start", "value", "expectations", "new_infinite", "status", "error"])

OK, NAN, INFINITE, ERROR = "ok", "nan", "infinite", "error"


def _evaluate_chunk(acrf, evidence, instances, start, skip, initializing, cache=None):
    stats = SufficientStatistics(ParameterLayout(acrf.templates))
    value = 0.0
    new_infinite = []
    for i, inst in enumerate(instances, start):
        if i in skip:
            continue
        graph = evidence.unroll(acrf, inst, cache)
        if graph.num_variables() == 0:
            continue
        v = evidence.compute_expectations_and_value(acrf, graph, stats)
        if numpy.isnan(v):
            stats.discard()
            logger.warning("Value is NaN on instance %d : %s; returning -infinity", i, inst.name)
            graph.dump()
            return ChunkResult(start, -numpy.inf, None, new_infinite, NAN, None)
        if numpy.isinf(v):
            stats.discard()
            if initializing:
                logger.warning("Instance %s has infinite value; skipping.", inst.name)
                new_infinite.append(i)
                continue
            logger.warning("Infinite value on instance %s; returning -infinity", inst.name)
            graph.dump()
            return ChunkResult(start, -numpy.inf, None, new_infinite, INFINITE, None)
        stats.commit()
        value += v
    return ChunkResult(start, value, stats.values, new_infinite, OK, None)


def _chunk_worker(acrf, evidence, instances, start, skip, initializing, use_cache, que):
    try:
        cache = GraphCache(enabled=True) if use_cache else None
        que.put(_evaluate_chunk(acrf, evidence, instances, start, skip, initializing, cache))
    except Exception:
        que.put(ChunkResult(start, None, None, [], ERROR, traceback.format_exc()))


class ACRFObjective(object):
    '''Penalized training objective of an ACRF over a fixed training list.

    get_value/get_value_gradient follow the optimizer contract; values are
    cached until the parameters change.'''

    def __init__(self, acrf, training, evidence=None, cache=None, mp=False):
        self.acrf = acrf
        self.training = list(training)
        self.evidence = evidence if evidence is not None else LikelihoodEvidence()
        self.cache = cache
        self.mp = mp
        self.layout = ParameterLayout(acrf.templates)
        self.constraints = SufficientStatistics(self.layout)
        self.expectations = SufficientStatistics(self.layout)
        self.infinite_values = None
        self.cached_value = None
        self.cached_gradient = None
        self.cached_value_stale = True
        self.cached_gradient_stale = True
        self._total_nodes = 0
        logger.info("Number of training instances = %d", len(self.training))
        logger.info("Number of parameters = %d", self.layout.size)
        logger.info("Gaussian prior variance = %s", acrf.gaussian_prior_variance)
        self.collect_constraints()

    def collect_constraints(self):
        '''(Re)build the empirical counts; needed again whenever the evidence
        changes what it counts, as after a wrong-wrong harvest.'''
        self.constraints.reset()
        skip = self.infinite_values or ()
        total = 0
        for i, inst in enumerate(self.training):
            graph = UnrolledGraph(inst, self.acrf.templates, self.acrf.fixed_templates, False)
            total += graph.num_variables()
            if i in skip:
                continue
            self.evidence.collect_constraints(self.acrf, graph, self.constraints)
            self.constraints.commit()
        self._total_nodes = total
        self.force_stale()

    def force_stale(self):
        self.cached_value_stale = True
        self.cached_gradient_stale = True

    @property
    def total_nodes(self):
        return self._total_nodes

    def num_parameters(self):
        return self.layout.size

    def get_parameters(self, buf=None):
        if buf is not None and len(buf) != self.layout.size:
            raise ValueError("Expected parameter buffer of length %d, got %d" % (self.layout.size, len(buf)))
        return self.layout.get_parameters(buf)

    def set_parameters(self, params):
        params = numpy.asarray(params, dtype=float)
        if len(params) != self.layout.size:
            raise ValueError("Expected %d parameters, got %d" % (self.layout.size, len(params)))
        if numpy.array_equal(params, self.layout.get_parameters(), equal_nan=True):
            return
        self.layout.set_parameters(params)
        self.force_stale()

    def get_value(self):
        if self.cached_value_stale:
            self.cached_value = self.compute_value()
            self.cached_value_stale = False
        return self.cached_value

    def get_value_gradient(self, buf=None):
        if self.cached_gradient_stale:
            if self.cached_value_stale:
                self.get_value()
            self.cached_gradient = self.compute_gradient()
            self.cached_gradient_stale = False
        if buf is None:
            return self.cached_gradient.copy()
        if len(buf) != len(self.cached_gradient):
            raise ValueError("Incorrect length buffer to get_value_gradient(). Expected %d, received %d"
                             % (len(self.cached_gradient), len(buf)))
        buf[:] = self.cached_gradient
        return buf

    def _evaluate_mp(self, initializing):
        seqnum = len(self.training)
        corenum = multiprocessing.cpu_count()
        chunk = seqnum // corenum + 1
        use_cache = self.cache is not None and self.cache.enabled
        que = Queue()
        subprocesses = []
        starti = 0
        while starti < seqnum:
            endi = min(starti + chunk, seqnum)
            p = Process(target=_chunk_worker,
                        args=(self.acrf, self.evidence, self.training[starti:endi], starti,
                              self.infinite_values, initializing, use_cache, que))
            p.start()
            subprocesses.append(p)
            starti += chunk
        results = [que.get() for _ in subprocesses]
        while subprocesses:
            subprocesses.pop().join()
        return results

    def compute_value(self):
        stime = time.time()
        initializing = self.infinite_values is None
        if initializing:
            self.infinite_values = set()
        self.expectations.reset()

        if self.mp:
            results = self._evaluate_mp(initializing)
        else:
            results = [_evaluate_chunk(self.acrf, self.evidence, self.training, 0,
                                       self.infinite_values, initializing, self.cache)]

        results = sorted(results, key=lambda r: r.start)
        for res in results:
            if res.status == ERROR:
                raise RuntimeError("Objective worker for chunk at %d failed:\n%s" % (res.start, res.error))
            if initializing:
                self.infinite_values.update(res.new_infinite)
        if initializing and self.infinite_values:
            # skipped instances drop out of the counts as well
            self.collect_constraints()

        value = 0.0
        for res in results:
            if res.status != OK:
                return -numpy.inf
            value += res.value
            self.expectations.values += res.expectations

        if self.acrf.do_size_scale:
            value /= len(self.training)
        value += self._prior_value()
        logger.info("ACRF inference time (s) = %.3f", time.time() - stime)
        logger.info("getValue (loglikelihood) = %s", value)
        return value

    def _prior_value(self):
        params = self.layout.get_parameters()
        valid = numpy.isfinite(params) & self.layout.trainable_mask()
        for pos in numpy.flatnonzero(~numpy.isfinite(params)):
            logger.warning("Weight is %s for %s", params[pos], self.layout.describe(pos))
        return -numpy.sum(params[valid] ** 2) / (2 * self.acrf.gaussian_prior_variance)

    def compute_gradient(self):
        '''scale * (constraint - expectation) - weight / variance, zero for
        non-finite and untrainable weights.'''
        params = self.layout.get_parameters()
        scale = 1.0 / len(self.training) if self.acrf.do_size_scale else 1.0
        with numpy.errstate(invalid="ignore"):
            grad = scale * (self.constraints.values - self.expectations.values) \
                - params / self.acrf.gaussian_prior_variance
        grad[~numpy.isfinite(params)] = 0.0
        grad[~self.layout.trainable_mask()] = 0.0
        return grad


def check_gradient(objective, delta=1e-4, indices=None):
    '''Compare the analytic gradient against forward differences.
    Don't call this on a model with many parameters; it needs one objective
    evaluation per checked index. Returns a list of (analytic, numeric).'''
    params = objective.get_parameters()
    base = objective.get_value()
    analytic = objective.get_value_gradient()
    if indices is None:
        indices = range(len(params))
    result = []
    for i in indices:
        theta = params.copy()
        theta[i] += delta
        objective.set_parameters(theta)
        numeric = (objective.get_value() - base) / delta
        result.append((analytic[i], numeric))
    objective.set_parameters(params)
    return result
