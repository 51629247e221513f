# -*- coding: utf-8 -*-
"""
Training drivers: run the optimizer one iteration at a time over an ACRF
objective, with evaluation callbacks, early stopping and one retry after a
numerical failure.

License (BSD)
==============
Copyright (c) 2013, Huang,Zheng.  huang-zheng@sjtu.edu.cn
All rights reserved.

THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS" AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.

"""

import logging
import time

import numpy

from .evaluation import ACRFEvaluator
from .graph import GraphCache
from .objective import (ACRFObjective, LikelihoodEvidence, PiecewiseEvidence,
                        PseudolikelihoodEvidence, PwplEvidence)
from .optimizer import LimitedMemoryBFGS

logger = logging.getLogger(__name__)


class ACRFTrainer(object):
    '''Maximum likelihood training of an ACRF.

    Subclasses change the training criterion by overriding create_evidence.'''

    SIZE = (0.1, 0.5)
    SUBSET_ITER = 10

    def __init__(self, rethrow_exceptions=False, cache_graphs=False, mp=False, optimizer_factory=None):
        self.rethrow_exceptions = rethrow_exceptions
        self.graph_cache = GraphCache(enabled=cache_graphs)
        self.mp = mp
        self.optimizer_factory = optimizer_factory
        self.random = numpy.random.RandomState(1729)

    def create_evidence(self, acrf):
        return LikelihoodEvidence()

    def create_optimizable(self, acrf, training):
        acrf.init_weights(training)
        return ACRFObjective(acrf, training, self.create_evidence(acrf), self.graph_cache, self.mp)

    def create_optimizer(self, objective):
        if self.optimizer_factory is None:
            return LimitedMemoryBFGS(objective)
        return self.optimizer_factory(objective)

    def train(self, acrf, training, validation=None, testing=None, evaluator=None, num_iter=1, objective=None):
        '''Returns True if training converged (or was stopped) before num_iter.'''
        if objective is None:
            objective = self.create_optimizable(acrf, training)
        optimizer = self.create_optimizer(objective)
        converged = False
        reset_on_error = True
        stime = time.time()

        num_nodes = objective.total_nodes
        thresh = 1e-5 * num_nodes  # "early" stopping, scaled by model size

        if testing is None:
            logger.warning("ACRF trainer: No test set provided.")

        prev_value = -numpy.inf
        iteration = 0
        while iteration < num_iter:
            logger.info("ACRF trainer iteration %d at time %.3f", iteration, time.time() - stime)
            try:
                converged = optimizer.optimize(1)
                converged |= self.call_evaluator(acrf, training, validation, testing, iteration, evaluator)
                if converged:
                    break
                reset_on_error = True
            except Exception as e:
                if reset_on_error:
                    logger.warning("Exception in iteration %d: %s\n  Resetting optimizer and trying again...",
                                   iteration, e)
                    if hasattr(optimizer, "reset"):
                        optimizer.reset()
                    reset_on_error = False
                    continue
                logger.warning("Exception in iteration %d: %s\n   Quitting and saying converged...", iteration, e)
                converged = True
                if self.rethrow_exceptions:
                    raise
                break

            current_value = objective.get_value()
            if abs(current_value - prev_value) < thresh:
                logger.info("ACRFTrainer saying converged: Current value %s, previous %s\n"
                            "...threshold was %s = 1e-5 * %d", current_value, prev_value, thresh, num_nodes)
                converged = True
                break
            prev_value = current_value
            iteration += 1

        if iteration >= num_iter:
            logger.info("ACRFTrainer: Too many iterations, stopping training.  maxIter = %d", num_iter)
        logger.info("ACRF training time (s) = %.3f", time.time() - stime)

        if testing and evaluator is not None:
            # don't cache test set
            was_enabled = self.graph_cache.enabled
            self.graph_cache.disable()
            try:
                evaluator.test(acrf, testing, "Testing")
            finally:
                self.graph_cache.enabled = was_enabled

        return converged

    def call_evaluator(self, acrf, training, validation, testing, iteration, evaluator):
        '''True means stop.'''
        if evaluator is None:
            return False
        was_enabled = self.graph_cache.enabled
        self.graph_cache.disable()
        stime = time.time()
        try:
            if not evaluator.evaluate(acrf, iteration + 1, training, validation, testing):
                logger.warning("ACRF trainer: evaluator returned false. Quitting.")
                return True
            return False
        finally:
            self.graph_cache.enabled = was_enabled
            logger.info("Evaluation time (iteration %d) = %.3f", iteration, time.time() - stime)

    def _split(self, instances, proportion):
        order = self.random.permutation(len(instances))
        n = max(1, int(proportion * len(instances)))
        return [instances[i] for i in order[:n]], [instances[i] for i in order[n:]]

    def incremental_train(self, acrf, training, validation=None, testing=None, evaluator=None, num_iter=1):
        '''Warm up on random subsets of 10% and 50% of the data before training on all of it.'''
        stime = time.time()
        for i, size in enumerate(self.SIZE):
            subset = self._split(training, size)[0]
            logger.info("Training on subset of size %d", len(subset))
            objective = self.create_optimizable(acrf, subset)
            self.train(acrf, training, validation, testing, evaluator, self.SUBSET_ITER, objective)
            logger.info("Subset training %d finished...", i)
        logger.info("All subset training finished.  Time = %.3f s", time.time() - stime)
        return self.train(acrf, training, validation, testing, evaluator, num_iter)

    def some_unsupported_train(self, acrf, training, validation=None, testing=None, evaluator=None, num_iter=1):
        objective = self.create_optimizable(acrf, training)
        self.train(acrf, training, validation, testing, evaluator, 5, objective)
        for tmpl in acrf.templates:
            tmpl.add_some_unsupported_weights(training)
        logger.info("Some unsupported weights initialized.  Training...")
        objective = self.create_optimizable(acrf, training)
        return self.train(acrf, training, validation, testing, evaluator, num_iter, objective)

    def proportional_train(self, acrf, training, validation, testing, evaluator, proportions, iter_per_proportion):
        for i, proportion in enumerate(proportions):
            subset = self._split(training, proportion)[0]
            logger.info("ACRF trainer: Round %d, training proportion = %s", i, proportion)
            self.train(acrf, subset, validation, testing, evaluator, iter_per_proportion)
        logger.info("ACRF trainer: Training on full data")
        return self.train(acrf, training, validation, testing, evaluator, 99999)

    def test(self, acrf, testing, evaluators):
        if isinstance(evaluators, ACRFEvaluator):
            evaluators = [evaluators]
        predictions = [acrf.best_labels(inst) for inst in testing]
        for evaluator in evaluators:
            evaluator.test_predictions(testing, predictions, "Testing")


class PiecewiseACRFTrainer(ACRFTrainer):

    def create_evidence(self, acrf):
        return PiecewiseEvidence()


class PseudolikelihoodACRFTrainer(ACRFTrainer):

    def __init__(self, structure_type=PseudolikelihoodEvidence.BY_VARIABLE, **kwargs):
        ACRFTrainer.__init__(self, **kwargs)
        self.structure_type = structure_type

    def create_evidence(self, acrf):
        return PseudolikelihoodEvidence(self.structure_type)


class PwplACRFTrainer(ACRFTrainer):
    '''Piecewise pseudolikelihood training. With CONDITION_WW, trains
    wrong_wrong_iter iterations, harvests wrong-wrongs from the model's
    marginals and then resumes on the augmented objective.'''

    def __init__(self, wrong_wrong_type=PwplEvidence.NO_WRONG_WRONG, wrong_wrong_iter=10,
                 wrong_wrong_threshold=0.1, **kwargs):
        ACRFTrainer.__init__(self, **kwargs)
        self.wrong_wrong_type = wrong_wrong_type
        self.wrong_wrong_iter = wrong_wrong_iter
        self.wrong_wrong_threshold = wrong_wrong_threshold

    def create_evidence(self, acrf):
        return PwplEvidence(self.wrong_wrong_type)

    def train(self, acrf, training, validation=None, testing=None, evaluator=None, num_iter=1, objective=None):
        if self.wrong_wrong_type == PwplEvidence.NO_WRONG_WRONG:
            return ACRFTrainer.train(self, acrf, training, validation, testing, evaluator, num_iter, objective)
        if objective is None:
            objective = self.create_optimizable(acrf, training)
        logger.info("PwplACRFTrainer: Initial training")
        ACRFTrainer.train(self, acrf, training, validation, testing, evaluator, self.wrong_wrong_iter, objective)
        logger.info("PwplACRFTrainer: Adding wrong-wrongs")
        self.add_wrong_wrong(acrf, training, objective)
        converged = ACRFTrainer.train(self, acrf, training, validation, testing, evaluator, num_iter, objective)
        self.report_training_likelihood(acrf, training)
        return converged

    def add_wrong_wrong(self, acrf, training, objective):
        num = objective.evidence.harvest_wrong_wrongs(acrf, training, self.wrong_wrong_threshold,
                                                      cache=self.graph_cache)
        objective.collect_constraints()
        return num

    def report_training_likelihood(self, acrf, training):
        '''Log the true joint likelihood of the current weights on the training set.'''
        total = 0.0
        inferencer = acrf.inferencer
        for i, inst in enumerate(training):
            graph = acrf.unroll(inst)
            inferencer.compute_marginals(graph)
            lik = inferencer.lookup_log_joint(graph.assignment)
            total += lik
            logger.info("...instance %d likelihood = %s", i, lik)
        logger.info("Unregularized joint likelihood = %s", total)
        return total
