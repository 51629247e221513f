# -*- coding: utf-8 -*-
"""
Evaluators called by the trainer between iterations, and per-label test
statistics.

License (BSD)
==============
Copyright (c) 2013, Huang,Zheng.  huang-zheng@sjtu.edu.cn
All rights reserved.

THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS" AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.

"""

import logging

import numpy

from .instances import Alphabet

logger = logging.getLogger(__name__)


class ACRFEvaluator(object):
    '''Callback invoked by the trainer. evaluate() returns False to stop training.

    Evaluation runs on iterations >= num_iterations_to_skip, and then only on
    every num_iterations_to_wait-th one.'''

    def __init__(self, num_iterations_to_skip=0, num_iterations_to_wait=1):
        self.num_iterations_to_skip = num_iterations_to_skip
        self.num_iterations_to_wait = num_iterations_to_wait

    def should_do_evaluate(self, iteration):
        if iteration < self.num_iterations_to_skip:
            return False
        return self.num_iterations_to_wait == 0 or iteration % self.num_iterations_to_wait == 0

    def evaluate(self, acrf, iteration, training, validation, testing):
        return True

    def test(self, acrf, instances, description, cache=None):
        predictions = [acrf.best_labels(inst, cache) for inst in instances]
        self.test_predictions(instances, predictions, description)

    def test_predictions(self, instances, predictions, description):
        raise NotImplementedError


class LogEvaluator(ACRFEvaluator):
    '''Logs per-label and joint accuracy of the current model.'''

    def __init__(self, num_iterations_to_skip=0, num_iterations_to_wait=1):
        ACRFEvaluator.__init__(self, num_iterations_to_skip, num_iterations_to_wait)
        self.last_results = None

    def evaluate(self, acrf, iteration, training, validation, testing):
        if self.should_do_evaluate(iteration):
            if training:
                self.test(acrf, training, "Training")
            if testing:
                self.test(acrf, testing, "Testing")
        return True

    def test_predictions(self, instances, predictions, description):
        logger.info("%s: Number of instances = %d", description, len(instances))
        results = TestResults.compute_test_results(instances, predictions)
        results.log(description)
        self.last_results = results

    def joint_accuracy(self):
        return self.last_results.joint_accuracy()


class TestResults(object):
    '''Confusion matrix over the union of all slices' labels.

    confusion[i][j] counts true label i returned as j.'''

    __test__ = False

    def __init__(self, target):
        self.alphabet = Alphabet()
        self.factors = []
        for j in range(target.num_slices()):
            dict_j = target.output_alphabet(j)
            self.factors.append([self.alphabet.lookup_index(dict_j.lookup_object(i))
                                 for i in range(len(dict_j))])
        self.num_classes = len(self.alphabet)
        self.confusion = numpy.zeros((self.num_classes, self.num_classes), dtype=int)
        self.max_t = 0
        self.correct_t = 0
        self.true_counts = None
        self.returned_counts = None
        self.precision = None
        self.recall = None
        self.f1 = None

    @classmethod
    def compute_test_results(cls, instances, returned_list):
        results = cls(instances[0].target)
        for inst, returned in zip(instances, returned_list):
            target = inst.target.labels
            assert len(returned) == len(target)
            for lbls_returned, lbls_target in zip(returned, target):
                results.increment_count(lbls_returned, lbls_target)
        results.compute_statistics()
        return results

    def increment_count(self, lbls_returned, lbls_target):
        all_same = True
        for ret, tgt in zip(lbls_returned, lbls_target):
            idx_true = self.alphabet.lookup_index(tgt, False)
            idx_ret = self.alphabet.lookup_index(ret, False)
            if idx_true != idx_ret:
                all_same = False
            self.confusion[idx_true, idx_ret] += 1
        self.max_t += 1
        if all_same:
            self.correct_t += 1

    def compute_statistics(self):
        self.true_counts = self.confusion.sum(axis=1)
        self.returned_counts = self.confusion.sum(axis=0)
        correct = numpy.diag(self.confusion).astype(float)
        with numpy.errstate(divide="ignore", invalid="ignore"):
            self.precision = numpy.where(self.returned_counts == 0,
                                         numpy.where(correct == 0, 1.0, 0.0),
                                         correct / self.returned_counts)
            self.recall = numpy.where(self.true_counts == 0, 1.0, correct / self.true_counts)
            denom = self.precision + self.recall
            self.f1 = numpy.where(denom == 0, 0.0, 2 * self.precision * self.recall / denom)

    def slice_accuracy(self, fnum):
        correct = sum(self.confusion[lbl, lbl] for lbl in self.factors[fnum])
        returned = sum(self.returned_counts[lbl] for lbl in self.factors[fnum])
        return correct, returned

    def log(self, desc=""):
        logger.info("%s:  i\tLabel\tN\tCorrect\tReturned\tP\tR\tF1", desc)
        for i in range(self.num_classes):
            logger.info("%s:  %d\t%s\t%d\t%d\t%d\t%.4f\t%.4f\t%.4f", desc, i, self.alphabet.lookup_object(i),
                        self.true_counts[i], self.confusion[i, i], self.returned_counts[i],
                        self.precision[i], self.recall[i], self.f1[i])
        for fnum in range(len(self.factors)):
            correct, returned = self.slice_accuracy(fnum)
            logger.info("%s:  Factor %d accuracy: (%d %d) %s", desc, fnum, correct, returned,
                        correct / float(returned) if returned else 0.0)
        logger.info("%s CorrectT %d  maxt %d", desc, self.correct_t, self.max_t)
        logger.info("%s Joint accuracy: %s", desc, self.joint_accuracy())

    def joint_accuracy(self):
        if self.max_t == 0:
            return 0.0
        return self.correct_t / float(self.max_t)
