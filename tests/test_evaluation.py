"""Tests for evaluation schedules and per-label test statistics."""

import logging

import pytest

from pacrf import ACRFEvaluator, Alphabet, LogEvaluator, TestResults


@pytest.fixture
def two_chains(make_instance, feature_alphabet, label_alphabet):
    return [make_instance(["a", "b", "b"], ["A", "B", "B"], feature_alphabet, label_alphabet),
            make_instance(["b", "a"], ["B", "A"], feature_alphabet, label_alphabet)]


class TestSchedule:

    def test_skip_then_wait(self):
        evaluator = ACRFEvaluator(num_iterations_to_skip=2, num_iterations_to_wait=3)
        assert [i for i in range(10) if evaluator.should_do_evaluate(i)] == [3, 6, 9]

    def test_wait_zero_means_always(self):
        evaluator = ACRFEvaluator(num_iterations_to_skip=1, num_iterations_to_wait=0)
        assert [i for i in range(4) if evaluator.should_do_evaluate(i)] == [1, 2, 3]

    def test_base_evaluator_never_vetoes(self):
        assert ACRFEvaluator().evaluate(None, 1, [], None, None)


class TestResultsStatistics:

    def test_confusion_and_scores(self, two_chains):
        """Per-label counts, precision, recall and joint accuracy."""
        returned = [[["A"], ["A"], ["B"]], [["B"], ["A"]]]
        results = TestResults.compute_test_results(two_chains, returned)
        a = results.alphabet.lookup_index("A")
        b = results.alphabet.lookup_index("B")
        assert results.confusion[a, a] == 2
        assert results.confusion[b, a] == 1
        assert results.confusion[b, b] == 2
        assert results.true_counts.tolist() == [2, 3]
        assert results.returned_counts.tolist() == [3, 2]
        assert results.precision[a] == pytest.approx(2.0 / 3)
        assert results.recall[b] == pytest.approx(2.0 / 3)
        assert results.f1[a] == pytest.approx(0.8)
        assert results.joint_accuracy() == pytest.approx(0.8)
        assert results.slice_accuracy(0) == (4, 5)

    def test_label_never_seen(self, make_instance, feature_alphabet):
        """A label neither true nor returned scores perfectly rather than dividing by zero."""
        labels = Alphabet(["A", "B", "C"])
        inst = make_instance(["a"], ["A"], feature_alphabet, labels)
        results = TestResults.compute_test_results([inst], [[["A"]]])
        c = results.alphabet.lookup_index("C")
        assert results.precision[c] == 1.0
        assert results.recall[c] == 1.0
        assert results.f1[c] == 1.0

    def test_factorial_joint_accuracy(self, factorial_instance):
        """A time step is right only when every slice is right."""
        returned = [["A", "X"], ["B", "Z"], ["A", "Z"]]
        results = TestResults.compute_test_results([factorial_instance], [returned])
        assert results.num_classes == 5
        assert results.joint_accuracy() == pytest.approx(2.0 / 3)
        assert results.slice_accuracy(0) == (3, 3)
        assert results.slice_accuracy(1) == (2, 3)

    def test_log_evaluator_reports(self, two_chains, caplog):
        evaluator = LogEvaluator()
        returned = [[["A"], ["B"], ["B"]], [["B"], ["A"]]]
        with caplog.at_level(logging.INFO, logger="pacrf.evaluation"):
            evaluator.test_predictions(two_chains, returned, "Testing")
        assert "Joint accuracy: 1.0" in caplog.text
        assert evaluator.joint_accuracy() == 1.0
