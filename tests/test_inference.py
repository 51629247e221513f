"""Belief propagation against brute-force enumeration on tree-shaped graphs."""

import numpy
import pytest

from conftest import TripleTemplate, randomize_weights
from pacrf import (ACRF, Alphabet, BeliefPropagation, BruteForceInferencer,
                   UnigramTemplate)


def _unroll(acrf, instances, seed=0):
    acrf.set_supported_only(False)
    acrf.init_weights(instances)
    randomize_weights(acrf, seed)
    return acrf.unroll(instances[0])


def _compare(graph):
    brute = BruteForceInferencer()
    brute.compute_marginals(graph)
    bp = BeliefPropagation()
    bp.compute_marginals(graph)
    for clique in graph.cliques:
        assert numpy.allclose(bp.lookup_marginal(clique).values(),
                              brute.lookup_marginal(clique).values(), atol=1e-6)
    for var in graph.variables:
        assert numpy.allclose(bp.lookup_marginal(var).values(),
                              brute.lookup_marginal(var).values(), atol=1e-6)
    assert bp.lookup_log_joint(graph.assignment) == pytest.approx(
        brute.lookup_log_joint(graph.assignment), abs=1e-6)
    return bp, brute


@pytest.fixture
def factorial_single(make_instance, feature_alphabet):
    alphabets = [Alphabet(["A", "B"]), Alphabet(["X", "Y", "Z"])]
    return [make_instance(["b"], [["B", "Z"]], feature_alphabet, alphabets)]


class TestSumProduct:

    @pytest.mark.parametrize("seed", [0, 1, 2])
    def test_chain(self, chain_acrf, chain_training, seed):
        """Exact on a linear chain."""
        graph = _unroll(chain_acrf, chain_training, seed)
        _compare(graph)

    def test_cotemporal_pair(self, feature_alphabet, factorial_single):
        """Exact on a single pair of differently sized variables."""
        acrf = ACRF.make_factorial(feature_alphabet, 2)
        graph = _unroll(acrf, factorial_single)
        assert len(graph.cliques) == 1
        bp, _ = _compare(graph)
        assert bp.lookup_marginal(graph.cliques[0]).shape() == (2, 3)

    def test_triple_clique(self, feature_alphabet, chain_training):
        """Messages through a factor over three variables."""
        acrf = ACRF([UnigramTemplate(0), TripleTemplate()], feature_alphabet)
        graph = _unroll(acrf, chain_training, seed=4)
        _compare(graph)

    def test_marginal_ordering(self, chain_acrf, chain_training):
        """Marginals come back in the order the variables were asked for."""
        graph = _unroll(chain_acrf, chain_training)
        bp = BeliefPropagation()
        bp.compute_marginals(graph)
        v0 = graph.get_variable(0)
        v1 = graph.get_variable(1)
        forward = bp.lookup_marginal([v0, v1]).values()
        backward = bp.lookup_marginal([v1, v0]).values()
        assert numpy.allclose(forward, backward.T)

    def test_marginal_of_variable_list(self, chain_acrf, chain_training):
        """Both engines take a plain list of variables and agree on its belief."""
        graph = _unroll(chain_acrf, chain_training, seed=2)
        bp = BeliefPropagation()
        bp.compute_marginals(graph)
        brute = BruteForceInferencer()
        brute.compute_marginals(graph)
        pair = [graph.get_variable(2), graph.get_variable(1)]
        assert bp.lookup_marginal(pair).variables == tuple(pair)
        assert numpy.allclose(bp.lookup_marginal(pair).values(),
                              brute.lookup_marginal(pair).values(), atol=1e-6)
        assert numpy.allclose(brute.lookup_marginal((pair[0],)).values(),
                              bp.lookup_marginal(pair[0]).values(), atol=1e-6)

    def test_unknown_domain(self, chain_acrf, chain_training):
        """Only domains that carry a factor have pairwise beliefs."""
        graph = _unroll(chain_acrf, chain_training)
        bp = BeliefPropagation()
        bp.compute_marginals(graph)
        with pytest.raises(KeyError):
            bp.lookup_marginal([graph.get_variable(0), graph.get_variable(2)])

    def test_impossible_gold(self, chain_acrf, chain_training):
        """A gold label with zero potential has log probability -inf."""
        graph = _unroll(chain_acrf, chain_training)
        chain_acrf.templates[0].default_weights[1] = -numpy.inf
        graph = chain_acrf.unroll(chain_training[0])
        bp = BeliefPropagation()
        bp.compute_marginals(graph)
        assert bp.lookup_log_joint(graph.assignment) == -numpy.inf
        assert bp.lookup_marginal(graph.get_variable(0)).values()[1] == 0.0


class TestMaxProduct:

    @pytest.mark.parametrize("seed", [0, 5])
    def test_decode_matches_brute_force(self, chain_acrf, chain_training, seed):
        """Viterbi decoding on a chain finds the joint argmax."""
        graph = _unroll(chain_acrf, chain_training, seed)
        expected = BruteForceInferencer().best_assignment(graph)
        for bp in (BeliefPropagation(max_product=True), BeliefPropagation()):
            best = bp.best_assignment(graph)
            for var in graph.variables:
                assert best.get(var) == expected.get(var)

    def test_sum_product_instance_unchanged(self, chain_acrf, chain_training):
        """Decoding with a sum-product instance leaves it sum-product."""
        graph = _unroll(chain_acrf, chain_training)
        bp = BeliefPropagation()
        bp.best_assignment(graph)
        assert not bp.max_product

    def test_model_decodes_with_viterbi(self, chain_acrf, chain_training):
        """The model's default decoder is max-product BP."""
        _unroll(chain_acrf, chain_training)
        assert chain_acrf.viterbi.max_product
        labels = chain_acrf.best_labels(chain_training[1])
        assert len(labels) == 4
        assert all(len(row) == 1 and row[0] in ("A", "B") for row in labels)
