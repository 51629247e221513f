"""Shared fixtures for the pacrf test suite."""

import os
import sys

import numpy
import pytest

# Add the repository root to the path so pacrf imports without installing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from pacrf import (ACRF, Alphabet, BigramTemplate, BruteForceInferencer,
                   FeatureVector, Instance, LabelsAssignment, SequenceTemplate,
                   UnigramTemplate, UnrolledVarSet)


def build_instance(tokens, labels, feature_alphabet, label_alphabets, name=None):
    """One instance with a "w=<token>" feature per step.

    `labels` is either a list of strings (one slice) or a list of per-step lists."""
    data = [FeatureVector.from_features(feature_alphabet, ["w=" + tok]) for tok in tokens]
    target = LabelsAssignment(labels, label_alphabets)
    return Instance(data, target, name=name)


@pytest.fixture
def make_instance():
    return build_instance


@pytest.fixture
def feature_alphabet():
    return Alphabet(["w=a", "w=b"])


@pytest.fixture
def label_alphabet():
    return Alphabet(["A", "B"])


@pytest.fixture
def chain_training(feature_alphabet, label_alphabet):
    """
    Three separable chains of length 4: token a is always labelled A and
    token b always B.
    """
    sentences = ["a b b a", "b a a b", "a a b b"]
    instances = []
    for i, sent in enumerate(sentences):
        tokens = sent.split()
        labels = [tok.upper() for tok in tokens]
        instances.append(build_instance(tokens, labels, feature_alphabet, label_alphabet, name="chain%d" % i))
    return instances


@pytest.fixture
def small_chain(feature_alphabet, label_alphabet):
    """A single chain of length 3 with one label disagreeing with its token."""
    return [build_instance(["a", "b", "a"], ["A", "B", "B"], feature_alphabet, label_alphabet, name="small")]


@pytest.fixture
def factorial_instance(feature_alphabet):
    """Two label slices over three time steps."""
    alphabets = [Alphabet(["A", "B"]), Alphabet(["X", "Y", "Z"])]
    labels = [["A", "X"], ["B", "Y"], ["A", "Z"]]
    return build_instance(["a", "b", "a"], labels, feature_alphabet, alphabets, name="factorial")


@pytest.fixture
def chain_acrf(feature_alphabet):
    """Unigram + bigram chain model with exact inference."""
    templates = [UnigramTemplate(0), BigramTemplate(0)]
    return ACRF(templates, feature_alphabet, inferencer=BruteForceInferencer())


class TripleTemplate(SequenceTemplate):
    '''One clique over the first three labels of slice 0, with the first step's features.'''

    def add_sequence_cliques(self, graph, fvs, lblseq):
        if lblseq.max_time() < 3:
            return
        variables = [lblseq.var_of_index(t, 0) for t in range(3)]
        graph.add_clique(UnrolledVarSet(self, variables, fvs[0]))


def randomize_weights(acrf, seed=0, scale=1.0):
    """Fill every template's weights with reproducible random values."""
    rng = numpy.random.RandomState(seed)
    for tmpl in acrf.templates:
        tmpl.default_weights[:] = scale * rng.randn(len(tmpl.default_weights))
        for w in tmpl.weights:
            w.values[:] = scale * rng.randn(len(w))


def randomize(objective, seed=0, scale=0.5):
    """Move an objective to a reproducible random point."""
    rng = numpy.random.RandomState(seed)
    params = scale * rng.randn(objective.num_parameters())
    objective.set_parameters(params)
    return params
