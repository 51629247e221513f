"""Tests for alphabets, feature and weight vectors, and assignments."""

import pytest

from pacrf import (Alphabet, Assignment, FeatureVector, LabelsAssignment,
                   SparseVector, Variable)


class TestAlphabet:

    def test_lookup_grows_until_stopped(self):
        """New entries get dense ids until growth is stopped."""
        a = Alphabet(["x", "y"])
        assert a.lookup_index("y") == 1
        assert a.lookup_index("z") == 2
        a.stop_growth()
        assert a.lookup_index("w") == -1
        assert "w" not in a
        assert len(a) == 3
        assert a.lookup_object(2) == "z"

    def test_lookup_without_add(self):
        """add=False never inserts."""
        a = Alphabet()
        assert a.lookup_index("x", False) == -1
        assert len(a) == 0


class TestFeatureVector:

    def test_sorted_and_merged(self):
        """Indices are sorted and repeated features add up."""
        fv = FeatureVector([3, 1, 3], [1.0, 2.0, 0.5])
        assert fv.indices.tolist() == [1, 3]
        assert fv.values.tolist() == [2.0, 1.5]

    def test_binary_from_names(self):
        """A list of names gives a binary vector; a frozen alphabet drops unknowns."""
        a = Alphabet(["f1", "f2"])
        a.stop_growth()
        fv = FeatureVector.from_features(a, ["f2", "f9"])
        assert list(fv) == [(1, 1.0)]

    def test_from_dict(self):
        """A dict gives real-valued features."""
        a = Alphabet()
        fv = FeatureVector.from_features(a, {"f1": 0.25})
        assert list(fv) == [(0, 0.25)]


class TestSparseVector:

    def test_dot_ignores_absent(self):
        """Features outside the index set contribute nothing."""
        w = SparseVector([0, 2], [1.5, -2.0])
        fv = FeatureVector([0, 1, 2])
        assert w.dot(fv) == pytest.approx(-0.5)

    def test_locations(self):
        """Positions within the vector, -1 when absent."""
        w = SparseVector([5, 1, 9])
        assert w.locations([1, 5, 7, 9, 10]).tolist() == [0, 1, -1, 2, -1]
        assert SparseVector([]).location(3) == -1

    def test_plus_equals_sparse(self):
        """Only indices present in the target are updated."""
        w = SparseVector([0, 2])
        w.plus_equals_sparse(SparseVector([1, 2], [4.0, 3.0]), 2.0)
        assert w.values.tolist() == [0.0, 6.0]
        assert w.zeroed_copy().values.tolist() == [0.0, 0.0]

    def test_dense(self):
        """A dense vector covers every feature."""
        w = SparseVector.dense(4)
        assert w.indices.tolist() == [0, 1, 2, 3]
        assert w.value(3) == 0.0


class TestAssignment:

    def test_from_index_is_row_major(self):
        """The last variable varies fastest."""
        v0, v1 = Variable(2), Variable(3)
        assn = Assignment.from_index([v0, v1], 4)
        assert assn.get(v0) == 1
        assert assn.get(v1) == 1
        assert assn.single_index() == 4

    def test_restrict_and_duplicate(self):
        """Restriction keeps only the requested variables; duplicates are independent."""
        v0, v1 = Variable(2), Variable(2)
        assn = Assignment([v0, v1], [1, 0])
        sub = assn.restrict([v1])
        assert v0 not in sub
        assert sub.get(v1) == 0
        dup = assn.duplicate()
        dup.set(v0, 0)
        assert assn.get(v0) == 1

    def test_variable_needs_cardinality(self):
        """A variable without outcomes or alphabet is rejected."""
        with pytest.raises(ValueError):
            Variable()


class TestLabelsAssignment:

    def test_variables_per_slice_and_time(self):
        """One variable per (time, slice), holding the gold label index."""
        alphabets = [Alphabet(["A", "B"]), Alphabet(["X", "Y"])]
        lbls = LabelsAssignment([["A", "Y"], ["B", "X"]], alphabets)
        assert lbls.max_time() == 2
        assert lbls.num_slices() == 2
        var = lbls.var_of_index(1, 0)
        assert var.num_outcomes == 2
        assert lbls.get(var) == 1
        assert lbls.output_alphabet(1) is alphabets[1]

    def test_to_labels(self):
        """A decoded assignment maps back to label names."""
        alphabet = Alphabet(["A", "B"])
        lbls = LabelsAssignment(["A", "B", "B"], alphabet)
        variables = [lbls.var_of_index(t, 0) for t in range(3)]
        decoded = Assignment(variables, [1, 0, 1])
        assert lbls.to_labels(decoded) == [["B"], ["A"], ["B"]]
        assert lbls.labels == [["A"], ["B"], ["B"]]

    def test_unknown_label_with_frozen_alphabet(self):
        """Labels outside a frozen alphabet are an error."""
        alphabet = Alphabet(["A"])
        alphabet.stop_growth()
        with pytest.raises(ValueError):
            LabelsAssignment(["A", "Q"], alphabet)

    def test_cardinality_follows_alphabet(self):
        """Growing the label alphabet grows every variable over it."""
        alphabet = Alphabet(["A", "B"])
        lbls = LabelsAssignment(["A"], alphabet)
        alphabet.lookup_index("C")
        assert lbls.var_of_index(0, 0).num_outcomes == 3
