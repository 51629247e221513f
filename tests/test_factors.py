"""Tests for log-space table factors."""

import numpy
import pytest

from pacrf import Assignment, CompositeFactor, LogTableFactor, Variable


@pytest.fixture
def xy():
    return Variable(2, label="x"), Variable(3, label="y")


class TestLogTableFactor:

    def test_normalize_and_logsum(self, xy):
        """Normalizing subtracts the log partition."""
        x, y = xy
        f = LogTableFactor([x, y], numpy.log(numpy.arange(1, 7, dtype=float)))
        assert f.logsum() == pytest.approx(numpy.log(21.0))
        assert f.normalize().values().sum() == pytest.approx(1.0)

    def test_aligned_transposes(self, xy):
        """Reordering the variables transposes the table."""
        x, y = xy
        table = numpy.arange(6, dtype=float).reshape(2, 3)
        f = LogTableFactor([x, y], table)
        g = f.aligned([y, x])
        assert g.variables == (y, x)
        assert numpy.array_equal(g.log_values, table.T)
        assn = Assignment([x, y], [1, 2])
        assert g.log_value(assn) == f.log_value(assn) == 5.0

    def test_aligned_rejects_other_variables(self, xy):
        """Aligning to a different variable set is an error."""
        x, y = xy
        f = LogTableFactor([x])
        with pytest.raises(ValueError):
            f.aligned([y])

    def test_expand_broadcasts(self, xy):
        """A factor over y broadcasts against a table over (x, y)."""
        x, y = xy
        f = LogTableFactor([y], [0.0, 1.0, 2.0])
        assert f.expand([x, y]).shape == (1, 3)
        total = numpy.zeros((2, 3)) + f.expand([x, y])
        assert total[1].tolist() == [0.0, 1.0, 2.0]

    def test_slice(self, xy):
        """Conditioning on x keeps the y row."""
        x, y = xy
        table = numpy.arange(6, dtype=float).reshape(2, 3)
        f = LogTableFactor([x, y], table)
        g = f.slice(Assignment([x], [1]))
        assert g.variables == (y,)
        assert g.log_values.tolist() == [3.0, 4.0, 5.0]

    def test_marginalize(self, xy):
        """Summing out y in log space."""
        x, y = xy
        f = LogTableFactor([x, y], numpy.zeros((2, 3)))
        m = f.marginalize([x])
        assert numpy.allclose(m.log_values, numpy.log([3.0, 3.0]))

    def test_set_log_values_in_place(self, xy):
        """In-place updates keep the same table object."""
        x, y = xy
        f = LogTableFactor([x, y])
        table = f.log_values
        f.set_log_values(numpy.ones(6))
        assert f.log_values is table
        assert table.sum() == 6.0

    def test_dist_linf(self, xy):
        """Distance is measured in probability space."""
        x, _ = xy
        f = LogTableFactor([x], numpy.log([0.5, 0.5]))
        g = LogTableFactor([x], numpy.log([0.25, 0.75]))
        assert f.dist_linf(g) == pytest.approx(0.25)


class TestCompositeFactor:

    def test_product_of_children(self, xy):
        """The composite table is the log-space sum of its children."""
        x, y = xy
        f = LogTableFactor([x, y], numpy.ones((2, 3)))
        g = LogTableFactor([y, x], numpy.arange(6, dtype=float).reshape(3, 2))
        c = CompositeFactor([f, g])
        assert numpy.allclose(c.log_values, 1.0 + numpy.arange(6).reshape(3, 2).T)

    def test_reflects_child_updates(self, xy):
        """Updating a child in place shows through the composite."""
        x, y = xy
        f = LogTableFactor([x, y])
        g = LogTableFactor([x, y])
        c = CompositeFactor([f, g])
        f.set_log_values(numpy.full(6, 2.0))
        assert numpy.allclose(c.log_values, 2.0)

    def test_rejects_other_domain(self, xy):
        """Children must share the composite's variables."""
        x, y = xy
        c = CompositeFactor([LogTableFactor([x, y])])
        with pytest.raises(ValueError):
            c.multiply_by(LogTableFactor([x]))
