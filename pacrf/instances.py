# -*- coding: utf-8 -*-
"""
Data types handed to the ACRF core by the feature/label pipeline: alphabets,
sparse feature vectors, output variables and their assignments.

License (BSD)
==============
Copyright (c) 2013, Huang,Zheng.  huang-zheng@sjtu.edu.cn
All rights reserved.

THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS" AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.

"""

import itertools

import numpy


class Alphabet(object):
    '''Bidirectional map between entries (feature or label names) and dense ids.'''

    def __init__(self, entries=()):
        self.entries = []
        self.index = dict()
        self.growth_stopped = False
        for entry in entries:
            self.lookup_index(entry)

    def lookup_index(self, entry, add=True):
        idx = self.index.get(entry, -1)
        if idx == -1 and add and not self.growth_stopped:
            idx = len(self.entries)
            self.index[entry] = idx
            self.entries.append(entry)
        return idx

    def lookup_object(self, idx):
        return self.entries[idx]

    def stop_growth(self):
        self.growth_stopped = True

    def __len__(self):
        return len(self.entries)

    def __contains__(self, entry):
        return entry in self.index

    def __iter__(self):
        return iter(self.entries)

    def __repr__(self):
        return "Alphabet(%r)" % (self.entries,)


class FeatureVector(object):
    '''Sorted feature indices with their values; binary when no values are given.'''

    def __init__(self, indices, values=None):
        indices = numpy.asarray(indices, dtype=int).ravel()
        if values is None:
            values = numpy.ones(len(indices))
        else:
            values = numpy.asarray(values, dtype=float).ravel()
        order = numpy.argsort(indices, kind="stable")
        indices = indices[order]
        values = values[order]
        if len(indices) > 1 and numpy.any(indices[1:] == indices[:-1]):
            # repeated features add up
            uniq, inverse = numpy.unique(indices, return_inverse=True)
            merged = numpy.zeros(len(uniq))
            numpy.add.at(merged, inverse, values)
            indices, values = uniq, merged
        self.indices = indices
        self.values = values

    @classmethod
    def from_features(cls, alphabet, features, add=True):
        '''features is a list of names (binary) or a dict of name -> value.
        Names missing from a frozen alphabet are dropped.'''
        if isinstance(features, dict):
            items = features.items()
        else:
            items = [(f, 1.0) for f in features]
        idxs = []
        vals = []
        for name, val in items:
            idx = alphabet.lookup_index(name, add)
            if idx >= 0:
                idxs.append(idx)
                vals.append(val)
        return cls(idxs, vals)

    def __len__(self):
        return len(self.indices)

    def __iter__(self):
        return zip(self.indices.tolist(), self.values.tolist())

    def __repr__(self):
        return "FeatureVector(%s)" % ", ".join("%d:%g" % iv for iv in self)


class SparseVector(object):
    '''Weights over a fixed, sorted set of feature indices.

    Indices outside the set are treated as absent: they read as zero and
    additions to them are ignored.'''

    def __init__(self, indices, values=None):
        indices = numpy.asarray(indices, dtype=int).ravel()
        if values is None:
            values = numpy.zeros(len(indices))
        else:
            values = numpy.array(values, dtype=float).ravel()
        order = numpy.argsort(indices, kind="stable")
        self.indices = indices[order]
        self.values = values[order]

    @classmethod
    def dense(cls, size, values=None):
        return cls(numpy.arange(size), values)

    def locations(self, indices):
        '''Position of each index in this vector, -1 where absent.'''
        indices = numpy.asarray(indices, dtype=int)
        n = len(self.indices)
        if n == 0:
            return numpy.full(len(indices), -1, dtype=int)
        pos = numpy.minimum(numpy.searchsorted(self.indices, indices), n - 1)
        return numpy.where(self.indices[pos] == indices, pos, -1)

    def location(self, index):
        return int(self.locations([index])[0])

    def value(self, index):
        loc = self.location(index)
        if loc == -1:
            return 0.0
        return float(self.values[loc])

    def dot(self, fv):
        locs = self.locations(fv.indices)
        mask = locs >= 0
        if not mask.any():
            return 0.0
        return float(numpy.dot(self.values[locs[mask]], fv.values[mask]))

    def plus_equals_sparse(self, other, scale=1.0):
        locs = self.locations(other.indices)
        mask = locs >= 0
        self.values[locs[mask]] += scale * other.values[mask]

    def zeroed_copy(self):
        return SparseVector(self.indices.copy())

    def __len__(self):
        return len(self.indices)

    def __iter__(self):
        return zip(self.indices.tolist(), self.values.tolist())

    def __repr__(self):
        return "SparseVector(%s)" % ", ".join("%d:%g" % iv for iv in self)


class Variable(object):
    '''A discrete output variable. Hashes by identity.'''

    _ids = itertools.count()

    def __init__(self, num_outcomes=None, label=None, alphabet=None):
        if num_outcomes is None and alphabet is None:
            raise ValueError("Variable needs either num_outcomes or a label alphabet")
        self._num_outcomes = num_outcomes
        self.alphabet = alphabet
        if label is None:
            label = "VAR%d" % next(Variable._ids)
        self.label = label

    @property
    def num_outcomes(self):
        if self.alphabet is not None:
            return len(self.alphabet)
        return self._num_outcomes

    def __repr__(self):
        return self.label


class Assignment(object):
    '''Map from variables to outcome indices.'''

    def __init__(self, variables=(), values=()):
        self.values = dict()
        for var, val in zip(variables, values):
            self.values[var] = int(val)

    @classmethod
    def from_index(cls, variables, idx):
        '''Decode a row-major joint index, the last variable varying fastest.'''
        variables = list(variables)
        sizes = [v.num_outcomes for v in variables]
        if not variables:
            return cls()
        outcomes = numpy.unravel_index(int(idx), sizes)
        return cls(variables, [int(o) for o in outcomes])

    @property
    def variables(self):
        return list(self.values)

    def get(self, var):
        return self.values[var]

    def set(self, var, value):
        self.values[var] = int(value)

    def restrict(self, variables):
        return Assignment(variables, [self.values[v] for v in variables])

    def duplicate(self):
        return Assignment(list(self.values), list(self.values.values()))

    def single_index(self):
        variables = self.variables
        if not variables:
            return 0
        sizes = [v.num_outcomes for v in variables]
        return int(numpy.ravel_multi_index([self.values[v] for v in variables], sizes))

    def __contains__(self, var):
        return var in self.values

    def __len__(self):
        return len(self.values)

    def __repr__(self):
        return "Assignment(%s)" % ", ".join("%r=%d" % kv for kv in self.values.items())


class LabelsAssignment(Assignment):
    '''Gold labels of one instance: one label per slice per time step.

    Creates a Variable for every (time, slice) pair; these variables are the
    nodes every unrolled graph of the instance is built over.'''

    _ids = itertools.count()

    def __init__(self, labels, alphabets):
        Assignment.__init__(self)
        if isinstance(alphabets, Alphabet):
            alphabets = [alphabets]
        self.alphabets = list(alphabets)
        self.id = next(LabelsAssignment._ids)
        self.labels = []
        self.idx2var = []
        for t, lbls in enumerate(labels):
            if isinstance(lbls, str):
                lbls = [lbls]
            lbls = list(lbls)
            row = []
            for j, lbl in enumerate(lbls):
                dict_j = self.alphabets[j]
                idx = dict_j.lookup_index(lbl)
                if idx == -1:
                    raise ValueError("Unknown label %r for slice %d" % (lbl, j))
                var = Variable(alphabet=dict_j, label="I%d_VAR[f=%d][tm=%d]" % (self.id, j, t))
                self.set(var, idx)
                row.append(var)
            self.labels.append(lbls)
            self.idx2var.append(row)

    def var_of_index(self, t, j):
        return self.idx2var[t][j]

    def max_time(self):
        return len(self.idx2var)

    def num_slices(self):
        if not self.idx2var:
            return 0
        return len(self.idx2var[0])

    def output_alphabet(self, j):
        return self.alphabets[j]

    def to_labels(self, assn):
        '''Label names of a (decoded) assignment, in the shape of the gold labels.'''
        seq = []
        for t in range(self.max_time()):
            row = []
            for j in range(self.num_slices()):
                var = self.var_of_index(t, j)
                if var in assn:
                    row.append(self.alphabets[j].lookup_object(assn.get(var)))
                else:
                    row.append(self.alphabets[j].lookup_object(0))
            seq.append(row)
        return seq


class Instance(object):
    '''One training or testing example: per-time-step feature vectors and gold labels.'''

    def __init__(self, data, target, name=None):
        self.data = list(data)
        self.target = target
        self.name = name

    def __repr__(self):
        return "Instance(%s)" % (self.name,)
