# -*- coding: utf-8 -*-
"""
The ACRF model: a list of templates with their tied weights, the input
feature alphabet, and the inferencers used for training and decoding.

License (BSD)
==============
Copyright (c) 2013, Huang,Zheng.  huang-zheng@sjtu.edu.cn
All rights reserved.

THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS" AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.

"""

import logging
import re
import time
import xml.etree.ElementTree as ET

import numpy

from .graph import UnrolledGraph
from .inference import BeliefPropagation
from .instances import SparseVector
from .templates import BigramTemplate, PairwiseFactorTemplate

logger = logging.getLogger(__name__)

_IDX_RE = re.compile(r"^IDX(\d+)$")


class ACRF(object):

    def __init__(self, templates, input_alphabet, fixed=None, inferencer=None, viterbi=None):
        self.templates = list(templates)
        self.fixed_templates = []
        self.input_alphabet = input_alphabet
        self.inferencer = inferencer if inferencer is not None else BeliefPropagation()
        self.viterbi = viterbi if viterbi is not None else BeliefPropagation(max_product=True)
        self.gaussian_prior_variance = 10.0
        self.do_size_scale = False
        self.graph_processor = None
        for i, tmpl in enumerate(self.templates):
            tmpl.index = i
        for tmpl in fixed or []:
            self.add_fixed_potential(tmpl)

    @classmethod
    def make_factorial(cls, input_alphabet, num_levels, **kwargs):
        '''Bigram chains on every level, tied together by co-temporal pairs
        between neighbouring levels.'''
        templates = [BigramTemplate(i) for i in range(num_levels)]
        templates += [PairwiseFactorTemplate(i, i + 1) for i in range(num_levels - 1)]
        return cls(templates, input_alphabet, **kwargs)

    def add_fixed_potential(self, template):
        template.index = -1
        self.fixed_templates.append(template)

    def set_supported_only(self, flag):
        for tmpl in self.templates:
            tmpl.supported_only = flag

    def init_weights(self, training):
        num_features = len(self.input_alphabet)
        total = 0
        for tmpl in self.templates:
            total += tmpl.init_weights(training, num_features)
        logger.info("ACRF: number of parameters = %d", total)
        return total

    # Unrolling

    def unroll_structure_only(self, instance, cache=None):
        graph = None
        if cache is not None:
            graph = cache.get(instance)
        if graph is None:
            graph = UnrolledGraph(instance, self.templates, self.fixed_templates, False)
            if cache is not None:
                cache.put(instance, graph)
        return graph

    def unroll(self, instance, cache=None):
        stime = time.time()
        graph = self.unroll_structure_only(instance, cache)
        if graph.factors_added:
            graph.recompute_factors()
        else:
            graph.compute_cpfs()
            if self.graph_processor is not None:
                self.graph_processor(graph, instance)
        logger.debug("Unrolled %s: %d cliques in %.4fs", instance.name, len(graph.cliques), time.time() - stime)
        return graph

    # Decoding

    def best_assignment(self, instance, cache=None):
        graph = self.unroll(instance, cache)
        return self.viterbi.best_assignment(graph)

    def best_labels(self, instance, cache=None):
        assn = self.best_assignment(instance, cache)
        return instance.target.to_labels(assn)

    # Persisted weights

    def _feature_name(self, idx):
        if idx < len(self.input_alphabet):
            return str(self.input_alphabet.lookup_object(idx))
        return "IDX%d" % idx

    def _feature_index(self, name):
        idx = self.input_alphabet.lookup_index(name, False)
        if idx >= 0:
            return idx
        m = _IDX_RE.match(name)
        if m:
            return int(m.group(1))
        return -1

    def write_weights_text(self, fp):
        for tmpl in self.templates:
            if tmpl.weights is None:
                raise ValueError("%r has no weights; call init_weights first" % tmpl)
        fp.write("<CRF>\n")
        for tmpl in self.templates:
            fp.write('<TEMPLATE NAME="%s" IDX="%d" >\n' % (type(tmpl).__name__, tmpl.index))
            fp.write("<DEFAULT_WEIGHTS>\n")
            for i, val in enumerate(tmpl.default_weights.tolist()):
                fp.write("%d\t%r\n" % (i, val))
            fp.write("</DEFAULT_WEIGHTS>\n\n")
            fp.write('<WEIGHTS SIZE="%d">\n' % len(tmpl.weights))
            for a, w in enumerate(tmpl.weights):
                fp.write('<WEIGHT IDX="%d">\n' % a)
                fp.write("<![CDATA[\n")
                for idx, val in w:
                    fp.write("%s\t%r\n" % (self._feature_name(idx), val))
                fp.write("]]>\n")
                fp.write("</WEIGHT>\n")
            fp.write("</WEIGHTS>\n")
            fp.write("</TEMPLATE>\n")
        fp.write("</CRF>\n")

    def read_weights_text(self, fp):
        root = ET.fromstring(fp.read())
        for node in root.findall("TEMPLATE"):
            tmpl = self.templates[int(node.get("IDX"))]
            if type(tmpl).__name__ != node.get("NAME"):
                raise ValueError("Template %r does not match %s in weights file" % (tmpl, node.get("NAME")))
            weights_node = node.find("WEIGHTS")
            size = int(weights_node.get("SIZE"))
            default = numpy.zeros(size)
            for line in _lines(node.find("DEFAULT_WEIGHTS").text):
                i, val = line.split("\t")
                default[int(i)] = float(val)
            weights = [None] * size
            for wnode in weights_node.findall("WEIGHT"):
                idxs = []
                vals = []
                for line in _lines(wnode.text):
                    name, val = line.rsplit("\t", 1)
                    idx = self._feature_index(name)
                    if idx < 0:
                        logger.warning("%r: feature %s is not in the input alphabet, skipped", tmpl, name)
                        continue
                    idxs.append(idx)
                    vals.append(float(val))
                weights[int(wnode.get("IDX"))] = SparseVector(idxs, vals)
            weights = [SparseVector([]) if w is None else w for w in weights]
            tmpl.set_weights(weights)
            tmpl.set_default_weights(default)

    def __repr__(self):
        return "ACRF(%r, fixed=%r)" % (self.templates, self.fixed_templates)


def _lines(text):
    if not text:
        return []
    return [line for line in text.split("\n") if line.strip()]
