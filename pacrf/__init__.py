# -*- coding: utf-8 -*-
"""
pacrf: parameter estimation for arbitrarily structured conditional random
fields (ACRFs) over labeled sequences.

License (BSD)
==============
Copyright (c) 2013, Huang,Zheng.  huang-zheng@sjtu.edu.cn
All rights reserved.

THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS" AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.

"""

from .evaluation import ACRFEvaluator, LogEvaluator, TestResults
from .factors import CompositeFactor, LogTableFactor
from .graph import GraphCache, UnrolledGraph, UnrolledVarSet
from .inference import BeliefPropagation, BruteForceInferencer
from .instances import (Alphabet, Assignment, FeatureVector, Instance,
                        LabelsAssignment, SparseVector, Variable)
from .model import ACRF
from .objective import (ACRFObjective, LikelihoodEvidence, PiecewiseEvidence,
                        PseudolikelihoodEvidence, PwplEvidence, WrongWrong,
                        check_gradient)
from .optimizer import LimitedMemoryBFGS
from .templates import (BigramTemplate, FixedFactorTemplate,
                        PairwiseFactorTemplate, SequenceTemplate, Template,
                        UnigramTemplate)
from .trainer import (ACRFTrainer, PiecewiseACRFTrainer,
                      PseudolikelihoodACRFTrainer, PwplACRFTrainer)
from .utility import (OptimizationException, StructureMismatchException,
                      UnsupportedStructureException, WeightsLengthException)

__version__ = "0.1"
