# -*- coding: utf-8 -*-
"""
Log-space helpers and exceptions shared by the ACRF modules.

License (BSD)
==============
Copyright (c) 2013, Huang,Zheng.  huang-zheng@sjtu.edu.cn
All rights reserved.

THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS" AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.

"""

import numpy
from scipy.special import logsumexp


class StructureMismatchException(Exception):
    """Clique shape disagrees with the weights allocated for its template."""
    pass


class WeightsLengthException(StructureMismatchException):
    """Attempt to change the number of assignments of an allocated weight array."""
    pass


class UnsupportedStructureException(Exception):
    pass


class OptimizationException(Exception):
    """The optimizer could not take a step from the current point."""
    pass


def logdotexp_vec_mat(loga, logM):
    return logsumexp(loga + logM, axis=1)


def logdotexp_mat_vec(logM, logb):
    return logsumexp(logM + logb[:, numpy.newaxis], axis=0)


def log_normalize(logv):
    '''Subtract the log partition; an all -inf table is returned unchanged.'''
    logZ = logsumexp(logv)
    if numpy.isfinite(logZ):
        return logv - logZ
    return logv


def maxdotexp_vec_mat(loga, logM):
    return numpy.max(loga + logM, axis=1)


def maxdotexp_mat_vec(logM, logb):
    return numpy.max(logM + logb[:, numpy.newaxis], axis=0)
