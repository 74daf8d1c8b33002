from abc import ABC, abstractmethod

import networkx as nx
import numpy as np
from causallearn.utils.cit import Chisq_or_Gsq as _CL_ChiGsq

from src.causallatent.cl_types import CITestType
from src.causallatent.data.discrete_data import DiscreteData


class CITest(ABC):
    """ Conditional independence test over the columns of one dataset (or an oracle graph). """

    @abstractmethod
    def is_dependent(self, a: int, b: int, cond) -> bool:
        raise NotImplementedError


class _ChiGsqTest(CITest):
    method_name = None

    def __init__(self, data: DiscreteData, alpha: float = 0.05, **kwargs):
        assert 0 < alpha < 1
        self.alpha = alpha
        self.n_vars = data.n_vars
        self._ct = _CL_ChiGsq(data.X.astype(np.int64, copy=False), method_name=self.method_name, **kwargs)

    def p_value(self, a, b, cond) -> float:
        return float(self._ct(a, b, list(cond)))

    def is_dependent(self, a, b, cond) -> bool:
        return self.p_value(a, b, cond) < self.alpha


class ChiSquareTest(_ChiGsqTest):
    """Chi-square test (categorical; data must be integer-coded)."""
    method_name = "chisq"


class GSquareTest(_ChiGsqTest):
    """G-square test (categorical; data must be integer-coded)."""
    method_name = "gsq"


class DSeparationTest(CITest):
    """d-separation oracle on a known DAG, column i of the (virtual) dataset is graph node observed[i]."""

    def __init__(self, graph: nx.DiGraph, observed=None):
        self.graph = graph
        self.observed = list(observed) if observed is not None else sorted(graph.nodes)

    def is_dependent(self, a, b, cond) -> bool:
        z = {self.observed[c] for c in cond}
        return not nx.is_d_separator(self.graph, {self.observed[a]}, {self.observed[b]}, z)


def make_ci_test(ci_type: CITestType, data: DiscreteData = None, alpha: float = 0.05, **kwargs) -> CITest:
    """
    :param ci_type: test type
    :param data: discrete data, not needed for the d-separation oracle
    :param alpha: significance level
    :param kwargs: 'graph' and 'observed' for the oracle
    :return: CITest
    """
    if ci_type.is_oracle():
        assert 'graph' in kwargs, "d-separation needs the true graph"
        return DSeparationTest(kwargs['graph'], kwargs.get('observed', None))
    assert data is not None
    if ci_type == CITestType.CHISQ:
        return ChiSquareTest(data, alpha)
    if ci_type == CITestType.GSQ:
        return GSquareTest(data, alpha)
    raise ValueError(f"unknown test {ci_type}")
