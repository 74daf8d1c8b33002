import warnings

import numpy as np

from src.causallatent.cl_types import LearnerType
from src.causallatent.dag.node_cache import NodeCache
from src.causallatent.dag.tom import TOM
from src.causallatent.scoring.cpt_learner import CPTLearner

from data_for_testing import chain_data


class CountingLearner(CPTLearner):
    def __init__(self, **kwargs):
        super().__init__(LearnerType.MML, **kwargs)
        self.calls = 0

    def parameterize_and_cost(self, x, z, x_arity, z_arities, w=None):
        self.calls += 1
        return super().parameterize_and_cost(x, z, x_arity, z_arities, w)


def test_cache_idempotence():
    data, _ = chain_data(n_rows=200)
    learner = CountingLearner()
    cache = NodeCache(data, learner)
    c0 = cache.cost(2, [1, 0])
    c1 = cache.cost(2, (0, 1))
    assert c0 == c1
    assert learner.calls == 1
    assert cache.n_misses == 1 and cache.n_hits == 1
    cache.cost(2, [])
    assert learner.calls == 2


def test_node_cost_on_tom():
    data, _ = chain_data(n_rows=200)
    cache = NodeCache(data, CountingLearner())
    tom = TOM(3)
    tom.add_arc(0, 1)
    assert cache.get_mml_cost(tom.get_node(1)) == cache.cost(1, [0])
    assert tom.get_node(1).cost == cache.cost(1, [0])
    assert np.isfinite(cache.total_cost(tom))


def test_failures_are_infinite_and_reporting_is_capped():
    data, _ = chain_data(n_vars=6, n_rows=50)
    cache = NodeCache(data, CountingLearner(max_cells=2))
    with warnings.catch_warnings(record=True) as records:
        warnings.simplefilter("always")
        costs = [cache.cost(j, [p]) for j in range(6) for p in range(6) if p != j]
    assert all(np.isinf(c) for c in costs)
    assert cache.n_failures == 30
    assert len(records) == 11
    assert 'disabled' in str(records[-1].message)


def test_eviction():
    data, _ = chain_data(n_rows=50)
    cache = NodeCache(data, CountingLearner(), max_entries=2)
    for j in range(3):
        cache.cost(j, [])
    assert len(cache) == 2
