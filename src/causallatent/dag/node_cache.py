import warnings
from collections import OrderedDict
from typing import Optional

import numpy as np

from src.causallatent.dag.tom import Node
from src.causallatent.data.discrete_data import DiscreteData
from src.causallatent.scoring.cpt_learner import ModelLearner, LearnerError


class NodeCache:

    def __init__(self, data: DiscreteData, learner: ModelLearner, max_entries: Optional[int] = None,
                 max_warnings: int = 10, **optargs):
        """ Memoized node costs cost(Xj | Xpa) under one learner and one dataset.

        The cost of a (node, parent set) pair is fixed for the lifetime of the cache, entries are never invalidated,
        only evicted (least recently used first) if max_entries is set.

        :param data: discrete data, possibly weighted
        :param learner: model learner scoring each family
        :param max_entries: cache capacity, unbounded if None
        :param max_warnings: number of fit failures reported before reporting is disabled
        """
        self.data = data
        self.learner = learner
        self.max_entries = max_entries
        self.max_warnings = max_warnings
        self.lg = optargs.get("lg", None)
        self.vb = optargs.get("vb", 0)
        self._info = lambda st: (self.lg.info(st) if self.lg is not None else print(st)) if self.vb > 0 else None

        # Memoized info
        self.score_cache = OrderedDict()
        self.n_hits = 0
        self.n_misses = 0
        self.n_failures = 0

    def cost(self, j: int, pa) -> float:
        """
        Evaluates the cost of a causal relationship pa(Xj)->Xj.

        :param j: Xj
        :param pa: pa(Xj), any iterable
        :return: cost in nats, inf if the model could not be fitted
        """
        pa = tuple(sorted(int(p) for p in pa))
        hash_key = f'j_{str(j)}_pa_{str(pa)}'

        if hash_key in self.score_cache:
            self.n_hits += 1
            self.score_cache.move_to_end(hash_key)
            return self.score_cache[hash_key]

        self.n_misses += 1
        try:
            score = self.learner.parameterize_and_cost(
                self.data.X[:, j], self.data.X[:, list(pa)], self.data.arity(j),
                [self.data.arity(p) for p in pa], self.data.weights)
        except LearnerError as e:
            score = np.inf
            self._warn_failure(j, pa, e)

        self.score_cache[hash_key] = score
        if self.max_entries is not None and len(self.score_cache) > self.max_entries:
            self.score_cache.popitem(last=False)
        return score

    def get_mml_cost(self, node: Node) -> float:
        """ cost of a TOM node given its current parents, stored on the node """
        node.cost = self.cost(node.var, node.parents)
        return node.cost

    def total_cost(self, tom) -> float:
        return float(sum(self.get_mml_cost(nd) for nd in tom.nodes))

    def _warn_failure(self, j, pa, e):
        self.n_failures += 1
        if self.n_failures > self.max_warnings + 1:
            return
        msg = f'Node cost failed for {j}|{list(pa)}: {e}' if self.n_failures <= self.max_warnings \
            else 'Too many node cost warnings, reporting disabled'
        if self.lg is not None:
            self.lg.warning(msg)
        else:
            warnings.warn(msg, RuntimeWarning)

    def __len__(self):
        return len(self.score_cache)
