from typing import Optional, Any

import numpy as np

from src.causallatent.dag.node_cache import NodeCache
from src.causallatent.data.discrete_data import DiscreteData
from src.causallatent.scoring.cpt_learner import ModelLearner
from src.causallatent.search.prior import StructurePrior


class SearchContext:
    """ State shared by the moves and the sampler loop of one search run. The current arc probability is
    prior.arc_prob, the sampler reads its length budget and result truncation from here. """
    data: DiscreteData
    learner: ModelLearner
    node_cache: NodeCache
    prior: StructurePrior
    rng: np.random.Generator
    temperature: float
    search_factor: float
    max_num_secs: int
    min_total_posterior: float
    max_num_parents: int
    safe_mode: bool
    safe_cap: float
    update_arc_weights: bool
    arc_weights: np.ndarray
    total_weight: float
    lg: Optional[Any]
    vb: int

    def __init__(self, data: DiscreteData, learner: ModelLearner, prior: StructurePrior, rng: np.random.Generator,
                 **kwargs):
        self.learner = learner
        self.prior = prior
        self.rng = rng
        self.temperature = kwargs.get("temperature", 1.0)
        self.search_factor = kwargs.get("search_factor", 1.0)
        self.max_num_secs = kwargs.get("max_num_secs", 30)
        self.min_total_posterior = kwargs.get("min_total_posterior", 0.999)
        self.safe_cap = kwargs.get("safe_cap", 40.0)
        self.update_arc_weights = kwargs.get("update_arc_weights", False)
        self.lg = kwargs.get("lg", None)
        self.vb = kwargs.get("vb", 0)
        max_num_parents = kwargs.get("max_num_parents", None)
        self.max_num_parents = max(data.n_vars - 1, 0) if max_num_parents is None else max_num_parents
        self.cache_entries = kwargs.get("cache_entries", None)
        assert self.temperature > 0
        self.safe_mode = False
        self.set_data(data)

    def set_data(self, data: DiscreteData):
        """ new data invalidates all node costs and accumulated arc weights """
        self.data = data
        self.node_cache = NodeCache(data, self.learner, max_entries=self.cache_entries, lg=self.lg, vb=self.vb)
        self.arc_weights = np.zeros((data.n_vars, data.n_vars))
        self.total_weight = 0.0

    def record_arc_change(self, pa: int, ch: int, added: bool):
        """ Lazy arc posterior accumulation: while pa->ch is present arc_weights[ch][pa] carries -(weight when it
        appeared), on removal the current weight is added back. """
        if not self.update_arc_weights: return
        self.arc_weights[ch][pa] += -self.total_weight if added else self.total_weight

    def arc_posteriors(self, tom) -> np.ndarray:
        """ :return: P[pa][ch], fraction of the sampled weight in which pa->ch was present """
        w = self.arc_weights.copy()
        for nd in tom.nodes:
            for pa in nd.parents:
                w[nd.var][pa] += self.total_weight
        return np.zeros_like(w).T if self.total_weight == 0 else (w / self.total_weight).T
