from __future__ import annotations
from typing import Optional, Any, Callable

import networkx as nx
import numpy as np
import pandas as pd

from src.causallatent.cl_types import CITestType, LatentInit
from src.causallatent.dag.tom import TOM
from src.causallatent.data.discrete_data import DiscreteData
from src.causallatent.latent.em_integrator import EMIntegrator
from src.causallatent.scoring.cpt_learner import mml_cpt_learner
from src.causallatent.search.metropolis import MetropolisSearch
from src.causallatent.search.prior import StructurePrior
from src.causallatent.util.eval import eval_graph


class CausalLatent:
    #external
    data: DiscreteData
    search_latent: bool
    prior_str: Optional[str]
    lg: Optional[Any]
    vb: int
    truths: dict[str, Any]

    #internal
    _info: Callable[[str, int], None]
    # results
    graph: nx.DiGraph
    best_tom: TOM
    best_cost: float
    results: list[dict]
    latent_retained: bool
    latent_res: dict
    fitted: bool

    def __init__(self, **kwargs):
        r""" CausalLatent: MML causal discovery for discrete data, optionally with one hidden common cause
        :param optargs: optional arguments

        :Keyword Arguments:
        * *search_latent* (``bool``) -- look for a hidden variable (needs 4..7 variables)
        * *prior_str* (``str``) -- expert arc probabilities, e.g. "arcs { A -> B 0.9; }"
        * *truths* (``dict``) -- oracle versions for evaluation, w entry 'true_g' (``nx.DiGraph`` over names)
        * *alpha* (``float``) -- significance level of the CI tests
        * *error_rate* (``float``) -- tolerated fraction of mismatching trigger fingerprint entries
        * *ci_type* (``CITestType``) -- CI test for trigger detection
        * *latent_arity* (``int``) -- number of hidden states
        * *em_iterations* (``int``) -- max EM + search iterations
        * *latent_init* (``LatentInit``) -- initial hidden structure if no trigger matched
        * *search_factor* (``float``) -- scales the search length
        * *max_num_secs* (``int``) -- max number of result classes
        * *min_total_posterior* (``float``) -- posterior mass of the result classes
        * *arc_prob* (``float``) -- prior arc probability
        * *temperature* (``float``) -- Metropolis temperature
        * *max_num_parents* (``int``) -- max parents per node
        * *seed* (``int``) -- random seed
        * *lg* (``logging``) -- logger if verbosity>0
        * *vb* (``int``) -- verbosity level
        """
        self.defaultargs = {
            "search_latent": False,
            "prior_str": None,
            "truths": dict(),
            "alpha": 0.05,
            "error_rate": 0.005,
            "ci_type": CITestType.CHISQ,
            "latent_arity": 2,
            "em_iterations": 10,
            "latent_init": LatentInit.ROOT,
            "search_factor": 1.0,
            "max_num_secs": 30,
            "min_total_posterior": 0.999,
            "arc_prob": 0.5,
            "temperature": 1.0,
            "max_num_parents": None,
            "seed": 0,
            "lg": None,
            "vb": 0}

        self.__dict__.update((k, v) for k, v in self.defaultargs.items() if k not in kwargs.keys())
        self.__dict__.update((k, v) for k, v in kwargs.items() if k in self.defaultargs.keys())
        assert not (self.search_latent and self.prior_str is not None), "expert priors only for the observed search"

        def _info(st, strength=0):
            (self.lg.info(st) if self.lg is not None else print(st)) if self.vb + strength > 0 else None
        self._info = _info
        self.rng = np.random.default_rng(self.seed)
        self.latent_retained = False
        self.latent_res = {}
        self.fitted = False

    def _search_args(self):
        return dict(search_factor=self.search_factor, max_num_secs=self.max_num_secs,
                    min_total_posterior=self.min_total_posterior, arc_prob=self.arc_prob,
                    temperature=self.temperature, max_num_parents=self.max_num_parents, lg=self.lg, vb=self.vb)

    def fit(self, X: pd.DataFrame | np.ndarray | DiscreteData) -> CausalLatent:
        self.data = X if isinstance(X, DiscreteData) else DiscreteData.from_frame(X) if isinstance(X, pd.DataFrame) \
            else DiscreteData.from_array(X)
        names = self.data.names
        self._info(f'Fitting {self.data.n_vars} variables, {self.data.n_rows} rows, latent search: {self.search_latent}')

        if self.search_latent:
            integrator = EMIntegrator(
                self.data, alpha=self.alpha, error_rate=self.error_rate, ci_type=self.ci_type,
                latent_arity=self.latent_arity, em_iterations=self.em_iterations, latent_init=self.latent_init,
                rng=self.rng, **self._search_args())
            self.latent_res = integrator.run()
            self.latent_retained = self.latent_res['latent_retained']
            self.results = self.latent_res['results']
            if self.latent_retained:
                self.best_tom = self.latent_res['latent_tom']
                self.best_cost = self.latent_res['latent_cost']
                names = integrator.em.data.names
            else:
                self.best_tom = self.latent_res['observed_tom']
                self.best_cost = self.latent_res['observed_cost']
        else:
            prior = None if self.prior_str is None else \
                StructurePrior.from_string(self.prior_str, names, self.arc_prob)
            search = MetropolisSearch(self.data, mml_cpt_learner, prior, None, self.rng, **self._search_args())
            self.results = search.run()
            self.best_tom, self.best_cost = search.best_tom, search.best_cost

        self.graph = self.best_tom.to_networkx(names)
        self.fitted = True
        self._info_graph()
        return self

    def _info_graph(self):
        self._info(f'Result: {sorted(self.graph.edges)}, cost {np.round(self.best_cost, 2)}')
        if 'true_g' not in self.truths: return
        nodes = list(self.data.names)
        G_obs = self.graph.subgraph(nodes)
        A_estim = nx.to_numpy_array(G_obs, nodelist=nodes)
        A_true = nx.to_numpy_array(self.truths['true_g'], nodelist=nodes)
        for k, v in eval_graph(A_true, A_estim).items():
            self._info(f'\t{k}: {v if isinstance(v, bool) else np.round(v, 2)}')
