from typing import Optional, Any, Callable

import numpy as np

from src.causallatent.cl_types import CITestType, LatentInit
from src.causallatent.dag.tom import TOM
from src.causallatent.data.discrete_data import DiscreteData
from src.causallatent.latent.em import EM, make_augmented_data, root_structure, dependency_structure, \
    random_structure
from src.causallatent.latent.trigger import LatentDetect
from src.causallatent.scoring.cpt_learner import latent_cpt_learner, mml_cpt_learner
from src.causallatent.search.metropolis import MetropolisSearch
from src.causallatent.search.prior import StructurePrior

_SEARCH_ARGS = ["search_factor", "epochs_per_pair", "burn_in", "max_num_secs", "min_total_posterior", "arc_prob",
                "temperature", "max_num_parents", "lg", "vb"]


class EMIntegrator:
    data: DiscreteData
    latent_arity: int
    em_iterations: int
    convergence: float
    latent_init: LatentInit
    rng: np.random.Generator
    lg: Optional[Any]
    vb: int
    _info: Callable[[str, int], None]
    # state
    detector: LatentDetect
    em: EM

    def __init__(self, data: DiscreteData, **kwargs):
        r""" Structure search with one hidden variable: trigger detection, then alternating EM and Metropolis search
        on the augmented data. The hidden variable is retained only if it lowers the cost of the best fully observed
        model.

        :param data: discrete data over 4..7 variables

        :Keyword Arguments:
        * *alpha* (``float``) -- significance level of the CI tests
        * *error_rate* (``float``) -- tolerated fraction of mismatching fingerprint entries
        * *ci_type* (``CITestType``) -- CI test for trigger detection
        * *graph* (``nx.DiGraph``) -- true graph over the variable indices, for the d-separation oracle
        * *latent_arity* (``int``) -- number of hidden states
        * *em_iterations* (``int``) -- max number of EM + search iterations
        * *convergence* (``float``) -- relative cost change at which EM + search stops
        * *standard_em_iterations* (``int``) -- EM iterations on the initial structure if no trigger matched
        * *em_threshold* (``float``) -- relative log likelihood change at which standard EM stops
        * *latent_init* (``LatentInit``) -- initial structure if no trigger matched
        * *search_factor*, *epochs_per_pair*, *burn_in*, *max_num_secs*, *min_total_posterior*, *arc_prob*,
          *temperature*, *max_num_parents* -- passed to each MetropolisSearch
        * *rng* (``np.random.Generator``) -- random generator
        * *seed* (``int``) -- seed if no rng given
        * *lg* (``logging``) -- logger if verbosity>0
        * *vb* (``int``) -- verbosity level
        """
        self.defaultargs = {
            "alpha": 0.05,
            "error_rate": 0.005,
            "ci_type": CITestType.CHISQ,
            "graph": None,
            "latent_arity": 2,
            "em_iterations": 10,
            "convergence": 0.001,
            "standard_em_iterations": 100,
            "em_threshold": 1e-6,
            "latent_init": LatentInit.ROOT,
            "search_factor": 1.0,
            "epochs_per_pair": 500,
            "burn_in": 0.1,
            "max_num_secs": 30,
            "min_total_posterior": 0.999,
            "arc_prob": 0.5,
            "temperature": 1.0,
            "max_num_parents": None,
            "rng": None,
            "seed": None,
            "lg": None,
            "vb": 0}
        self.__dict__.update((k, v) for k, v in self.defaultargs.items() if k not in kwargs.keys())
        self.__dict__.update((k, v) for k, v in kwargs.items() if k in self.defaultargs.keys())

        def _info(st, strength=0):
            (self.lg.info(st) if self.lg is not None else print(st)) if self.vb + strength > 0 else None
        self._info = _info

        if self.em_iterations < 1:
            raise ValueError(f"em_iterations must be positive, got {self.em_iterations}")
        if self.latent_arity < 2:
            raise ValueError(f"latent_arity must be at least 2, got {self.latent_arity}")
        if self.max_num_parents is not None and self.max_num_parents < 2:
            raise ValueError(f"max_num_parents must be at least 2 for trigger structures, got {self.max_num_parents}")
        self.data = data
        self.rng = self.rng if self.rng is not None else np.random.default_rng(self.seed)
        self.detector = LatentDetect(data, alpha=self.alpha, error_rate=self.error_rate, ci_type=self.ci_type,
                                     graph=self.graph, lg=self.lg, vb=self.vb)

    def _search(self, data: DiscreteData, prior: StructurePrior, initial_tom: Optional[TOM]) -> MetropolisSearch:
        search = MetropolisSearch(data, mml_cpt_learner, prior, initial_tom, self.rng,
                                  **{k: self.__dict__[k] for k in _SEARCH_ARGS})
        search.run()
        return search

    def initial_structure(self) -> tuple[np.ndarray, StructurePrior]:
        """ Adjacency over [H, X_0, ..., X_n-1] to start from, and the structure prior.

        A matched trigger is fixed by the prior: every pair among H and the matched variables keeps its arc state.
        """
        n = self.data.n_vars
        if self.detector.is_matched:
            adj = self.detector.latent_matrix()
            fixed = [0] + [v + 1 for v in self.detector.matched_index]
            return adj, StructurePrior.from_adj_constraints(n + 1, adj, fixed, self.arc_prob)

        prior = StructurePrior(n + 1, self.arc_prob)
        if self.latent_init == LatentInit.DEPENDENCIES:
            return dependency_structure(self.detector.marginal, self.max_num_parents), prior
        if self.latent_init == LatentInit.RANDOM:
            return random_structure(n, self.rng, self.arc_prob, max_num_parents=self.max_num_parents), prior
        return root_structure(n), prior

    def latent_data_cost(self, tom: TOM, data: DiscreteData) -> float:
        """ data-fit cost of the hidden node, not part of the observed data's message """
        pa = list(tom.get_node(0).parents)
        return latent_cpt_learner.parameterize_and_cost(
            data.X[:, 0], data.X[:, pa], data.arity(0), [data.arity(p) for p in pa], data.weights)

    def run(self) -> dict:
        detected = self.detector.run()
        structure, prior = self.initial_structure()
        self._info(f'Latent search, initial structure: '
                   f'{"trigger" if detected["is_matched"] else self.latent_init.value}')

        aug = make_augmented_data(self.data, self.latent_arity, self.rng)
        self.em = EM(structure, aug, self.latent_arity, lg=self.lg, vb=self.vb)
        if not detected['is_matched']:
            self.em.run(self.standard_em_iterations, self.em_threshold)

        tom = TOM.from_adj(structure, self.max_num_parents, latent=(0,))
        old_cost = np.inf
        search, it = None, 0
        for it in range(self.em_iterations):
            if it > 0:
                self.em.e_step()
            search = self._search(self.em.data, prior, tom)
            new_cost = search.best_cost
            self._info(f'\tEM iteration {it}: cost {np.round(new_cost, 2)}')
            if abs(new_cost - old_cost) < abs(old_cost) * self.convergence or it == self.em_iterations - 1:
                break
            old_cost = new_cost
            tom = search.best_tom.copy()
            self.em.update_structure(tom)
            self.em.m_step()

        latent_tom = search.best_tom
        latent_cost = search.best_cost - self.latent_data_cost(latent_tom, self.em.data)
        latent_results = search.get_results()

        observed = self._search(self.data, StructurePrior(self.data.n_vars, self.arc_prob), None)
        retained = bool(latent_cost < observed.best_cost)
        self._info(f'Latent model cost {np.round(latent_cost, 2)}, observed model cost '
                   f'{np.round(observed.best_cost, 2)}: {"keep" if retained else "drop"} latent variable')

        observed_results = observed.get_results()
        return {
            'latent_retained': retained,
            'is_matched': detected['is_matched'],
            'mismatches': detected['mismatches'],
            'matched_index': detected['matched_index'],
            'latent_cost': latent_cost,
            'observed_cost': observed.best_cost,
            'n_iterations': it + 1,
            'latent_tom': latent_tom,
            'observed_tom': observed.best_tom,
            'best_parents': latent_tom.parents_map() if retained else observed.best_tom.parents_map(),
            'results': latent_results if retained else observed_results,
            'latent_results': latent_results,
            'observed_results': observed_results,
            'weights': self.em.weight_matrix(),
        }
