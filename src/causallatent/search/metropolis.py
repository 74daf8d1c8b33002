from __future__ import annotations

from typing import Optional, Any, Callable

import numpy as np

from src.causallatent.cl_types import MoveType
from src.causallatent.dag.tom import TOM
from src.causallatent.data.discrete_data import DiscreteData
from src.causallatent.scoring.cpt_learner import ModelLearner, mml_cpt_learner
from src.causallatent.search.context import SearchContext
from src.causallatent.search.moves import MOVES, TOMTransformation
from src.causallatent.search.prior import StructurePrior
from src.causallatent.util.util import mec_key


class _Collector:
    """ Groups sampled TOMs into classes and accumulates the sampled weight per class """

    def __init__(self):
        self.classes = {}
        self.total = 0.0

    def _key(self, tom: TOM):
        raise NotImplementedError

    def add(self, tom: TOM, cost: float, weight: float = 1.0):
        key = self._key(tom)
        self.total += weight
        entry = self.classes.get(key, None)
        if entry is None:
            self.classes[key] = entry = {'weight': 0.0, 'cost': np.inf, 'adj': None, 'parents': None, 'dags': set()}
        entry['weight'] += weight
        entry['dags'].add(tom.key())
        if cost < entry['cost']:
            entry['cost'] = cost
            entry['adj'] = tom.get_adj()
            entry['parents'] = tom.parents_map()

    def results(self, max_num_secs: int, min_total_posterior: float) -> list[dict]:
        """ classes by decreasing posterior, truncated to max_num_secs classes or to the shortest prefix whose
        posterior mass reaches min_total_posterior """
        ranked = sorted(self.classes.values(), key=lambda e: -e['weight'])
        res, mass = [], 0.0
        for entry in ranked[:max_num_secs]:
            posterior = entry['weight'] / self.total
            res.append({'posterior': posterior, 'cost': entry['cost'], 'weight': entry['weight'],
                        'adj': entry['adj'], 'parents': entry['parents'], 'n_dags': len(entry['dags'])})
            mass += posterior
            if mass >= min_total_posterior: break
        return res


class MECCollector(_Collector):
    """ Markov equivalence classes (skeleton + v-structures) """

    def _key(self, tom):
        return mec_key(tom.adj)


class DAGCollector(_Collector):
    def _key(self, tom):
        return tom.key()


class MetropolisSearch:
    data: DiscreteData
    learner: ModelLearner
    prior: StructurePrior
    ctx: SearchContext
    tom: TOM
    best_tom: TOM
    current_cost: float
    best_cost: float
    moves: list[TOMTransformation]
    move_probs: np.ndarray
    epoch: int
    n_epochs: int
    n_burn_in: int
    lg: Optional[Any]
    vb: int
    _info: Callable[[str, int], None]

    def __init__(self, data: DiscreteData, learner: ModelLearner = mml_cpt_learner,
                 prior: Optional[StructurePrior] = None, initial_tom: Optional[TOM] = None,
                 rng: Optional[np.random.Generator] = None, collector: Optional[_Collector] = None, **kwargs):
        r""" Metropolis sampling of TOMs under MML costs.

        :param data: discrete data, possibly weighted
        :param learner: model learner for node costs
        :param prior: structure prior, uniform with arc_prob if None
        :param initial_tom: start state (copied), random order without arcs if None
        :param rng: random generator, the only source of randomness
        :param collector: groups samples into result classes, Markov equivalence classes if None

        :Keyword Arguments:
        * *search_factor* (``float``) -- scales the number of epochs
        * *epochs_per_pair* (``int``) -- epochs per pair of variables at search_factor 1
        * *burn_in* (``float``) -- fraction of epochs discarded before sampling
        * *max_num_secs* (``int``) -- max number of result classes
        * *min_total_posterior* (``float``) -- result classes kept until their posterior mass reaches this
        * *arc_prob* (``float``) -- prior arc probability if no prior given
        * *temperature* (``float``) -- Metropolis temperature
        * *max_num_parents* (``int``) -- max parents per node, unbounded if None
        * *safe_cap* (``float``) -- cost above the best cost at which only improving moves are accepted
        * *move_weights* (``dict``) -- proposal weights per MoveType value
        * *update_arc_weights* (``bool``) -- track arc posteriors
        * *seed* (``int``) -- seed if no rng given
        * *lg* (``logging``) -- logger if verbosity>0
        * *vb* (``int``) -- verbosity level
        """
        self.defaultargs = {
            "search_factor": 1.0,
            "epochs_per_pair": 500,
            "burn_in": 0.1,
            "max_num_secs": 30,
            "min_total_posterior": 0.999,
            "arc_prob": 0.5,
            "temperature": 1.0,
            "max_num_parents": None,
            "safe_cap": 40.0,
            "move_weights": {
                MoveType.SKELETAL.value: 0.35,
                MoveType.TEMPORAL.value: 0.35,
                MoveType.DOUBLE_SKELETAL.value: 0.15,
                MoveType.PARENT_SWAP.value: 0.15},
            "update_arc_weights": False,
            "seed": None,
            "lg": None,
            "vb": 0}

        self.__dict__.update((k, v) for k, v in self.defaultargs.items() if k not in kwargs.keys())
        self.__dict__.update((k, v) for k, v in kwargs.items() if k in self.defaultargs.keys())

        def _info(st, strength=0):
            (self.lg.info(st) if self.lg is not None else print(st)) if self.vb + strength > 0 else None
        self._info = _info

        n = data.n_vars
        self.data = data
        self.learner = learner
        self.rng = rng if rng is not None else np.random.default_rng(self.seed)
        self.prior = prior if prior is not None else StructurePrior(n, self.arc_prob)
        assert self.prior.n == n, f"prior over {self.prior.n} variables for data with {n} variables"
        self.ctx = SearchContext(
            data, learner, self.prior, self.rng, temperature=self.temperature, search_factor=self.search_factor,
            max_num_secs=self.max_num_secs, min_total_posterior=self.min_total_posterior,
            max_num_parents=self.max_num_parents, safe_cap=self.safe_cap,
            update_arc_weights=self.update_arc_weights, lg=self.lg, vb=self.vb)
        self.collector = collector if collector is not None else MECCollector()

        if initial_tom is not None:
            assert initial_tom.n == n
            self.tom = initial_tom.copy()
        else:
            self.tom = TOM(n, self.ctx.max_num_parents)
            self.tom.random_order(self.rng)

        self.moves, weights = [], []
        for move_type, w in self.move_weights.items():
            if w <= 0: continue
            self.moves.append(MOVES[move_type](self.ctx))
            weights.append(w)
        assert len(self.moves) > 0, "no moves with positive weight"
        self.move_probs = np.asarray(weights) / np.sum(weights)

        self.current_cost = self.full_cost(self.tom)
        self.best_cost = self.current_cost
        self.best_tom = self.tom.copy()
        self.epoch = 0
        n_pairs = n * (n - 1) / 2
        self.n_epochs = max(1, int(self.ctx.search_factor * self.epochs_per_pair * n_pairs))
        self.n_burn_in = int(self.burn_in * self.n_epochs)

    def full_cost(self, tom: TOM) -> float:
        return self.ctx.node_cache.total_cost(tom) + self.prior.cost(tom)

    def do_epoch(self) -> bool:
        """ One Metropolis step: a random move proposal, accepted or rejected in place. """
        move = self.moves[int(self.rng.choice(len(self.moves), p=self.move_probs))]
        accepted = move.propose(self.tom)
        if accepted:
            self.current_cost += move.last_delta
            if not np.isfinite(self.current_cost):
                self.current_cost = self.full_cost(self.tom)
        if self.current_cost < self.best_cost:
            self.best_cost = self.current_cost
            self.best_tom = self.tom.copy()
        self.ctx.safe_mode = bool(np.isfinite(self.best_cost)) and self.current_cost >= self.best_cost + self.ctx.safe_cap

        self.epoch += 1
        if self.epoch > self.n_burn_in:
            self.ctx.total_weight += 1.0
            self.collector.add(self.tom, self.current_cost)
        return accepted

    def is_finished(self) -> bool:
        return self.epoch >= self.n_burn_in + self.n_epochs

    def run(self) -> list[dict]:
        self._info(f'Metropolis search over {self.data.n_vars} variables: '
                   f'{self.n_burn_in} burn-in + {self.n_epochs} epochs')
        while not self.is_finished():
            self.do_epoch()
        # the exact cost avoids drift from summing deltas
        self.best_cost = self.full_cost(self.best_tom)
        for mv in self.moves:
            self._info(f'\t{mv.move_type.value}: accepted {mv.n_accepted}/{mv.n_proposed}')
        self._info(f'\tbest cost {np.round(self.best_cost, 2)}, '
                   f'{len(self.collector.classes)} classes, {self.ctx.node_cache.n_misses} node costs')
        return self.get_results()

    def get_results(self) -> list[dict]:
        return self.collector.results(self.ctx.max_num_secs, self.ctx.min_total_posterior)

    def get_arc_posteriors(self) -> np.ndarray:
        return self.ctx.arc_posteriors(self.tom)
