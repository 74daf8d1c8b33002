from typing import Optional, Any, Callable

import numpy as np
from scipy.special import logsumexp

from src.causallatent.dag.tom import TOM
from src.causallatent.data.discrete_data import DiscreteData
from src.causallatent.scoring.cpt_learner import CPTLearner, mml_cpt_learner
from src.causallatent.util.util import parents_of

LATENT_NAME = 'H'


def make_augmented_data(data: DiscreteData, latent_arity: int, rng: np.random.Generator) -> DiscreteData:
    """ Adds a hidden column at index 0 and repeats every row once per hidden state (row h*n + r for state h of
    row r), weighted by random initial responsibilities.

    Identical observed rows share their initial responsibilities. Responsibilities of one original row sum to its
    weight, 1 for unweighted data. The input is not modified.
    """
    assert latent_arity >= 2
    n = data.n_rows
    X = np.zeros((latent_arity * n, data.n_vars + 1), dtype=np.int64)
    for h in range(latent_arity):
        X[h * n:(h + 1) * n, 0] = h
        X[h * n:(h + 1) * n, 1:] = data.X

    uniq, _, inverse = data.weighted_summary()
    resp = rng.random((len(uniq), latent_arity))
    resp /= resp.sum(axis=1, keepdims=True)
    weights = (resp[inverse] * data.weights[:, None]).T.reshape(-1)

    name = LATENT_NAME
    while name in data.names:
        name = '_' + name
    return DiscreteData(X, names=[name] + data.names, states=[[str(h) for h in range(latent_arity)]] + data.states,
                        arities=[latent_arity] + list(data.arities), weights=weights)


# %% Initial structures over [H, X_0, ..., X_n-1]
def root_structure(n_observed: int) -> np.ndarray:
    """ the hidden node is a parent of every observed node """
    adj = np.zeros((n_observed + 1, n_observed + 1), dtype=np.int8)
    adj[0, 1:] = 1
    return adj


def dependency_structure(marginal, max_num_parents: Optional[int] = None) -> np.ndarray:
    """ Like root_structure, but both variables of a marginally independent pair become parents of the hidden node
    (a collider at H keeps them independent). Beyond max_num_parents, the later variables stay children of H. """
    marginal = np.asarray(marginal)
    n = len(marginal)
    adj = root_structure(n)
    for a in range(n):
        for b in range(a + 1, n):
            if marginal[a][b] == 0:
                for v in (a, b):
                    adj[0][v + 1] = 0
                    adj[v + 1][0] = 1
    if max_num_parents is not None:
        for v in np.nonzero(adj[:, 0])[0][max_num_parents:]:
            adj[v][0] = 0
            adj[0][v] = 1
    return adj


def random_structure(n_observed: int, rng: np.random.Generator, arc_prob: float = 0.5,
                     max_tries: int = 1000, max_num_parents: Optional[int] = None) -> np.ndarray:
    """ random DAG in which the hidden node has more than one parent or more than one child, with at most
    max_num_parents parents per node """
    for _ in range(max_tries):
        tom = TOM(n_observed + 1, max_num_parents)
        tom.random_order(rng)
        tom.random_arcs(rng, arc_prob)
        adj = tom.get_adj()
        if adj[:, 0].sum() > 1 or adj[0, :].sum() > 1:
            return adj
    return root_structure(n_observed)


class EM:
    adj: np.ndarray
    data: DiscreteData
    latent_arity: int
    n_rows: int
    cpts: dict[int, tuple[list[int], np.ndarray]]

    def __init__(self, structure, aug_data: DiscreteData, latent_arity: int,
                 learner: CPTLearner = mml_cpt_learner, **optargs):
        """ Expectation maximization for the CPTs of a DAG with one hidden node (column 0) on augmented data.

        :param structure: adjacency or TOM over [H, X_0, ..., X_n-1]
        :param aug_data: augmented data, see make_augmented_data
        :param latent_arity: number of hidden states
        :param learner: provides the CPT estimates
        """
        assert aug_data.n_rows % latent_arity == 0
        self.data = aug_data
        self.latent_arity = latent_arity
        self.n_rows = aug_data.n_rows // latent_arity
        self.learner = learner
        self.row_weights = aug_data.weights.reshape(latent_arity, self.n_rows).sum(axis=0)
        self.cpts = {}
        self.update_structure(structure)
        self.lg = optargs.get("lg", None)
        self.vb = optargs.get("vb", 0)
        self._info = lambda st: (self.lg.info(st) if self.lg is not None else print(st)) if self.vb > 0 else None

    def update_structure(self, structure):
        self.adj = structure.get_adj() if isinstance(structure, TOM) else np.asarray(structure).copy()
        assert self.adj.shape == (self.data.n_vars, self.data.n_vars)

    def m_step(self):
        """ CPTs from the weighted counts of the augmented data """
        X, w = self.data.X, self.data.weights
        for v in range(self.data.n_vars):
            pa = parents_of(self.adj, v)
            _, _, params = self.learner.parameterize(
                X[:, v], X[:, pa], self.data.arity(v), [self.data.arity(p) for p in pa], w)
            self.cpts[v] = (pa, params)

    def _log_joint(self) -> np.ndarray:
        """ log P(h, x_r) per augmented row, shape (latent_arity, n_rows) """
        logp = np.zeros(self.data.n_rows)
        for v, (pa, params) in self.cpts.items():
            cfg, _ = self.data.configs(pa)
            logp += np.log(params[cfg, self.data.X[:, v]])
        return logp.reshape(self.latent_arity, self.n_rows)

    def e_step(self):
        """ responsibilities P(h | x_r) under the current CPTs """
        assert len(self.cpts), "m_step before e_step"
        L = self._log_joint()
        post = np.exp(L - logsumexp(L, axis=0, keepdims=True))
        self.data = self.data.with_weights((post * self.row_weights[None, :]).reshape(-1))

    def log_likelihood(self) -> float:
        return float(np.sum(self.row_weights * logsumexp(self._log_joint(), axis=0)))

    def run(self, n_iter: int = 100, threshold: float = 1e-6) -> float:
        """ Standard EM on the fixed structure until the relative log likelihood change drops below threshold.

        :return: final log likelihood
        """
        self.m_step()
        ll_old = -np.inf
        ll = ll_old
        for it in range(n_iter):
            self.e_step()
            self.m_step()
            ll = self.log_likelihood()
            if abs(ll - ll_old) < threshold * abs(ll):
                break
            ll_old = ll
        self._info(f'\tEM on fixed structure: log likelihood {np.round(ll, 2)}')
        return ll

    def row_weight_sums(self) -> np.ndarray:
        return self.data.weights.reshape(self.latent_arity, self.n_rows).sum(axis=0)

    def weight_matrix(self) -> np.ndarray:
        """ responsibilities, one row per original row, one column per hidden state """
        return self.data.weights.reshape(self.latent_arity, self.n_rows).T / self.row_weights[:, None]
