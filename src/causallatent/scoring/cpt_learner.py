from abc import ABC, abstractmethod

import numpy as np
from scipy.special import gammaln

from src.causallatent.cl_types import LearnerType, XArray

# per-configuration MML correction, 0.5 * log(pi * e / 6)
MML_CORRECTION = 0.5 * np.log(np.pi * np.e / 6)


class LearnerError(Exception):
    """ a model could not be fitted for a (child, parent set) pair """


class ModelLearner(ABC):
    """ Fits a conditional model of x given z and scores it as a message length (nats). """
    name: str

    @abstractmethod
    def parameterize(self, x, z, x_arity: int, z_arities, w=None) -> tuple[str, XArray, XArray]:
        """
        :param x: child states (n,)
        :param z: parent states (n, k), k may be 0
        :param x_arity: number of child states
        :param z_arities: number of states per parent
        :param w: row weights, ones if None
        :return: model, sufficient stats, params
        """
        raise NotImplementedError

    @abstractmethod
    def s_cost(self, model, stats: XArray, params: XArray) -> float:
        raise NotImplementedError

    def cost(self, model, x, z, x_arity, z_arities, w=None) -> float:
        _, stats, params = self.parameterize(x, z, x_arity, z_arities, w)
        return self.s_cost(model, stats, params)

    def parameterize_and_cost(self, x, z, x_arity, z_arities, w=None) -> float:
        model, stats, params = self.parameterize(x, z, x_arity, z_arities, w)
        return self.s_cost(model, stats, params)


class CPTLearner(ModelLearner):
    """ Conditional probability table, one multinomial per parent configuration.

    Costs:
    * ML: negative log likelihood at the maximum likelihood estimate
    * MML: adaptive (Dirichlet(1)) code of the child states per configuration plus the MML correction
    * LATENT: adaptive code without the correction
    """

    def __init__(self, learner_type: LearnerType = LearnerType.MML, bias: float = 0.5, max_cells: int = 2 ** 20):
        self.learner_type = learner_type
        self.bias = bias
        self.max_cells = max_cells
        self.name = f'cpt_{learner_type.value}'

    def _check_size(self, n_cfg, m):
        if n_cfg * m > self.max_cells:
            raise LearnerError(f"CPT with {n_cfg} parent configurations x {m} states exceeds {self.max_cells} cells")

    def _params(self, stats):
        m = stats.shape[1]
        totals = stats.sum(axis=1, keepdims=True)
        return (stats + self.bias) / (totals + m * self.bias)

    def parameterize(self, x, z, x_arity, z_arities, w=None):
        x = np.asarray(x, dtype=np.int64)
        z = np.asarray(z, dtype=np.int64).reshape(len(x), -1)
        w = np.ones(len(x)) if w is None else np.asarray(w, dtype=float)
        dims = tuple(int(a) for a in z_arities)
        n_cfg = int(np.prod(dims)) if len(dims) else 1
        self._check_size(n_cfg, x_arity)

        cfg = np.ravel_multi_index(tuple(z[:, i] for i in range(z.shape[1])), dims) if len(dims) \
            else np.zeros(len(x), dtype=np.int64)
        stats = np.bincount(cfg * x_arity + x, weights=w, minlength=n_cfg * x_arity).reshape(n_cfg, x_arity)
        return self.name, stats, self._params(stats)

    def s_cost(self, model, stats, params) -> float:
        stats = np.asarray(stats, dtype=float)
        m = stats.shape[1]
        if self.learner_type == LearnerType.ML:
            totals = stats.sum(axis=1, keepdims=True)
            nz = stats > 0
            return float(-np.sum(stats[nz] * np.log((stats / np.where(totals > 0, totals, 1))[nz])))

        totals = stats.sum(axis=1)
        cost = -np.sum(gammaln(stats + 1)) + np.sum(gammaln(totals + m)) - len(totals) * gammaln(m)
        if self.learner_type == LearnerType.MML:
            cost += len(totals) * (m - 1) * MML_CORRECTION
        return float(cost)


ml_cpt_learner = CPTLearner(LearnerType.ML)
mml_cpt_learner = CPTLearner(LearnerType.MML)
latent_cpt_learner = CPTLearner(LearnerType.LATENT)
