from __future__ import annotations

import itertools
from typing import Optional, Any, Callable

import numpy as np

from src.causallatent.cl_types import CITestType
from src.causallatent.data.discrete_data import DiscreteData
from src.causallatent.latent.dependency import DependencyExtractor, fingerprint_from_oracle
from src.causallatent.scoring.ci_tests import CITest, DSeparationTest, make_ci_test
from src.causallatent.util.util import adj_to_networkx

""" Trigger structures: small DAGs with one hidden node whose observed dependency pattern cannot be produced by any
DAG over the observed nodes alone. Index 0 is the hidden node. """


def _from_arcs(arcs, n=5):
    A = np.zeros((n, n), dtype=np.int8)
    for i, j in arcs:
        A[i][j] = 1
    return A


TRIGGER_1 = _from_arcs([(0, 3), (0, 4), (1, 2), (1, 4), (2, 3)])
TRIGGER_2 = _from_arcs([(0, 3), (0, 4), (1, 4), (2, 3)])

SEPARATOR = '*' * 15


def default_triggers() -> list[np.ndarray]:
    return [TRIGGER_1.copy(), TRIGGER_2.copy()]


# %% IO
def write_triggers(path, matrices):
    """ one line of 0/1 digits per row, each matrix followed by a separator line """
    with open(path, 'w') as f:
        for M in matrices:
            for row in np.asarray(M):
                f.write(''.join(str(int(x)) for x in row) + '\n')
            f.write(SEPARATOR + '\n')


def read_triggers(path, n_vars: int = 5) -> list[np.ndarray]:
    matrices, rows = [], []
    with open(path) as f:
        for ln, line in enumerate(f, 1):
            line = line.strip()
            if not line: continue
            if set(line) == {'*'}:
                if len(rows) != n_vars:
                    raise ValueError(f"line {ln}: expected {n_vars} rows before separator, got {len(rows)}")
                matrices.append(np.asarray(rows, dtype=np.int8))
                rows = []
                continue
            if len(line) != n_vars or not set(line) <= {'0', '1'}:
                raise ValueError(f"line {ln}: expected {n_vars} binary digits, got {line!r}")
            rows.append([int(c) for c in line])
    if rows:
        raise ValueError("trailing rows without separator")
    return matrices


# %% Fingerprints
def label_permutations(trigger, hidden: int = 0) -> list[np.ndarray]:
    """ all distinct relabelings of the observed nodes of a trigger, the hidden node keeps its index """
    trigger = np.asarray(trigger)
    n = len(trigger)
    observed = [v for v in range(n) if v != hidden]
    perms, seen = [], set()
    for perm in itertools.permutations(observed):
        relabel = dict(zip(observed, perm))
        relabel[hidden] = hidden
        P = np.zeros_like(trigger)
        for i, j in zip(*np.nonzero(trigger)):
            P[relabel[int(i)]][relabel[int(j)]] = 1
        if P.tobytes() in seen: continue
        seen.add(P.tobytes())
        perms.append(P)
    return perms


def dseparation_fingerprint(adj, hidden: int = 0) -> list[np.ndarray]:
    """ dependency fingerprint of the observed nodes implied by a DAG, the hidden node is never conditioned on """
    observed = [v for v in range(len(adj)) if v != hidden]
    test = DSeparationTest(adj_to_networkx(adj), observed)
    return fingerprint_from_oracle(test.is_dependent, len(observed))


def project_hidden(adj, hidden: int = 0) -> np.ndarray:
    """ adjacency over the observed nodes only """
    keep = [v for v in range(len(adj)) if v != hidden]
    return np.asarray(adj)[np.ix_(keep, keep)]


def count_mismatches(fp_a, fp_b) -> int:
    assert len(fp_a) == len(fp_b)
    return int(sum(np.sum(np.asarray(a) != np.asarray(b)) for a, b in zip(fp_a, fp_b)))


def latent_matrix(structure, matched_index, n_observed: int) -> np.ndarray:
    """ Embeds a matched trigger into the (n_observed+1)^2 adjacency over [H, X_0, ..., X_n-1].

    :param structure: trigger adjacency, hidden at 0, observed node m corresponds to variable matched_index[m-1]
    :param matched_index: observed variables of the trigger
    :param n_observed: number of observed variables
    """
    target = [0] + [int(v) + 1 for v in matched_index]
    L = np.zeros((n_observed + 1, n_observed + 1), dtype=np.int8)
    for i, j in zip(*np.nonzero(structure)):
        L[target[i]][target[j]] = 1
    return L


class TriggerMatcher:
    """ Matches an observed fingerprint against all relabelings of the known triggers. """

    def __init__(self, triggers=None, error_rate: float = 0.005):
        self.triggers = default_triggers() if triggers is None else [np.asarray(t) for t in triggers]
        self.error_rate = error_rate
        self._signatures = None

    @property
    def signatures(self) -> list[tuple[int, np.ndarray, list[np.ndarray]]]:
        """ (trigger index, relabeled structure, fingerprint), in trigger then permutation order """
        if self._signatures is None:
            self._signatures = [(t_ix, P, dseparation_fingerprint(P))
                                for t_ix, T in enumerate(self.triggers) for P in label_permutations(T)]
        return self._signatures

    def match(self, fingerprint: list[np.ndarray], trigger_index: Optional[int] = None) -> dict:
        """
        :param fingerprint: observed dependency matrices, k x k each
        :param trigger_index: restrict matching to one trigger
        :return: dict with is_matched, mismatches, total_entries, trigger_index, structure, observed_structure
        """
        k = len(fingerprint[0])
        best = {'mismatches': np.inf, 'trigger_index': None, 'structure': None}
        for t_ix, P, fp in self.signatures:
            if trigger_index is not None and t_ix != trigger_index: continue
            if len(fp) != len(fingerprint) or len(fp[0]) != k: continue
            m = count_mismatches(fingerprint, fp)
            if m < best['mismatches']:
                best = {'mismatches': m, 'trigger_index': t_ix, 'structure': P}
        total = k * k * len(fingerprint)
        best['total_entries'] = total
        best['is_matched'] = bool(best['mismatches'] < total * self.error_rate)
        best['observed_structure'] = None if best['structure'] is None else project_hidden(best['structure'])
        return best


class LatentDetect:
    data: DiscreteData
    alpha: float
    error_rate: float
    ci_type: CITestType
    sub_net_size: int
    min_nodes: int
    max_nodes: int
    lg: Optional[Any]
    vb: int
    _info: Callable[[str, int], None]
    # results
    is_matched: bool
    match_result: dict
    matched_index: list[int]
    remaining_index: list[int]
    marginal: Optional[np.ndarray]

    def __init__(self, data: DiscreteData, **kwargs):
        r""" Scans subsets of the observed variables for a trigger dependency pattern.

        :param data: discrete data

        :Keyword Arguments:
        * *alpha* (``float``) -- significance level of the CI tests
        * *error_rate* (``float``) -- tolerated fraction of mismatching fingerprint entries
        * *ci_type* (``CITestType``) -- CI test
        * *graph* (``nx.DiGraph``) -- true graph over the variable indices, for the d-separation oracle
        * *triggers* (``list``) -- trigger structures, the built-in ones if None
        * *sub_net_size* (``int``) -- number of observed variables per trigger
        * *min_nodes* (``int``) -- min number of variables
        * *max_nodes* (``int``) -- max number of variables
        * *lg* (``logging``) -- logger if verbosity>0
        * *vb* (``int``) -- verbosity level
        """
        self.defaultargs = {
            "alpha": 0.05,
            "error_rate": 0.005,
            "ci_type": CITestType.CHISQ,
            "graph": None,
            "triggers": None,
            "sub_net_size": 4,
            "min_nodes": 4,
            "max_nodes": 7,
            "lg": None,
            "vb": 0}
        self.__dict__.update((k, v) for k, v in self.defaultargs.items() if k not in kwargs.keys())
        self.__dict__.update((k, v) for k, v in kwargs.items() if k in self.defaultargs.keys())

        def _info(st, strength=0):
            (self.lg.info(st) if self.lg is not None else print(st)) if self.vb + strength > 0 else None
        self._info = _info

        if not self.min_nodes <= data.n_vars <= self.max_nodes:
            raise ValueError(f"latent detection needs between {self.min_nodes} and {self.max_nodes} variables, "
                             f"got {data.n_vars}")
        self.data = data
        self.matcher = TriggerMatcher(self.triggers, self.error_rate)
        self.is_matched = False
        self.match_result = {}
        self.matched_index = []
        self.remaining_index = list(range(data.n_vars))
        self.marginal = None

    def _ci_test(self, cols) -> CITest:
        cols = list(cols)
        return make_ci_test(self.ci_type, self.data.subset(cols), self.alpha, graph=self.graph, observed=cols)

    def run(self) -> dict:
        """ First matching subset wins; without a match the marginal dependencies of all variables are kept. """
        n, k = self.data.n_vars, self.sub_net_size
        best_mismatches = np.inf
        for subset in itertools.combinations(range(n), k):
            fingerprint = DependencyExtractor(self._ci_test(subset)).fingerprint(k)
            res = self.matcher.match(fingerprint)
            best_mismatches = min(best_mismatches, res['mismatches'])
            if res['is_matched']:
                self.is_matched = True
                self.match_result = res
                self.matched_index = list(subset)
                self.remaining_index = [v for v in range(n) if v not in subset]
                self._info(f'Trigger {res["trigger_index"] + 1} matched on {[self.data.names[v] for v in subset]}'
                           f' ({res["mismatches"]} mismatches)')
                return self.get_results()

        self._info(f'No trigger matched, min mismatches {best_mismatches}')
        self.match_result = {'is_matched': False, 'mismatches': best_mismatches}
        self.marginal = DependencyExtractor(self._ci_test(range(n))).marginal(n)
        return self.get_results()

    def latent_matrix(self) -> np.ndarray:
        assert self.is_matched
        return latent_matrix(self.match_result['structure'], self.matched_index, self.data.n_vars)

    def get_results(self) -> dict:
        return {'is_matched': self.is_matched, 'mismatches': self.match_result.get('mismatches', None),
                'trigger_index': self.match_result.get('trigger_index', None),
                'structure': self.match_result.get('structure', None),
                'matched_index': list(self.matched_index), 'remaining_index': list(self.remaining_index),
                'marginal': self.marginal}
