import numpy as np

from src.causallatent.scoring.ci_tests import CITest
from src.causallatent.util.util import subsets_by_size


def conditioning_sets(k: int) -> list[tuple]:
    """ conditioning subsets of k variables that leave at least two variables to test, empty set first, then by
    size and lexicographically """
    return list(subsets_by_size(range(k), 0, k - 2))


def dependency_matrix(is_dependent, k: int, cond) -> np.ndarray:
    """
    :param is_dependent: (a, b, cond) -> bool
    :param k: number of variables
    :param cond: conditioning set
    :return: symmetric 0/1 matrix, [a][b]=1 iff a, b dependent given cond
    """
    M = np.zeros((k, k), dtype=np.int8)
    rest = [v for v in range(k) if v not in cond]
    for ix, a in enumerate(rest):
        for b in rest[ix + 1:]:
            if is_dependent(a, b, cond):
                M[a][b] = M[b][a] = 1
    return M


def fingerprint_from_oracle(is_dependent, k: int) -> list[np.ndarray]:
    return [dependency_matrix(is_dependent, k, cond) for cond in conditioning_sets(k)]


class DependencyExtractor:
    """ Dependency fingerprint of a set of observed variables under a conditional independence test """

    def __init__(self, ci_test: CITest):
        self.ci_test = ci_test

    def fingerprint(self, k: int) -> list[np.ndarray]:
        return fingerprint_from_oracle(self.ci_test.is_dependent, k)

    def marginal(self, k: int) -> np.ndarray:
        return dependency_matrix(self.ci_test.is_dependent, k, ())
