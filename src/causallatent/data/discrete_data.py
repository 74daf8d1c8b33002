from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
import pandas as pd

from src.causallatent.cl_types import IArray, XArray


class DiscreteData:
    """ Discrete dataset, columns hold dense integer state codes, rows carry (optionally fractional) weights.

    Instances are treated as immutable: every transformation returns a new object sharing nothing writable with the
    original.
    """
    X: IArray
    names: list[str]
    states: list[list[str]]
    arities: IArray
    weights: XArray

    def __init__(self, X, names=None, states=None, arities=None, weights=None):
        X = np.asarray(X, dtype=np.int64)
        assert X.ndim == 2, "expected a 2d array of state codes"
        n_rows, n_vars = X.shape
        self.X = X
        self.names = list(names) if names is not None else [f'X{i}' for i in range(n_vars)]
        if arities is None:
            arities = [int(X[:, j].max()) + 1 if n_rows > 0 else 1 for j in range(n_vars)]
        self.arities = np.asarray(arities, dtype=np.int64)
        self.states = [list(s) for s in states] if states is not None else \
            [[str(v) for v in range(self.arities[j])] for j in range(n_vars)]
        self.weights = np.ones(n_rows) if weights is None else np.asarray(weights, dtype=float)

        assert len(self.names) == n_vars and len(self.states) == n_vars and len(self.arities) == n_vars
        assert len(self.weights) == n_rows
        assert n_rows == 0 or (X.min() >= 0 and np.all(X.max(axis=0) < self.arities)), "state codes out of range"

    @staticmethod
    def from_frame(df: pd.DataFrame) -> DiscreteData:
        """ Encodes each column's labels as dense codes, in order of first appearance.

        :param df: table of discrete observations, one column per variable
        :return: DiscreteData
        """
        codes, states = [], []
        for col in df.columns:
            c, uniques = pd.factorize(df[col].astype(str), sort=False)
            assert np.all(c >= 0), f"missing values in column {col}"
            codes.append(c)
            states.append([str(u) for u in uniques])
        X = np.column_stack(codes) if codes else np.zeros((len(df), 0), dtype=np.int64)
        return DiscreteData(X, names=[str(c) for c in df.columns], states=states,
                            arities=[len(s) for s in states])

    @staticmethod
    def from_array(X, names: Optional[Sequence[str]] = None) -> DiscreteData:
        return DiscreteData.from_frame(pd.DataFrame(np.asarray(X), columns=names))

    @property
    def n_rows(self): return self.X.shape[0]

    @property
    def n_vars(self): return self.X.shape[1]

    def arity(self, j): return int(self.arities[j])

    def subset(self, cols) -> DiscreteData:
        cols = list(cols)
        return DiscreteData(self.X[:, cols].copy(), names=[self.names[c] for c in cols],
                            states=[self.states[c] for c in cols], arities=self.arities[cols],
                            weights=self.weights.copy())

    def with_weights(self, weights) -> DiscreteData:
        return DiscreteData(self.X.copy(), names=self.names, states=self.states, arities=self.arities,
                            weights=np.asarray(weights, dtype=float).copy())

    def configs(self, parents) -> tuple[IArray, int]:
        """ Index of the joint parent configuration per row, and the number of configurations """
        parents = list(parents)
        if len(parents) == 0:
            return np.zeros(self.n_rows, dtype=np.int64), 1
        dims = tuple(int(self.arities[p]) for p in parents)
        cfg = np.ravel_multi_index(tuple(self.X[:, p] for p in parents), dims)
        return cfg.astype(np.int64), int(np.prod(dims))

    def counts(self, child: int, parents) -> XArray:
        """ Weighted contingency table, one row per parent configuration, one column per child state """
        cfg, n_cfg = self.configs(parents)
        m = self.arity(child)
        flat = np.bincount(cfg * m + self.X[:, child], weights=self.weights, minlength=n_cfg * m)
        return flat.reshape(n_cfg, m)

    def weighted_summary(self) -> tuple[IArray, XArray, IArray]:
        """ Distinct rows with summed weights.

        :return: unique rows, their total weights, index of each original row into the unique rows
        """
        uniq, inverse = np.unique(self.X, axis=0, return_inverse=True)
        inverse = np.asarray(inverse).reshape(-1)
        totals = np.bincount(inverse, weights=self.weights, minlength=len(uniq))
        return uniq, totals, inverse

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({name: [self.states[j][c] for c in self.X[:, j]]
                             for j, name in enumerate(self.names)})

    def __repr__(self):
        return f'DiscreteData(n_rows={self.n_rows}, n_vars={self.n_vars}, arities={list(self.arities)})'
