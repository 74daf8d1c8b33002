from __future__ import annotations

import re
from typing import Optional

import numpy as np
from scipy.special import gammaln

from src.causallatent.dag.tom import TOM

_ARCS_BLOCK = re.compile(r'^\s*arcs\s*\{(.*)\}\s*$', re.DOTALL)
_ARC_STMT = re.compile(r'^\s*(\w+)\s*->\s*(\w+)\s+([-+0-9.eE]+)\s*$')


def _neg_log(p):
    return np.inf if p <= 0 else -np.log(p)


class StructurePrior:
    r""" Prior over TOMs: a uniform prior over total orders, and per pair of variables a prior over its arc state.

    Unconstrained pairs have an arc with probability arc_prob. Constrained pairs carry (P(i->j), P(j->i)), the
    remaining mass is P(no arc). Zero-probability states cost inf and can never be accepted.

    :param n_nodes: number of variables
    :param arc_prob: arc probability for unconstrained pairs
    :param constraints: {(i, j): P(i->j)}; a missing reverse direction defaults to min(arc_prob/2, 1 - P(i->j))
    """

    def __init__(self, n_nodes: int, arc_prob: float = 0.5, constraints: Optional[dict] = None):
        self.n = n_nodes
        self.arc_prob = arc_prob
        self.pairs = {}
        constraints = {} if constraints is None else constraints
        self.validate_input(constraints)
        for (i, j), p in constraints.items():
            self.pairs.setdefault((min(i, j), max(i, j)), {})[(i, j)] = float(p)
        for (a, b), given in self.pairs.items():
            for (i, j) in [(a, b), (b, a)]:
                if (i, j) not in given:
                    other = given[(j, i)]
                    given[(i, j)] = min(arc_prob / 2, 1 - other)
        self.validate()

    """ Construction """

    @staticmethod
    def from_string(prior_str: str, names, arc_prob: float = 0.5) -> StructurePrior:
        """ Parses expert arc probabilities, e.g. "arcs { A -> B 1.0; C -> D 0.0; }".

        :param prior_str: prior description
        :param names: variable names, variables can also be referred to by index
        :param arc_prob: arc probability for unconstrained pairs
        :raises ValueError: malformed description or unknown variables
        """
        names = list(names)
        m = _ARCS_BLOCK.match(prior_str)
        if m is None:
            raise ValueError(f"cannot parse prior: {prior_str!r}")

        def _index(token):
            if token in names: return names.index(token)
            if token.isdigit() and int(token) < len(names): return int(token)
            raise ValueError(f"unknown variable {token!r} in prior")

        constraints = {}
        for stmt in m.group(1).split(';'):
            if not stmt.strip(): continue
            sm = _ARC_STMT.match(stmt)
            if sm is None:
                raise ValueError(f"cannot parse prior statement: {stmt.strip()!r}")
            try:
                p = float(sm.group(3))
            except ValueError as e:
                raise ValueError(f"bad probability in prior statement {stmt.strip()!r}") from e
            constraints[(_index(sm.group(1)), _index(sm.group(2)))] = p
        return StructurePrior(len(names), arc_prob, constraints)

    @staticmethod
    def from_adj_constraints(n_nodes: int, adj, nodes, arc_prob: float = 0.5) -> StructurePrior:
        """ Fixes the arc state of every pair among nodes to the one in adj """
        nodes = sorted(nodes)
        constraints = {}
        for ix, a in enumerate(nodes):
            for b in nodes[ix + 1:]:
                constraints[(a, b)] = 1.0 if adj[a][b] else 0.0
                constraints[(b, a)] = 1.0 if adj[b][a] else 0.0
        return StructurePrior(n_nodes, arc_prob, constraints)

    def validate_input(self, constraints):
        if not 0 < self.arc_prob < 1:
            raise ValueError(f"arc probability must be in (0, 1), got {self.arc_prob}")
        for (i, j), p in constraints.items():
            if i == j:
                raise ValueError(f"self loop {i} -> {j} in prior")
            if not (0 <= i < self.n and 0 <= j < self.n):
                raise ValueError(f"arc {i} -> {j} out of range for {self.n} variables")
            if not 0 <= p <= 1:
                raise ValueError(f"probability {p} for {i} -> {j} not in [0, 1]")

    def validate(self):
        for (a, b), given in self.pairs.items():
            if given[(a, b)] + given[(b, a)] > 1 + 1e-12:
                raise ValueError(f"P({a}->{b}) + P({b}->{a}) exceeds 1")

    """ Costs """

    def is_constrained(self, i, j) -> bool:
        return (min(i, j), max(i, j)) in self.pairs

    def pair_cost(self, i: int, j: int, state: int) -> float:
        """
        :param i: variable
        :param j: variable
        :param state: 1 for i->j, -1 for j->i, 0 for no arc
        :return: -log P(state)
        """
        key = (min(i, j), max(i, j))
        if key not in self.pairs:
            return _neg_log(self.arc_prob) if state != 0 else _neg_log(1 - self.arc_prob)
        given = self.pairs[key]
        if state == 0:
            return _neg_log(max(0.0, 1 - given[(i, j)] - given[(j, i)]))
        return _neg_log(given[(i, j)] if state > 0 else given[(j, i)])

    @staticmethod
    def _state(tom: TOM, i, j) -> int:
        return 1 if tom.is_directed_arc(i, j) else -1 if tom.is_directed_arc(j, i) else 0

    def cost(self, tom: TOM) -> float:
        cost = float(gammaln(self.n + 1))
        for i in range(self.n):
            for j in range(i + 1, self.n):
                cost += self.pair_cost(i, j, self._state(tom, i, j))
        return cost

    def cost_to_toggle_arc(self, tom: TOM, i: int, j: int) -> float:
        old = self._state(tom, i, j)
        new = 0 if old != 0 else (1 if tom.before(i, j) else -1)
        return self.pair_cost(i, j, new) - self.pair_cost(i, j, old)

    def cost_to_toggle_arcs(self, tom: TOM, pairs) -> float:
        return float(sum(self.cost_to_toggle_arc(tom, i, j) for i, j in pairs))

    def cost_to_swap_order(self, tom: TOM, pos: int) -> float:
        a, b = int(tom.order[pos]), int(tom.order[pos + 1])
        if not tom.is_directed_arc(a, b):
            return 0.0
        return self.pair_cost(a, b, -1) - self.pair_cost(a, b, 1)
