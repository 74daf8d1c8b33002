from abc import ABC, abstractmethod

import numpy as np

from src.causallatent.cl_types import MoveType
from src.causallatent.dag.tom import TOM
from src.causallatent.search.context import SearchContext


class TOMTransformation(ABC):
    """ Metropolis move on a TOM.

    propose() mutates the TOM speculatively, scores the affected nodes through the node cache, and either keeps the
    change or restores the exact previous state. last_delta holds the cost change of the last accepted move.
    """
    move_type: MoveType

    def __init__(self, ctx: SearchContext):
        self.ctx = ctx
        self.last_delta = 0.0
        self.n_proposed = 0
        self.n_accepted = 0

    @abstractmethod
    def propose(self, tom: TOM) -> bool:
        raise NotImplementedError

    def accept(self, delta: float) -> bool:
        if np.isnan(delta): return False
        if self.ctx.safe_mode: return delta < 0
        if delta <= 0: return True
        return self.ctx.rng.random() < np.exp(-delta / self.ctx.temperature)

    def _rand_index(self, bound: int) -> int:
        """ uniform index in [0, bound), clamped for draws that round up to bound """
        return min(int(self.ctx.rng.random() * bound), bound - 1)

    def _decide(self, delta: float) -> bool:
        self.n_proposed += 1
        if self.accept(delta):
            self.n_accepted += 1
            self.last_delta = delta
            return True
        return False

    def _toggle_arcs(self, tom: TOM, pairs) -> float:
        """ speculatively toggles (parent, child) arcs in the given order, returns the prior cost change """
        prior_delta = self.ctx.prior.cost_to_toggle_arcs(tom, pairs)
        for pa, ch in pairs:
            tom.toggle_arc(pa, ch)
        return prior_delta

    def _restore(self, tom: TOM, pairs, snapshot):
        for pa, ch in reversed(pairs):
            tom.toggle_arc(pa, ch)
        for node, parents, cost in snapshot:
            node.parents, node.cost = parents, cost

    def _record(self, tom: TOM, pairs):
        for pa, ch in pairs:
            self.ctx.record_arc_change(pa, ch, tom.is_directed_arc(pa, ch))


class SkeletalChange(TOMTransformation):
    """ Adds or removes the arc between two random variables. """
    move_type = MoveType.SKELETAL

    def propose(self, tom: TOM) -> bool:
        if tom.n < 2: return False
        i = self._rand_index(tom.n)
        j = self._rand_index(tom.n - 1)
        if j >= i: j += 1
        pa, ch = (i, j) if tom.before(i, j) else (j, i)
        child = tom.get_node(ch)
        if not tom.is_arc(pa, ch) and len(child.parents) >= tom.max_num_parents: return False

        cache = self.ctx.node_cache
        snapshot = [(child, child.parents, cache.get_mml_cost(child))]
        pairs = [(pa, ch)]
        prior_delta = self._toggle_arcs(tom, pairs)
        delta = cache.get_mml_cost(child) - snapshot[0][2] + prior_delta

        if not self._decide(delta):
            self._restore(tom, pairs, snapshot)
            return False
        self._record(tom, pairs)
        return True


class ParentSwapChange(TOMTransformation):
    """ Replaces one parent of a node by one of its non-parent predecessors. The node is drawn with a bias towards
    late positions in the order, where parent sets are larger. """
    move_type = MoveType.PARENT_SWAP

    def propose(self, tom: TOM) -> bool:
        n = tom.n
        if n < 3: return False
        r = self.ctx.rng.random()
        pos = min(int((n - 2) * (1 - r * r)), n - 3) + 2
        child = tom.node_at(pos)
        if not 1 <= len(child.parents) < pos: return False

        old_pa = child.parents[self._rand_index(len(child.parents))]
        candidates = [int(tom.order[p]) for p in range(pos) if int(tom.order[p]) not in child.parents]
        new_pa = candidates[self._rand_index(len(candidates))]

        cache = self.ctx.node_cache
        snapshot = [(child, child.parents, cache.get_mml_cost(child))]
        pairs = [(old_pa, child.var), (new_pa, child.var)]
        prior_delta = self._toggle_arcs(tom, pairs)
        delta = cache.get_mml_cost(child) - snapshot[0][2] + prior_delta

        if not self._decide(delta):
            self._restore(tom, pairs, snapshot)
            return False
        self._record(tom, pairs)
        return True


class DoubleSkeletalChange(TOMTransformation):
    """ Toggles the arcs from two variables into a third variable that follows both in the order. """
    move_type = MoveType.DOUBLE_SKELETAL

    def propose(self, tom: TOM) -> bool:
        n = tom.n
        if n < 3: return False
        positions = sorted(int(p) for p in self.ctx.rng.choice(n, size=3, replace=False))
        child = tom.node_at(positions[2])
        a, b = int(tom.order[positions[0]]), int(tom.order[positions[1]])
        if len(set(child.parents) ^ {a, b}) > tom.max_num_parents: return False

        cache = self.ctx.node_cache
        snapshot = [(child, child.parents, cache.get_mml_cost(child))]
        # removals first so the parent bound holds in between
        pairs = sorted([(a, child.var), (b, child.var)], key=lambda pr: not tom.is_arc(*pr))
        prior_delta = self._toggle_arcs(tom, pairs)
        delta = cache.get_mml_cost(child) - snapshot[0][2] + prior_delta

        if not self._decide(delta):
            self._restore(tom, pairs, snapshot)
            return False
        self._record(tom, pairs)
        return True


class TemporalChange(TOMTransformation):
    """ Swaps two neighbours in the total order, reversing the arc between them if there is one. """
    move_type = MoveType.TEMPORAL

    def propose(self, tom: TOM) -> bool:
        if tom.n < 2: return False
        pos = self._rand_index(tom.n - 1)
        a, b = tom.node_at(pos), tom.node_at(pos + 1)
        has_arc = tom.is_directed_arc(a.var, b.var)
        if has_arc and len(a.parents) >= tom.max_num_parents: return False

        cache = self.ctx.node_cache
        snapshot = [(nd, nd.parents, cache.get_mml_cost(nd)) for nd in (a, b)]
        prior_delta = self.ctx.prior.cost_to_swap_order(tom, pos)
        tom.swap_order(pos)
        delta = 0.0 if not has_arc else \
            cache.get_mml_cost(a) + cache.get_mml_cost(b) - snapshot[0][2] - snapshot[1][2] + prior_delta

        if not self._decide(delta):
            tom.swap_order(pos)
            for node, parents, cost in snapshot:
                node.parents, node.cost = parents, cost
            return False
        if has_arc:
            self.ctx.record_arc_change(a.var, b.var, False)
            self.ctx.record_arc_change(b.var, a.var, True)
        return True


MOVES = {
    MoveType.SKELETAL.value: SkeletalChange,
    MoveType.TEMPORAL.value: TemporalChange,
    MoveType.DOUBLE_SKELETAL.value: DoubleSkeletalChange,
    MoveType.PARENT_SWAP.value: ParentSwapChange,
}
