from __future__ import annotations

from typing import Optional

import networkx as nx
import numpy as np


class ExcessiveArcsError(RuntimeError):
    """ an arc operation would push a node above the max number of parents """


class Node:
    """ Variable in a TOM with its (sorted) parent set and the last known cost of that parent set. """
    __slots__ = ('var', 'parents', 'latent', 'cost')

    def __init__(self, var: int, parents=(), latent: bool = False):
        self.var = var
        self.parents = tuple(sorted(parents))
        self.latent = latent
        self.cost = np.nan

    def copy(self) -> Node:
        nd = Node(self.var, self.parents, self.latent)
        nd.cost = self.cost
        return nd

    def __repr__(self):
        return f'Node({self.var}, pa={list(self.parents)}{", latent" if self.latent else ""})'


class TOM:
    r""" Totally ordered model: a total order over the variables plus an arc set consistent with it.

    An arc between two variables always points from the earlier to the later one in the order, hence the graph is
    acyclic by construction and arc operations never need a cycle check.

    :param n: number of variables
    :param max_num_parents: bound on the parent set sizes, unbounded if None
    :param latent: variables flagged as hidden
    """
    n: int
    order: np.ndarray
    position: np.ndarray
    adj: np.ndarray
    nodes: list[Node]
    max_num_parents: int

    def __init__(self, n: int, max_num_parents: Optional[int] = None, latent=()):
        assert n >= 0
        self.n = n
        self.max_num_parents = max(n - 1, 0) if max_num_parents is None else max_num_parents
        self.order = np.arange(n, dtype=np.int64)
        self.position = np.arange(n, dtype=np.int64)
        self.adj = np.zeros((n, n), dtype=np.int8)
        self.nodes = [Node(i, latent=i in latent) for i in range(n)]

    @staticmethod
    def from_adj(adj, max_num_parents: Optional[int] = None, latent=()) -> TOM:
        """ TOM for a DAG given as adjacency matrix (adj[i][j] != 0 for i->j), order by a topological sort """
        adj = np.asarray(adj)
        n = len(adj)
        G = nx.from_numpy_array((adj != 0).astype(int), create_using=nx.DiGraph)
        if not nx.is_directed_acyclic_graph(G):
            raise ValueError("structure contains a cycle")
        tom = TOM(n, max_num_parents, latent)
        tom.set_order(list(nx.lexicographical_topological_sort(G)))
        for i, j in zip(*np.nonzero(adj)):
            tom.add_arc(int(i), int(j))
        return tom

    """ Accessors """

    def node_at(self, pos: int) -> Node:
        return self.nodes[self.order[pos]]

    def get_node(self, var: int) -> Node:
        return self.nodes[var]

    def is_arc(self, i: int, j: int) -> bool:
        """ arc between i and j in either direction """
        return bool(self.adj[i][j] or self.adj[j][i])

    def is_directed_arc(self, i: int, j: int) -> bool:
        return bool(self.adj[i][j])

    def before(self, i: int, j: int) -> bool:
        return self.position[i] < self.position[j]

    def n_arcs(self) -> int:
        return int(self.adj.sum())

    def get_adj(self) -> np.ndarray:
        return self.adj.copy()

    def parents_map(self) -> dict[int, list[int]]:
        return {nd.var: list(nd.parents) for nd in self.nodes}

    def to_networkx(self, names=None) -> nx.DiGraph:
        G = nx.DiGraph()
        label = (lambda v: v) if names is None else (lambda v: names[v])
        G.add_nodes_from(label(v) for v in self.order)
        G.add_edges_from((label(int(i)), label(int(j))) for i, j in zip(*np.nonzero(self.adj)))
        return G

    def key(self) -> tuple:
        """ identifies the DAG (not the order) """
        return tuple(nd.parents for nd in self.nodes)

    """ Arc operations """

    def _edge_dir(self, i, j):
        return (i, j) if self.before(i, j) else (j, i)

    def add_arc(self, i: int, j: int):
        """ Adds an arc between i and j, directed from the earlier to the later variable in the order.

        :raises ExcessiveArcsError: the child would exceed max_num_parents
        """
        assert i != j and not self.is_arc(i, j)
        pa, ch = self._edge_dir(i, j)
        child = self.nodes[ch]
        if len(child.parents) >= self.max_num_parents:
            raise ExcessiveArcsError(f"node {ch} already has {len(child.parents)} parents")
        self.adj[pa][ch] = 1
        child.parents = tuple(sorted(child.parents + (pa,)))

    def remove_arc(self, i: int, j: int):
        assert self.is_arc(i, j)
        pa, ch = self._edge_dir(i, j)
        self.adj[pa][ch] = 0
        self.nodes[ch].parents = tuple(p for p in self.nodes[ch].parents if p != pa)

    def toggle_arc(self, i: int, j: int) -> bool:
        """ :return: whether the arc exists afterwards """
        if self.is_arc(i, j):
            self.remove_arc(i, j)
            return False
        self.add_arc(i, j)
        return True

    def swap_order(self, pos: int):
        """ Swaps the variables at positions pos, pos+1; an arc between them is reversed. """
        assert 0 <= pos < self.n - 1
        a, b = int(self.order[pos]), int(self.order[pos + 1])
        reverse = self.adj[a][b] != 0
        if reverse and len(self.nodes[a].parents) >= self.max_num_parents:
            raise ExcessiveArcsError(f"node {a} already has {len(self.nodes[a].parents)} parents")
        if reverse:
            self.remove_arc(a, b)
        self.order[pos], self.order[pos + 1] = b, a
        self.position[a], self.position[b] = pos + 1, pos
        if reverse:
            self.add_arc(a, b)

    def set_order(self, order):
        """ Sets a new total order, arcs are kept only if consistent with it """
        order = [int(v) for v in order]
        assert sorted(order) == list(range(self.n))
        self.order = np.asarray(order, dtype=np.int64)
        for pos, v in enumerate(order):
            self.position[v] = pos
        for i, j in list(zip(*np.nonzero(self.adj))):
            if not self.before(i, j):
                self.remove_arc(int(i), int(j))

    def clear_arcs(self):
        for i, j in list(zip(*np.nonzero(self.adj))):
            self.remove_arc(int(i), int(j))

    def random_order(self, rng: np.random.Generator):
        self.clear_arcs()
        self.set_order(rng.permutation(self.n))

    def random_arcs(self, rng: np.random.Generator, arc_prob: float = 0.5):
        """ Resamples the arc set: each ordered pair gets an arc w.p. arc_prob while parent slots remain """
        self.clear_arcs()
        for pos_j in range(1, self.n):
            ch = int(self.order[pos_j])
            for pos_i in range(pos_j):
                if len(self.nodes[ch].parents) >= self.max_num_parents: break
                if rng.random() < arc_prob:
                    self.add_arc(int(self.order[pos_i]), ch)

    """ Checks """

    def is_consistent(self) -> bool:
        if sorted(self.order.tolist()) != list(range(self.n)): return False
        if any(self.position[self.order[p]] != p for p in range(self.n)): return False
        for nd in self.nodes:
            if list(nd.parents) != sorted(nd.parents): return False
            if len(nd.parents) > self.max_num_parents: return False
            if set(nd.parents) != set(np.nonzero(self.adj[:, nd.var])[0].tolist()): return False
            if any(not self.before(p, nd.var) for p in nd.parents): return False
        return True

    def copy(self) -> TOM:
        tom = TOM(self.n, self.max_num_parents)
        tom.order = self.order.copy()
        tom.position = self.position.copy()
        tom.adj = self.adj.copy()
        tom.nodes = [nd.copy() for nd in self.nodes]
        return tom

    def __eq__(self, other):
        return isinstance(other, TOM) and np.array_equal(self.order, other.order) \
            and np.array_equal(self.adj, other.adj)

    def __hash__(self):
        return hash((tuple(self.order.tolist()), self.key()))

    def __repr__(self):
        return f'TOM(order={self.order.tolist()}, arcs={[(int(i), int(j)) for i, j in zip(*np.nonzero(self.adj))]})'
