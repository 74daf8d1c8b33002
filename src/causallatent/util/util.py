import itertools

import networkx as nx
import numpy as np


# %% Graph helpers
def parents_of(adj, j):
    return [int(i) for i in np.nonzero(np.asarray(adj)[:, j])[0]]


def adj_to_networkx(adj, names=None) -> nx.DiGraph:
    G = nx.DiGraph()
    label = (lambda v: v) if names is None else (lambda v: names[v])
    G.add_nodes_from(label(v) for v in range(len(adj)))
    G.add_edges_from((label(int(i)), label(int(j))) for i, j in zip(*np.nonzero(adj)))
    return G


def skeleton(adj) -> frozenset:
    return frozenset(frozenset((int(i), int(j))) for i, j in zip(*np.nonzero(adj)))


def v_structures(adj) -> frozenset:
    """ colliders a->c<-b with a, b non-adjacent, as (min(a,b), max(a,b), c) """
    adj = np.asarray(adj)
    vs = set()
    for c in range(len(adj)):
        for a, b in itertools.combinations(parents_of(adj, c), 2):
            if not (adj[a][b] or adj[b][a]):
                vs.add((a, b, c))
    return frozenset(vs)


def mec_key(adj) -> tuple:
    """ DAGs share a Markov equivalence class iff they share skeleton and v-structures """
    return skeleton(adj), v_structures(adj)


# %% Enumeration
def subsets_by_size(items, min_size=0, max_size=None):
    """ all subsets of items, ordered by size, lexicographic within one size """
    items = list(items)
    max_size = len(items) if max_size is None else max_size
    for size in range(min_size, max_size + 1):
        for combo in itertools.combinations(items, size):
            yield combo
