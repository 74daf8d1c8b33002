from enum import Enum

import networkx as nx
import numpy as np
from numpy.random import SeedSequence

from src.causallatent.data.discrete_data import DiscreteData
from src.causallatent.latent.trigger import TRIGGER_1, TRIGGER_2

""" synthetic discrete data generation """

HIDDEN = 'H'


class GSType(Enum):
    """ preset graph structures """
    CHAIN = 'chain'
    COMMON_CAUSE = 'common_cause'
    COLLIDER = 'collider'
    INDEP = 'indep'
    TRIGGER_1 = 'trigger_1'
    TRIGGER_2 = 'trigger_2'
    RANDOM = 'random'

    def __eq__(self, other): return self.value == other.value
    def __str__(self): return self.value

    def is_trigger(self): return self.value in [GSType.TRIGGER_1.value, GSType.TRIGGER_2.value]


def gen_graph_structure(gs: GSType, n: int = 3, arc_prob: float = 0.3, seed: int = 0) -> nx.DiGraph:
    """
    :param gs: preset
    :param n: number of nodes (ignored for triggers, which have four observed nodes 0..3 and a hidden node H)
    :param arc_prob: edge probability for GSType.RANDOM
    :param seed: seed for GSType.RANDOM
    :return: DAG over integer nodes (and HIDDEN)
    """
    G = nx.DiGraph()
    if gs.is_trigger():
        T = TRIGGER_1 if gs == GSType.TRIGGER_1 else TRIGGER_2
        label = lambda v: HIDDEN if v == 0 else v - 1
        G.add_nodes_from(label(v) for v in range(len(T)))
        G.add_edges_from((label(int(i)), label(int(j))) for i, j in zip(*np.nonzero(T)))
        return G

    G.add_nodes_from(range(n))
    if gs == GSType.CHAIN:
        G.add_edges_from((i, i + 1) for i in range(n - 1))
    elif gs == GSType.COMMON_CAUSE:
        G.add_edges_from((0, i) for i in range(1, n))
    elif gs == GSType.COLLIDER:
        G.add_edges_from((i, n - 1) for i in range(n - 1))
    elif gs == GSType.RANDOM:
        rng = np.random.default_rng(SeedSequence(seed))
        G.add_edges_from((i, j) for i in range(n) for j in range(i + 1, n) if rng.random() < arc_prob)
    return G


def gen_cpts(graph: nx.DiGraph, arities: dict, strength: float, rng: np.random.Generator) -> dict:
    """ Random CPTs. Roots get a Dirichlet marginal, a child prefers state min(sum of parent states, arity-1) with
    probability mass strength on top of a uniform floor, so it depends on every parent.

    :return: node -> (parents, table of shape (n parent configurations, arity))
    """
    cpts = {}
    for node in graph.nodes:
        parents = sorted(graph.predecessors(node), key=lambda v: (str(type(v)), v))
        m = arities[node]
        if not parents:
            cpts[node] = (parents, rng.dirichlet(np.full(m, 5.0))[None, :])
            continue
        dims = [arities[p] for p in parents]
        table = np.full((int(np.prod(dims)), m), (1 - strength) / m)
        for cfg, states in enumerate(np.ndindex(*dims)):
            table[cfg][min(int(sum(states)), m - 1)] += strength
        cpts[node] = (parents, table)
    return cpts


def gen_discrete_data(graph: nx.DiGraph, n_samples: int, arity: int = 2, seed: int = 0, strength: float = 0.8,
                      hidden=(HIDDEN,)):
    """ Ancestral sampling from a discrete BN with random CPTs, hidden nodes are dropped from the returned data.

    :return: DiscreteData over the observed nodes (sorted), full samples per node
    """
    rng = np.random.default_rng(SeedSequence(seed))
    arities = {node: arity for node in graph.nodes}
    cpts = gen_cpts(graph, arities, strength, rng)

    samples = {}
    for node in nx.topological_sort(graph):
        parents, table = cpts[node]
        if parents:
            cfg = np.ravel_multi_index(tuple(samples[p] for p in parents), tuple(arities[p] for p in parents))
        else:
            cfg = np.zeros(n_samples, dtype=np.int64)
        cum = np.cumsum(table[cfg], axis=1)
        u = rng.random(n_samples)
        samples[node] = np.minimum((cum < u[:, None]).sum(axis=1), arities[node] - 1)

    observed = sorted((v for v in graph.nodes if v not in hidden), key=lambda v: (str(type(v)), v))
    X = np.column_stack([samples[v] for v in observed])
    data = DiscreteData(X, names=[str(v) for v in observed], arities=[arities[v] for v in observed])
    return data, samples
