import networkx as nx
import numpy as np

from src.causallatent.util.util import skeleton, v_structures


def precision(s0, s1):
    s = set(s0).intersection(s1)
    return 1 if not len(s1) else len(s) / len(s1)


def recall(s0, s1):
    s = set(s0).intersection(s1)
    return 1 if not len(s0) else len(s) / len(s0)


def preci_recall(s1, s2):
    return precision(s1, s2), recall(s1, s2)


def positives_negatives(A_true, A):
    A_true, A = np.asarray(A_true) != 0, np.asarray(A) != 0
    off = ~np.eye(len(A), dtype=bool)
    tp = int(np.sum(A & A_true & off))
    tn = int(np.sum(~A & ~A_true & off))
    fp = int(np.sum(A & ~A_true & off))
    fn = int(np.sum(~A & A_true & off))
    return tp, tn, fp, fn


def shd(A_true, A) -> int:
    """ structural Hamming distance, a reversed edge counts once """
    A_true, A = np.asarray(A_true) != 0, np.asarray(A) != 0
    diff = (A_true | A_true.T) != (A | A.T)
    reversed_ = (A_true & A.T & ~A) & ~(A_true & A)
    return int(np.sum(np.triu(diff))) + int(np.sum(reversed_))


def eval_graph(A_true, A_estim) -> dict:
    """ eval causal graph over observed nodes

    :param A_true: true DAG, A[i][j]!=0 for i->j
    :param A_estim: estimated DAG
    :return: metrics dict
    """
    G_true = nx.from_numpy_array((np.asarray(A_true) != 0).astype(int), create_using=nx.DiGraph)
    G = nx.from_numpy_array((np.asarray(A_estim) != 0).astype(int), create_using=nx.DiGraph)
    prec, rec = preci_recall(G_true.edges(), G.edges())
    f1 = 0 if prec + rec == 0 else 2 * ((prec * rec) / (prec + rec))
    tp, tn, fp, fn = positives_negatives(A_true, A_estim)
    sk_prec, sk_rec = preci_recall(skeleton(A_true), skeleton(A_estim))
    nn = len(A_true)
    dist = shd(A_true, A_estim)
    return {
        'prec': prec, 'rec': rec, 'f1': f1,
        'tp': tp, 'tn': tn, 'fp': fp, 'fn': fn,
        'sk-prec': sk_prec, 'sk-rec': sk_rec,
        'shd': dist, 'shd-norm': dist / (nn ** 2) if nn else 0,
        'same-mec': skeleton(A_true) == skeleton(A_estim) and v_structures(A_true) == v_structures(A_estim),
    }
