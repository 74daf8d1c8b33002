import numpy as np
import pytest

from src.causallatent.cl_types import CITestType, LatentInit
from src.causallatent.data.discrete_data import DiscreteData
from src.causallatent.latent.em import EM, make_augmented_data, root_structure, dependency_structure, \
    random_structure
from src.causallatent.latent.em_integrator import EMIntegrator
from src.causallatent.latent.trigger import TRIGGER_1

from data_for_testing import balanced_independent_data, chain_data, trigger_data


def test_augmented_data():
    data = DiscreteData(np.array([[0, 1], [1, 1], [0, 1]]), names=['H', 'B'])
    aug = make_augmented_data(data, 3, np.random.default_rng(0))
    assert aug.X.shape == (9, 3)
    assert aug.X[:, 0].tolist() == [0, 0, 0, 1, 1, 1, 2, 2, 2]
    assert np.array_equal(aug.X[3:6, 1:], data.X)
    assert aug.names == ['_H', 'H', 'B'] and aug.arities.tolist() == [3, 2, 2]
    W = aug.weights.reshape(3, 3)
    assert np.allclose(W.sum(axis=0), 1.0)
    assert np.allclose(W[:, 0], W[:, 2])  # identical rows
    assert data.X.shape == (3, 2) and data.weights.tolist() == [1, 1, 1]


def test_e_step_normalizes_rows():
    data, _ = chain_data(n_vars=3, n_rows=200)
    aug = make_augmented_data(data, 2, np.random.default_rng(1))
    em = EM(root_structure(3), aug, 2)
    em.m_step()
    for _ in range(3):
        em.e_step()
        assert np.allclose(em.row_weight_sums(), 1.0)
        assert np.allclose(em.weight_matrix().sum(axis=1), 1.0)
        em.m_step()
    assert np.isfinite(em.log_likelihood())


def test_standard_em_run():
    data, _ = chain_data(n_vars=4, n_rows=200)
    em = EM(root_structure(4), make_augmented_data(data, 2, np.random.default_rng(2)), 2)
    ll = em.run(20, 1e-6)
    assert np.isfinite(ll) and ll < 0
    assert np.allclose(em.row_weight_sums(), 1.0)


def test_initial_structures():
    adj = root_structure(3)
    assert adj[0].tolist() == [0, 1, 1, 1] and adj[:, 0].sum() == 0

    marginal = np.ones((3, 3), dtype=int) - np.eye(3, dtype=int)
    marginal[0][2] = marginal[2][0] = 0
    adj = dependency_structure(marginal)
    assert adj[1][0] == 1 and adj[3][0] == 1 and adj[0][2] == 1
    assert adj[0][1] == 0 and adj[0][3] == 0

    adj = random_structure(4, np.random.default_rng(0))
    assert adj[:, 0].sum() > 1 or adj[0].sum() > 1


def test_single_iteration_terminates():
    data, _ = chain_data(n_vars=4, n_rows=300)
    integrator = EMIntegrator(data, em_iterations=1, search_factor=0.05, standard_em_iterations=5,
                              rng=np.random.default_rng(0))
    res = integrator.run()
    assert res['n_iterations'] == 1
    assert isinstance(res['latent_retained'], bool)
    assert np.isfinite(res['latent_cost']) and np.isfinite(res['observed_cost'])
    assert res['weights'].shape == (300, 2)
    assert np.allclose(res['weights'].sum(axis=1), 1.0)
    assert res['latent_retained'] == (res['latent_cost'] < res['observed_cost'])
    assert len(res['results']) >= 1


@pytest.mark.parametrize("latent_init", [LatentInit.DEPENDENCIES, LatentInit.RANDOM])
def test_initial_strategies_run(latent_init):
    data, _ = chain_data(n_vars=4, n_rows=200)
    res = EMIntegrator(data, em_iterations=2, search_factor=0.05, standard_em_iterations=3,
                       latent_init=latent_init, rng=np.random.default_rng(3)).run()
    assert 1 <= res['n_iterations'] <= 2
    assert not res['is_matched']


def test_matched_trigger_arcs_are_kept():
    data, graph = trigger_data(n_rows=400)
    integrator = EMIntegrator(data, ci_type=CITestType.DSEP, graph=graph, em_iterations=2, search_factor=0.05,
                              rng=np.random.default_rng(4))
    res = integrator.run()
    assert res['is_matched'] and res['mismatches'] == 0
    assert res['matched_index'] == [0, 1, 2, 3]
    tom = res['latent_tom']
    for i, j in zip(*np.nonzero(TRIGGER_1)):
        assert tom.is_directed_arc(int(i), int(j))
    assert tom.get_node(0).latent


def test_invalid_settings():
    data, _ = chain_data(n_vars=4, n_rows=50)
    with pytest.raises(ValueError):
        EMIntegrator(data, em_iterations=0)
    with pytest.raises(ValueError):
        EMIntegrator(data, latent_arity=1)
    small, _ = chain_data(n_vars=3, n_rows=50)
    with pytest.raises(ValueError):
        EMIntegrator(small)


def test_initial_structures_respect_parent_bound():
    adj = dependency_structure(np.zeros((4, 4), dtype=int), max_num_parents=2)
    assert adj[:, 0].tolist() == [0, 1, 1, 0, 0]
    assert adj[0].tolist() == [0, 0, 0, 1, 1]
    assert adj.sum(axis=0).max() <= 2

    rng = np.random.default_rng(5)
    for _ in range(20):
        adj = random_structure(5, rng, arc_prob=0.9, max_num_parents=2)
        assert adj.sum(axis=0).max() <= 2


@pytest.mark.parametrize("latent_init", [LatentInit.DEPENDENCIES, LatentInit.RANDOM])
def test_bounded_parents_run(latent_init):
    data = balanced_independent_data(n_vars=4, reps=10)
    res = EMIntegrator(data, latent_init=latent_init, max_num_parents=2, em_iterations=1, search_factor=0.05,
                       standard_em_iterations=3, rng=np.random.default_rng(6)).run()
    assert not res['is_matched']
    assert all(len(nd.parents) <= 2 for nd in res['latent_tom'].nodes)
    assert np.isfinite(res['latent_cost']) and np.isfinite(res['observed_cost'])


def test_parent_bound_below_trigger_in_degree():
    data, graph = trigger_data(n_rows=100)
    with pytest.raises(ValueError):
        EMIntegrator(data, ci_type=CITestType.DSEP, graph=graph, max_num_parents=1, em_iterations=1)
    EMIntegrator(data, ci_type=CITestType.DSEP, graph=graph, max_num_parents=2, em_iterations=1)
