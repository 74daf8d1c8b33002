import numpy as np

from src.causallatent.data.discrete_data import DiscreteData

from data_for_testing import small_frame


def test_first_discovery_codes():
    data = DiscreteData.from_frame(small_frame())
    assert data.names == ['A', 'B']
    assert data.X[:, 0].tolist() == [0, 1, 0, 2]
    assert data.states[0] == ['b', 'a', 'c']
    assert data.arities.tolist() == [3, 2]
    assert data.weights.tolist() == [1, 1, 1, 1]


def test_weighted_counts():
    data = DiscreteData(np.array([[0, 0], [0, 1], [1, 1], [1, 1]]), weights=[0.5, 1.0, 2.0, 1.0])
    counts = data.counts(1, [0])
    assert counts.shape == (2, 2)
    assert np.allclose(counts, [[0.5, 1.0], [0.0, 3.0]])
    assert np.allclose(data.counts(1, []), [[0.5, 4.0]])


def test_weighted_summary_and_immutability():
    data = DiscreteData(np.array([[0, 1], [1, 0], [0, 1]]))
    uniq, totals, inverse = data.weighted_summary()
    assert len(uniq) == 2
    assert np.allclose(sorted(totals), [1.0, 2.0])
    assert inverse[0] == inverse[2] != inverse[1]

    other = data.with_weights([0.1, 0.2, 0.3])
    assert data.weights.tolist() == [1, 1, 1]
    assert np.allclose(other.weights, [0.1, 0.2, 0.3])


def test_subset_and_decode():
    data = DiscreteData.from_frame(small_frame())
    sub = data.subset([1])
    assert sub.names == ['B'] and sub.n_vars == 1
    assert data.to_frame()['A'].tolist() == ['b', 'a', 'b', 'c']
