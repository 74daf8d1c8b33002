import networkx as nx
import numpy as np
import pytest

from src.causallatent.cl_types import CITestType
from src.causallatent.latent.dependency import DependencyExtractor
from src.causallatent.latent.trigger import TRIGGER_1, TRIGGER_2, TriggerMatcher, LatentDetect, default_triggers, \
    dseparation_fingerprint, label_permutations, latent_matrix, project_hidden, read_triggers, write_triggers
from src.causallatent.scoring.ci_tests import ChiSquareTest, DSeparationTest
from src.causallatent.gen.generate import GSType, gen_graph_structure, HIDDEN

from data_for_testing import balanced_independent_data, empty_graph, trigger_data


def test_label_permutations():
    perms = label_permutations(TRIGGER_1)
    assert len(perms) == 24
    assert np.array_equal(perms[0], TRIGGER_1)
    # swapping (1, 2) and (3, 4) maps the second trigger onto itself
    assert len(label_permutations(TRIGGER_2)) == 12
    assert all(P[:, 0].sum() == 0 and P[0].sum() == 2 for P in perms)


def test_trigger_fingerprint_matches_itself():
    matcher = TriggerMatcher(error_rate=0.005)
    res = matcher.match(dseparation_fingerprint(TRIGGER_1))
    assert res['is_matched']
    assert res['mismatches'] == 0
    assert res['trigger_index'] == 0
    assert np.array_equal(res['structure'], TRIGGER_1)
    assert res['total_entries'] == 16 * 11

    res2 = matcher.match(dseparation_fingerprint(TRIGGER_2))
    assert res2['is_matched'] and res2['mismatches'] == 0


def test_project_hidden():
    P = project_hidden(TRIGGER_1)
    assert P.shape == (4, 4)
    assert {(int(i), int(j)) for i, j in zip(*np.nonzero(P))} == {(0, 1), (0, 3), (1, 2)}
    res = TriggerMatcher().match(dseparation_fingerprint(TRIGGER_1))
    assert np.array_equal(res['observed_structure'], P)


def test_independent_data_matches_no_trigger():
    matcher = TriggerMatcher()
    fp_oracle = DependencyExtractor(DSeparationTest(empty_graph(4))).fingerprint(4)
    fp_data = DependencyExtractor(ChiSquareTest(balanced_independent_data(), 0.05)).fingerprint(4)
    for fp in [fp_oracle, fp_data]:
        for t_ix in range(len(matcher.triggers)):
            res = matcher.match(fp, trigger_index=t_ix)
            assert not res['is_matched']
            assert res['mismatches'] > 0


def test_matching_is_deterministic():
    G = nx.DiGraph([(0, 1), (1, 2), (2, 3), (0, 3)])
    fp = DependencyExtractor(DSeparationTest(G)).fingerprint(4)
    r0, r1 = TriggerMatcher().match(fp), TriggerMatcher().match(fp)
    assert r0['mismatches'] == r1['mismatches']
    assert r0['trigger_index'] == r1['trigger_index']
    assert np.array_equal(r0['structure'], r1['structure'])


def test_latent_detect_is_deterministic_on_sampled_data():
    data, _ = trigger_data(n_rows=500)
    r0 = LatentDetect(data, ci_type=CITestType.CHISQ).run()
    r1 = LatentDetect(data, ci_type=CITestType.CHISQ).run()
    for key in ['is_matched', 'mismatches', 'trigger_index', 'matched_index', 'remaining_index']:
        assert r0[key] == r1[key]
    if r0['is_matched']:
        assert np.array_equal(r0['structure'], r1['structure'])
    else:
        assert r0['structure'] is None and r1['structure'] is None
        assert np.array_equal(r0['marginal'], r1['marginal'])


def test_trigger_file(tmp_path):
    path = tmp_path / 'triggers.txt'
    write_triggers(path, default_triggers())
    lines = path.read_text().splitlines()
    assert lines[0] == '00011'
    assert lines[5] == '*' * 15
    back = read_triggers(path)
    assert len(back) == 2 and np.array_equal(back[0], TRIGGER_1) and np.array_equal(back[1], TRIGGER_2)

    path.write_text('0001\n' + '*' * 15 + '\n')
    with pytest.raises(ValueError):
        read_triggers(path)


def test_latent_matrix():
    L = latent_matrix(TRIGGER_1, [0, 2, 3, 5], 6)
    assert L.shape == (7, 7)
    assert L[0][4] == 1 and L[0][6] == 1  # H -> observed 3, 4
    assert L[1][3] == 1 and L[1][6] == 1 and L[3][4] == 1
    assert L.sum() == TRIGGER_1.sum()


def test_latent_detect_with_oracle():
    G = gen_graph_structure(GSType.TRIGGER_1)
    G.add_node(4)
    data = balanced_independent_data(n_vars=5, reps=1)
    detector = LatentDetect(data, ci_type=CITestType.DSEP, graph=G)
    res = detector.run()
    assert res['is_matched'] and res['mismatches'] == 0
    assert res['matched_index'] == [0, 1, 2, 3]
    assert res['remaining_index'] == [4]
    L = detector.latent_matrix()
    assert L[0][3] == 1 and L[0][4] == 1 and L[0][5] == 0
    assert HIDDEN in G


def test_latent_detect_no_match_keeps_marginal():
    detector = LatentDetect(balanced_independent_data(n_vars=4, reps=5))
    res = detector.run()
    assert not res['is_matched']
    assert res['marginal'].shape == (4, 4) and res['marginal'].sum() == 0


def test_latent_detect_node_bounds():
    with pytest.raises(ValueError):
        LatentDetect(balanced_independent_data(n_vars=3))
