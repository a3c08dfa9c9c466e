"""
Tests for payee merge clustering.
"""

import random
from collections import Counter

import pytest

from payee_engine.clustering import PayeeClusterEngine, build_cluster, compute_payee_hash
from payee_engine.ledger import Payee

PAYEES = [
    Payee("p1", "Starbucks"),
    Payee("p2", "STARBUCKS"),
    Payee("p3", "Starbucks #1234"),
    Payee("p4", "Blue Bottle Coffee"),
    Payee("p5", "Blue Bottle Coffee Oakland"),
    Payee("p6", "Philz Coffee"),
    Payee("p7", "Coffee Bean"),
    Payee("p8", "Shell Oil 5732"),
    Payee("p9", "Shell Oil 12"),
]


@pytest.fixture
def engine():
    return PayeeClusterEngine()


def _ids(clusters):
    return [c.payee_ids for c in clusters]


def test_default_threshold_groups(engine):
    clusters = engine.cluster("b1", PAYEES, min_score=92)

    assert _ids(clusters) == [["p1", "p2", "p3"], ["p4", "p5"]]
    assert clusters[0].cluster_id == "p1|p2|p3"
    assert all(c.budget_id == "b1" for c in clusters)
    # Coffee shops that only share "coffee" stay apart
    assert not any({"p6", "p7"} & set(c.payee_ids) for c in clusters)


def test_lower_threshold_merges_more(engine):
    clusters = engine.cluster("b1", PAYEES, min_score=80)

    assert _ids(clusters) == [["p1", "p2", "p3"], ["p4", "p5"], ["p8", "p9"]]


def test_clusters_partition_payees(engine):
    clusters = engine.cluster("b1", PAYEES, min_score=80)

    members = [pid for c in clusters for pid in c.payee_ids]
    assert len(members) == len(set(members))
    assert set(members) <= {p.id for p in PAYEES}
    assert all(c.size >= 2 for c in clusters)


def test_result_does_not_depend_on_input_order(engine):
    expected = [(c.cluster_id, c.group_hash) for c in engine.cluster("b1", PAYEES, 80)]

    rng = random.Random(7)
    for _ in range(5):
        shuffled = PAYEES[:]
        rng.shuffle(shuffled)
        result = engine.cluster("b1", shuffled, 80)
        assert [(c.cluster_id, c.group_hash) for c in result] == expected


def test_blank_names_never_cluster(engine):
    payees = [Payee("x1", "***"), Payee("x2", "!!!"), Payee("x3", "")]
    assert engine.cluster("b1", payees, 92) == []


def test_duplicate_ids_are_ignored(engine):
    payees = [Payee("p1", "Netflix"), Payee("p1", "Netflix"), Payee("p2", "NETFLIX")]
    clusters = engine.cluster("b1", payees, 92)
    assert _ids(clusters) == [["p1", "p2"]]


def test_noise_tokens(engine):
    assert engine.tokenize("amzn mktp us 2k3") == ["amzn", "mktp", "us"]
    assert engine.tokenize("7 eleven 1234") == ["7", "eleven"]
    # A name made only of noise keeps it
    assert engine.tokenize("12345") == ["12345"]
    assert engine.describe(Payee("p1", "Shell Oil #5732")).token_set == "oil shell"


def test_rarest_token_prefers_shared_tokens():
    frequency = Counter({"philz": 1, "coffee": 4, "zeta": 1})
    assert PayeeClusterEngine.rarest_token(["philz", "coffee"], frequency) == "coffee"
    assert PayeeClusterEngine.rarest_token(["zeta", "philz"], frequency) == "philz"
    assert PayeeClusterEngine.rarest_token([], frequency) is None


def test_weighted_similarity_bounds():
    weights = PayeeClusterEngine.token_weights(Counter({"a": 1, "b": 3, "c": 1}))
    assert PayeeClusterEngine.weighted_similarity({"a", "b"}, {"a", "b"}, weights) == 100
    assert PayeeClusterEngine.weighted_similarity({"a"}, {"c"}, weights) == 0
    assert 0 < PayeeClusterEngine.weighted_similarity({"a", "b"}, {"b", "c"}, weights) < 100


def test_cluster_identity_depends_only_on_members(engine):
    described = [engine.describe(p) for p in PAYEES[:3]]
    forward = build_cluster("b1", described)
    backward = build_cluster("b1", list(reversed(described)))

    assert forward.cluster_id == backward.cluster_id == "p1|p2|p3"
    assert forward.group_hash == backward.group_hash

    renamed = build_cluster("b1", [engine.describe(Payee("p1", "Starbucks Coffee"))] + described[1:])
    assert renamed.group_hash != forward.group_hash


def test_payee_hash_changes_with_names():
    assert compute_payee_hash(PAYEES) == compute_payee_hash(list(reversed(PAYEES)))
    renamed = PAYEES[:-1] + [Payee("p9", "Shell")]
    assert compute_payee_hash(renamed) != compute_payee_hash(PAYEES)
