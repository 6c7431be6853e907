"""Unit tests for namespace include/exclude filtering."""

import pytest

from clusterlimit.filters import in_scope, target_namespaces
from clusterlimit.models import ClusterLimitPolicy


@pytest.mark.parametrize("name, include, exclude, expected", [
    ("a", [], [], True),
    ("a", [], ["kube-system"], True),
    ("kube-system", [], ["kube-system"], False),
    ("a", ["a", "b"], [], True),
    ("c", ["a", "b"], [], False),
    ("a", ["a"], ["a"], False),
    ("c", ["a"], ["c"], False),
])
def test_in_scope(name, include, exclude, expected):
    assert in_scope(name, include, exclude) is expected


def test_exclude_wins_over_include():
    """A namespace in both lists is never targeted."""
    policy = ClusterLimitPolicy(
        name="global-limits",
        include_namespaces=["a", "b", "c"],
        exclude_namespaces=["b", "c"],
    )

    assert target_namespaces(policy, ["a", "b", "c", "d"]) == ["a"]


def test_target_namespaces_excludes_system():
    policy = ClusterLimitPolicy(name="global-limits", exclude_namespaces=["kube-system"])

    assert target_namespaces(policy, ["b", "kube-system", "a"]) == ["a", "b"]


def test_target_namespaces_ignores_unknown_includes():
    """Included namespaces that do not exist are not invented."""
    policy = ClusterLimitPolicy(name="global-limits", include_namespaces=["a", "missing"])

    assert target_namespaces(policy, ["a", "b"]) == ["a"]


def test_target_namespaces_deduplicates():
    policy = ClusterLimitPolicy(name="global-limits")

    assert target_namespaces(policy, ["a", "a", "b"]) == ["a", "b"]
