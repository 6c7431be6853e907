"""Namespace include/exclude filtering."""

from typing import Iterable, List

from .models import ClusterLimitPolicy


def in_scope(name: str, include: Iterable[str], exclude: Iterable[str]) -> bool:
    """
    Check if a namespace is targeted by the given filters.

    An empty include list means every namespace. Exclude always wins.

    Examples:
        in_scope("a", [], ["kube-system"]) -> True
        in_scope("a", ["a"], ["a"]) -> False
    """
    include = set(include or ())
    if include and name not in include:
        return False
    return name not in set(exclude or ())


def target_namespaces(policy: ClusterLimitPolicy, names: Iterable[str]) -> List[str]:
    """Return the sorted set of namespaces the policy applies to."""
    return sorted({
        name for name in names
        if in_scope(name, policy.include_namespaces, policy.exclude_namespaces)
    })
