"""Set-diff of desired against observed RoleBindings.

Bindings are matched on their identity key ``(name, namespace)``. The plan
is computed in a fixed order, each step feeding the next:

1. orphans:   observed bindings with no desired counterpart (deleted)
2. additions: desired bindings with no remaining observed counterpart (created)
3. updates:   desired bindings whose counterpart differs in role reference
              or subject set (deleted and recreated)

Everything here is pure; applying the plan is the reconciler's job.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable
from dataclasses import dataclass, field

from .models import RoleBinding, Subject


class MatchNotFoundError(Exception):
    """Raised when a desired binding has no counterpart where one must exist."""

    def __init__(self, binding: RoleBinding) -> None:
        super().__init__(f"unable to find matching rolebinding for {binding}")
        self.binding = binding


@dataclass
class ReconcilePlan:
    """Operations needed to converge the cluster on the desired state."""

    orphans: list[RoleBinding] = field(default_factory=list)
    additions: list[RoleBinding] = field(default_factory=list)
    updates: list[RoleBinding] = field(default_factory=list)
    # Bindings left untouched because their namespace failed to resolve
    held: list[RoleBinding] = field(default_factory=list)
    unmatched: list[MatchNotFoundError] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.orphans or self.additions or self.updates)

    def summary(self) -> dict[str, int]:
        return {
            "orphans": len(self.orphans),
            "additions": len(self.additions),
            "updates": len(self.updates),
            "held": len(self.held),
            "unmatched": len(self.unmatched),
        }


def diff(base: Iterable[RoleBinding], bindings: Iterable[RoleBinding]) -> list[RoleBinding]:
    """Return the elements of ``bindings`` whose key does not appear in ``base``."""
    base_keys = {binding.key for binding in base}
    return [binding for binding in bindings if binding.key not in base_keys]


def has_different_subjects(s1: Iterable[Subject], s2: Iterable[Subject]) -> bool:
    """Compare subject lists as sets of names; order is not significant."""
    return {subject.name for subject in s1} != {subject.name for subject in s2}


def needs_update(desired: RoleBinding, current: RoleBinding) -> bool:
    if desired.role_ref != current.role_ref:
        return True
    return has_different_subjects(desired.subjects, current.subjects)


def role_bindings_to_update(
    desired: Iterable[RoleBinding],
    current: list[RoleBinding],
) -> tuple[list[RoleBinding], list[MatchNotFoundError]]:
    """Select desired bindings that differ from their current counterpart.

    Returns:
        The bindings to update, and one error per desired binding that had
        no counterpart in ``current`` (those are skipped).
    """
    by_key = {binding.key: binding for binding in current}
    updated: list[RoleBinding] = []
    unmatched: list[MatchNotFoundError] = []

    for binding in desired:
        match = by_key.get(binding.key)
        if match is None:
            unmatched.append(MatchNotFoundError(binding))
            continue
        if needs_update(binding, match):
            updated.append(binding)

    return updated, unmatched


def plan(
    desired: list[RoleBinding],
    current: list[RoleBinding],
    held_namespaces: Collection[str] = frozenset(),
) -> ReconcilePlan:
    """Compute the orphans, additions, and updates for one cycle.

    Args:
        desired: Bindings computed from the tenant declarations.
        current: Managed bindings observed in the cluster.
        held_namespaces: Namespaces whose declaration could not be resolved
            this cycle. Their observed bindings are neither deleted nor
            updated until resolution succeeds again.
    """
    result = ReconcilePlan()

    held = [binding for binding in current if binding.namespace in held_namespaces]
    candidates = [binding for binding in current if binding.namespace not in held_namespaces]
    result.held = held

    result.orphans = diff(desired, candidates)
    remaining = diff(result.orphans, candidates)

    result.additions = diff(remaining, desired)
    working = remaining + result.additions

    result.updates, result.unmatched = role_bindings_to_update(desired, working)
    return result
