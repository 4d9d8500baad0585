from __future__ import annotations

from collections.abc import Callable, Iterable
from enum import StrEnum
from typing import Any, Protocol, TypeVar

from app.domain.results import ErrorCode, ValidationResult

ParentLookup = Callable[[str], str | None]


class NodeKind(StrEnum):
    DEPARTMENT = "department"
    USER = "user"


def would_create_cycle(
    candidate_id: str,
    proposed_parent_id: str | None,
    get_parent_id: ParentLookup,
) -> bool:
    """Return True when pointing ``candidate_id`` at ``proposed_parent_id`` closes a loop.

    Walks upward from the proposed parent. ``get_parent_id`` returns None for a
    root or an unknown id, which ends the walk.
    """
    if proposed_parent_id is None:
        return False
    visited = {candidate_id}
    current: str | None = proposed_parent_id
    while current is not None:
        if current in visited:
            return True
        visited.add(current)
        current = get_parent_id(current)
    return False


def check_reparent(
    candidate_id: str,
    proposed_parent_id: str | None,
    get_parent_id: ParentLookup,
    *,
    self_reference_code: ErrorCode = ErrorCode.CIRCULAR_HIERARCHY,
) -> ValidationResult:
    if proposed_parent_id is None:
        return ValidationResult.ok()
    if candidate_id == proposed_parent_id:
        return ValidationResult.fail(self_reference_code, "a node cannot be its own parent")
    if would_create_cycle(candidate_id, proposed_parent_id, get_parent_id):
        return ValidationResult.fail(
            ErrorCode.CIRCULAR_HIERARCHY,
            "circular reference detected in hierarchy",
        )
    return ValidationResult.ok()


class ForestNode(Protocol):
    id: str
    parent_id: str | None
    children: list[Any]


N = TypeVar("N", bound=ForestNode)


def _mark_subtree(node: ForestNode, reached: set[str]) -> None:
    stack = [node]
    while stack:
        current = stack.pop()
        if current.id in reached:
            continue
        reached.add(current.id)
        stack.extend(current.children)


def build_forest(nodes: Iterable[N]) -> list[N]:
    """Link flat nodes under their parents and return the roots.

    Input order is kept for both roots and children. A node whose parent is
    missing from ``nodes`` is returned as a root. When stored rows already
    form a loop, the first loop member met in input order is detached from
    its parent and returned as a root, so every node appears exactly once.
    """
    items = list(nodes)
    index: dict[str, N] = {node.id: node for node in items}
    roots: list[N] = []
    for node in items:
        parent = index.get(node.parent_id) if node.parent_id is not None else None
        if parent is None or parent is node:
            roots.append(node)
            continue
        parent.children.append(node)

    reached: set[str] = set()
    for root in roots:
        _mark_subtree(root, reached)
    for node in items:
        if node.id in reached:
            continue
        # Unreached nodes always climb into a loop.
        seen: set[str] = set()
        entry = node
        while entry.id not in seen:
            seen.add(entry.id)
            entry = index[str(entry.parent_id)]
        parent = index[str(entry.parent_id)]
        parent.children[:] = [child for child in parent.children if child is not entry]
        roots.append(entry)
        _mark_subtree(entry, reached)
    return roots
