"""Pure navigation functions over a snapshot of conversation nodes.

All functions take a ``Mapping[str, Node]`` keyed by node id. Mapping order is
significant: it is the insertion order used to break timestamp ties.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from collections.abc import Mapping

    from branchchat.models.nodes import Node

MAX_PATH_HOPS = 10_000

Direction = Literal["prev", "next"]


@dataclass(frozen=True)
class SiblingInfo:
    """Position of a node among the replies to its parent (1-based)."""

    current: int
    total: int
    has_prev: bool
    has_next: bool


def _timestamp(node: Node) -> str:
    return node.timestamp


def _find_root(nodes: Mapping[str, Node]) -> Node | None:
    roots = [node for node in nodes.values() if node.parent_id is None]
    if len(roots) == 1:
        return roots[0]
    candidates = roots or list(nodes.values())
    if not candidates:
        return None
    return min(candidates, key=_timestamp)


def active_path(nodes: Mapping[str, Node]) -> list[Node]:
    """Return the root-to-leaf path that follows ``active_child_id`` links."""
    root = _find_root(nodes)
    if root is None:
        return []

    path = [root]
    seen = {root.id}
    current = root
    hops = 0
    while current.active_child_id and hops < MAX_PATH_HOPS:
        child = nodes.get(current.active_child_id)
        if child is None or child.id in seen:
            break
        path.append(child)
        seen.add(child.id)
        current = child
        hops += 1
    return path


def _siblings(node: Node, nodes: Mapping[str, Node]) -> list[Node]:
    return sorted(
        (candidate for candidate in nodes.values() if candidate.parent_id == node.parent_id),
        key=_timestamp,
    )


def sibling_info(node_id: str, nodes: Mapping[str, Node]) -> SiblingInfo:
    """Compute the pagination info for a node among its siblings."""
    node = nodes.get(node_id)
    if node is None:
        return SiblingInfo(current=1, total=1, has_prev=False, has_next=False)

    siblings = _siblings(node, nodes)
    index = next(i for i, sibling in enumerate(siblings) if sibling.id == node_id)
    return SiblingInfo(
        current=index + 1,
        total=len(siblings),
        has_prev=index > 0,
        has_next=index < len(siblings) - 1,
    )


def adjacent_sibling(node_id: str, direction: Direction, nodes: Mapping[str, Node]) -> str | None:
    """Return the id of the previous or next sibling, if there is one.

    Roots have no siblings under this contract.
    """
    node = nodes.get(node_id)
    if node is None or node.parent_id is None:
        return None

    siblings = _siblings(node, nodes)
    index = next(i for i, sibling in enumerate(siblings) if sibling.id == node_id)
    new_index = index - 1 if direction == "prev" else index + 1
    if new_index < 0 or new_index >= len(siblings):
        return None
    return siblings[new_index].id


def reattachment_after_deletion(
    parent_id: str, deleted_id: str, nodes: Mapping[str, Node]
) -> str | None:
    """Return the sibling the parent should point at once ``deleted_id`` is gone.

    Remaining siblings are ordered newest first, so the latest alternative wins.
    """
    remaining = sorted(
        (
            node
            for node in nodes.values()
            if node.parent_id == parent_id and node.id != deleted_id
        ),
        key=_timestamp,
        reverse=True,
    )
    return remaining[0].id if remaining else None
