from __future__ import annotations

from branchchat.tree.navigator import (
    MAX_PATH_HOPS,
    SiblingInfo,
    active_path,
    adjacent_sibling,
    reattachment_after_deletion,
    sibling_info,
)

from tests.helpers import make_node


def _index(*nodes):
    return {node.id: node for node in nodes}


def test_active_path_follows_active_children() -> None:
    nodes = _index(
        make_node("u1", active_child_id="m1"),
        make_node("m1", "u1", speaker="model", active_child_id="u2"),
        make_node("m1b", "u1", speaker="model"),
        make_node("u2", "m1"),
    )
    assert [node.id for node in active_path(nodes)] == ["u1", "m1", "u2"]


def test_active_path_empty_and_missing_child() -> None:
    assert active_path({}) == []
    nodes = _index(make_node("u1", active_child_id="gone"))
    assert [node.id for node in active_path(nodes)] == ["u1"]


def test_active_path_stops_on_cycle() -> None:
    nodes = _index(
        make_node("a", active_child_id="b"),
        make_node("b", "a", active_child_id="c"),
        make_node("c", "b", active_child_id="a"),
    )
    path = [node.id for node in active_path(nodes)]
    assert path == ["a", "b", "c"]
    assert len(set(path)) == len(path)


def test_active_path_respects_hop_bound() -> None:
    count = MAX_PATH_HOPS + 50
    nodes = {}
    for i in range(count):
        nodes[f"n{i}"] = make_node(
            f"n{i}",
            f"n{i - 1}" if i else None,
            active_child_id=f"n{i + 1}" if i + 1 < count else None,
        )
    assert len(active_path(nodes)) == MAX_PATH_HOPS + 1


def test_active_path_picks_earliest_of_several_roots() -> None:
    nodes = _index(
        make_node("late", timestamp="2024-01-02T00:00:00+00:00"),
        make_node("early", timestamp="2024-01-01T00:00:00+00:00"),
    )
    assert active_path(nodes)[0].id == "early"


def test_sibling_info_orders_by_timestamp_then_insertion() -> None:
    nodes = _index(
        make_node("p"),
        make_node("c", "p", timestamp="2024-01-03T00:00:00+00:00"),
        make_node("a", "p", timestamp="2024-01-02T00:00:00+00:00"),
        make_node("b", "p", timestamp="2024-01-02T00:00:00+00:00"),
    )
    assert sibling_info("a", nodes) == SiblingInfo(1, 3, has_prev=False, has_next=True)
    assert sibling_info("b", nodes) == SiblingInfo(2, 3, has_prev=True, has_next=True)
    assert sibling_info("c", nodes) == SiblingInfo(3, 3, has_prev=True, has_next=False)


def test_sibling_info_unknown_id() -> None:
    assert sibling_info("missing", {}) == SiblingInfo(1, 1, has_prev=False, has_next=False)


def test_adjacent_sibling_boundaries() -> None:
    nodes = _index(
        make_node("p"),
        make_node("a", "p", timestamp="2024-01-02T00:00:00+00:00"),
        make_node("b", "p", timestamp="2024-01-03T00:00:00+00:00"),
    )
    assert adjacent_sibling("a", "next", nodes) == "b"
    assert adjacent_sibling("b", "prev", nodes) == "a"
    assert adjacent_sibling("a", "prev", nodes) is None
    assert adjacent_sibling("b", "next", nodes) is None
    assert adjacent_sibling("p", "next", nodes) is None
    assert adjacent_sibling("missing", "next", nodes) is None


def test_reattachment_prefers_newest_remaining_sibling() -> None:
    nodes = _index(
        make_node("p"),
        make_node("old", "p", timestamp="2024-01-02T00:00:00+00:00"),
        make_node("new", "p", timestamp="2024-01-04T00:00:00+00:00"),
        make_node("gone", "p", timestamp="2024-01-05T00:00:00+00:00"),
    )
    assert reattachment_after_deletion("p", "gone", nodes) == "new"
    assert reattachment_after_deletion("new", "x", nodes) is None
