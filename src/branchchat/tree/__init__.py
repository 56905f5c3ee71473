"""Conversation tree navigation."""

from branchchat.tree.navigator import (
    MAX_PATH_HOPS,
    Direction,
    SiblingInfo,
    active_path,
    adjacent_sibling,
    reattachment_after_deletion,
    sibling_info,
)

__all__ = [
    "MAX_PATH_HOPS",
    "Direction",
    "SiblingInfo",
    "active_path",
    "adjacent_sibling",
    "reattachment_after_deletion",
    "sibling_info",
]
