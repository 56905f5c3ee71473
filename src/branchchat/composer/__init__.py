"""Message composition: hidden instruction injection and payload rendering."""

from branchchat.composer.composer import (
    ComposedMessage,
    MessageComposer,
    attachment_parts,
    parse_key_values,
)
from branchchat.composer.hidden import (
    HIDDEN_SEPARATOR,
    extract_visible,
    join_hidden,
    merge_hidden,
    split_hidden,
    strip_separator,
)
from branchchat.composer.rollers import ChoiceRoller, DiceRoller, InstructionRoller

__all__ = [
    "HIDDEN_SEPARATOR",
    "ChoiceRoller",
    "ComposedMessage",
    "DiceRoller",
    "InstructionRoller",
    "MessageComposer",
    "attachment_parts",
    "extract_visible",
    "join_hidden",
    "merge_hidden",
    "parse_key_values",
    "split_hidden",
    "strip_separator",
]
