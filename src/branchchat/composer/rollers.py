"""Randomized instruction generators (dice rolls and custom choices)."""

from __future__ import annotations

import random
from typing import TYPE_CHECKING, Generic, TypeVar

from branchchat.models.settings import CustomChoiceRoll, DiceRoll

if TYPE_CHECKING:
    from collections.abc import Sequence

    from branchchat.models.settings import MarkerSettings

DEFAULT_START_MARKER = "["
DEFAULT_END_MARKER = "]"

ConfigT = TypeVar("ConfigT", DiceRoll, CustomChoiceRoll)


class InstructionRoller(Generic[ConfigT]):
    """Render enabled instruction configs into a hidden text block.

    With markers enabled the block is ``start + "label:result ..." + end + "\\n"``.
    Without markers it is the bare comma-joined results, with a trailing comma
    when user text follows.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def result(self, config: ConfigT) -> list[str]:
        raise NotImplementedError

    def render(
        self,
        configs: Sequence[ConfigT],
        markers: MarkerSettings,
        user_text: str,
    ) -> str:
        active = [config for config in configs if config.is_enabled]
        if not active:
            return ""

        if markers.is_enabled:
            labelled = [
                f"{config.instruction_text}:{','.join(self.result(config))}" for config in active
            ]
            start = markers.start or DEFAULT_START_MARKER
            end = markers.end or DEFAULT_END_MARKER
            return f"{start}{' '.join(labelled)}{end}\n"

        results: list[str] = []
        for config in active:
            results.extend(self.result(config))
        joined = ",".join(results)
        return f"{joined}," if user_text else joined


class DiceRoller(InstructionRoller[DiceRoll]):
    """Roll ``dice_count`` uniform integers in ``[1, dice_type]``."""

    def roll(self, count: int, faces: int) -> list[int]:
        return [self._rng.randint(1, faces) for _ in range(count)]

    def result(self, config: DiceRoll) -> list[str]:
        return [str(value) for value in self.roll(config.dice_count, config.dice_type)]


class ChoiceRoller(InstructionRoller[CustomChoiceRoll]):
    """Pick one option uniformly at random."""

    def pick(self, options: Sequence[str]) -> str:
        if not options:
            return ""
        return self._rng.choice(list(options))

    def result(self, config: CustomChoiceRoll) -> list[str]:
        return [self.pick(config.options)]
