"""Dice rolling: notation rolls, initiative, and stat checks."""

import random
import re

from pydantic import BaseModel

from config import INITIATIVE_DIE


class DiceResult(BaseModel):
    """Result of a dice roll."""
    total: int
    rolls: list[int]
    modifier: int
    notation: str


def roll(notation: str, rng: random.Random | None = None) -> DiceResult:
    """Parse and roll dice notation like '2d6+3', '1d20', '4d6-1'.

    Args:
        notation: Dice notation string (e.g. "2d6+3").
        rng: Optional Random instance for seeded/testing rolls.

    Returns:
        DiceResult with total, individual rolls, modifier, and notation.

    Raises:
        ValueError: If the notation cannot be parsed.
    """
    rng = rng or random.Random()
    notation = notation.strip().lower()

    match = re.match(r"^(\d+)d(\d+)([+-]\d+)?$", notation)
    if not match:
        raise ValueError(f"Invalid dice notation: {notation}")

    num_dice = int(match.group(1))
    die_size = int(match.group(2))
    if num_dice < 1 or die_size < 1:
        raise ValueError(f"Invalid dice notation: {notation}")
    modifier = int(match.group(3)) if match.group(3) else 0

    rolls = [rng.randint(1, die_size) for _ in range(num_dice)]
    return DiceResult(
        total=sum(rolls) + modifier,
        rolls=rolls,
        modifier=modifier,
        notation=notation,
    )


def roll_initiative(rng: random.Random | None = None) -> int:
    """Roll initiative: a uniform draw from 1 to INITIATIVE_DIE, no modifiers."""
    rng = rng or random.Random()
    return rng.randint(1, INITIATIVE_DIE)


def ability_modifier(score: int) -> int:
    """Modifier for an ability score, e.g. +3 for 16 and -1 for 9."""
    return (score - 10) // 2


def stat_check(score: int, rng: random.Random | None = None) -> DiceResult:
    """Roll a d20 stat check against an (effective) ability score."""
    rng = rng or random.Random()
    raw = rng.randint(1, 20)
    modifier = ability_modifier(score)
    return DiceResult(
        total=raw + modifier,
        rolls=[raw],
        modifier=modifier,
        notation=f"1d20{modifier:+d}",
    )
