"""Noncombat turn, game clock, and dice roll models."""

from datetime import datetime

from pydantic import BaseModel, model_validator

from config import DEFAULT_MAX_ROLLS


class NoncombatTurnState(BaseModel):
    """Exploration turn counter and per-crawler roll budgets."""
    turn_number: int = 0
    rolls_used: dict[str, int] = {}     # crawler_id -> rolls spent this turn
    max_rolls: int = DEFAULT_MAX_ROLLS

    @model_validator(mode="after")
    def _repair(self) -> "NoncombatTurnState":
        if self.turn_number < 0:
            self.turn_number = 0
        if self.max_rolls < 1:
            self.max_rolls = DEFAULT_MAX_ROLLS
        self.rolls_used = {pid: n for pid, n in self.rolls_used.items() if n > 0}
        return self


class GameClockState(BaseModel):
    """The shared in-game clock."""
    game_time: datetime


class DiceRollEntry(BaseModel):
    """A logged dice roll, optionally a stat check."""
    id: str
    crawler_id: str
    crawler_name: str
    timestamp: datetime
    notation: str
    rolls: list[int]
    modifier: int = 0
    total: int
    stat: str | None = None             # e.g. "dexterity" for a stat check
    noncombat_roll: bool = False        # Spent one of the crawler's turn rolls
