"""Noncombat turn tracker: exploration turns and per-crawler roll budgets."""

from __future__ import annotations

from config import CLOCK_COLLECTION, CLOCK_DOC_ID, NONCOMBAT_TURN_HOURS, TURNS_COLLECTION, TURNS_DOC_ID
from engine.rest import advance_clock
from models.turns import GameClockState, NoncombatTurnState
from models.writes import Write


def _replace(state: NoncombatTurnState) -> Write:
    return Write.replace(TURNS_COLLECTION, TURNS_DOC_ID, state.model_dump(mode="json"))


def rolls_used(state: NoncombatTurnState | None, participant_id: str) -> int:
    if state is None:
        return 0
    return state.rolls_used.get(participant_id, 0)


def rolls_remaining(state: NoncombatTurnState | None, participant_id: str) -> int:
    """Rolls the participant may still spend this turn."""
    state = state or NoncombatTurnState()
    return max(0, state.max_rolls - rolls_used(state, participant_id))


def all_rolls_spent(state: NoncombatTurnState | None, participant_ids: list[str]) -> bool:
    """Whether every listed participant has exhausted their budget.

    Derived on read, never stored. False when no participants are listed.
    """
    if not participant_ids:
        return False
    state = state or NoncombatTurnState()
    return all(rolls_used(state, pid) >= state.max_rolls for pid in participant_ids)


def start_noncombat_turn(
    state: NoncombatTurnState | None,
    clock: GameClockState | None,
) -> list[Write]:
    """Open the next exploration turn: clear roll budgets and advance the clock an hour."""
    state = state or NoncombatTurnState()
    next_state = NoncombatTurnState(
        turn_number=state.turn_number + 1,
        rolls_used={},
        max_rolls=state.max_rolls,
    )
    new_clock = advance_clock(clock, NONCOMBAT_TURN_HOURS)
    return [
        _replace(next_state),
        Write.replace(CLOCK_COLLECTION, CLOCK_DOC_ID, new_clock.model_dump(mode="json")),
    ]


def record_roll(state: NoncombatTurnState | None, participant_id: str) -> list[Write]:
    """Spend one of the participant's rolls; [] once the budget is exhausted.

    Only the participant's own counter is written, so rolls from different
    participants never overwrite each other.
    """
    if "." in participant_id:
        return []
    if state is None:
        return [_replace(NoncombatTurnState(rolls_used={participant_id: 1}))]
    used = rolls_used(state, participant_id)
    if used >= state.max_rolls:
        return []
    return [Write.patch(TURNS_COLLECTION, TURNS_DOC_ID, {f"rolls_used.{participant_id}": used + 1})]


def reset_noncombat_turns(state: NoncombatTurnState | None) -> list[Write]:
    """Back to turn 0 with empty budgets; the roll limit is kept."""
    max_rolls = state.max_rolls if state is not None else NoncombatTurnState().max_rolls
    return [_replace(NoncombatTurnState(max_rolls=max_rolls))]


def set_max_rolls(state: NoncombatTurnState | None, max_rolls: int) -> list[Write]:
    """Change the per-turn roll budget. Must be at least 1."""
    if max_rolls < 1:
        return []
    if state is None:
        return [_replace(NoncombatTurnState(max_rolls=max_rolls))]
    return [Write.patch(TURNS_COLLECTION, TURNS_DOC_ID, {"max_rolls": max_rolls})]
