"""Combat state machine: encounter start, initiative, turns, HP, and retirement.

Every transition is a pure function of the current ``CombatState`` snapshot
that returns the store writes to apply. An empty list means the guard
rejected the call; nothing should be written.

Writes that touch a single combatant are field-scoped patches addressed
by combatant id (``roster.<id>.<field>``), so two clients writing to
different combatants never clobber each other. Transitions that depend on
the global order (confirm, advance, add, remove) are facilitator-only and
carry absolute values, never increments.
"""

from __future__ import annotations

import random
from typing import Any, Iterable

from config import COMBAT_COLLECTION, COMBAT_DOC_ID, INITIATIVE_DIE, PLACEMENT_HP_COLLECTION
from engine.dice import roll_initiative
from engine.encounter import placement_key
from models.combat import (
    AdversaryEntry,
    Combatant,
    CombatantType,
    CombatPhase,
    CombatState,
    ParticipantEntry,
    Tracked,
    TurnMarker,
)
from models.characters import PlacementHP
from models.writes import DELETE_FIELD, Write, WriteKind
from store.base import apply_patch


def _patch(fields: dict[str, Any]) -> list[Write]:
    return [Write.patch(COMBAT_COLLECTION, COMBAT_DOC_ID, fields)]


def _field(combatant_id: str, name: str) -> str:
    return f"roster.{combatant_id}.{name}"


def is_live(state: CombatState | None) -> bool:
    """Whether an encounter is currently running."""
    return state is not None and state.is_live


def _participant(entry: ParticipantEntry) -> Combatant:
    return Combatant(
        id=entry.id,
        type=CombatantType.PARTICIPANT,
        name=entry.name,
        avatar=entry.avatar,
    )


def _adversary(entry: AdversaryEntry, rng: random.Random | None) -> Combatant:
    # Adversaries never wait on manual input.
    return Combatant(
        id=entry.combat_id,
        type=CombatantType.ADVERSARY,
        name=entry.name,
        avatar=entry.avatar,
        initiative=roll_initiative(rng),
        has_rolled_initiative=True,
        nominal_hp=entry.hit_points,
        source_id=entry.mob_id,
        map_id=entry.map_id,
        placement_index=entry.placement_index,
    )


def _new_combatants(
    existing: Iterable[str],
    participants: Iterable[ParticipantEntry],
    adversaries: Iterable[AdversaryEntry],
    rng: random.Random | None,
) -> dict[str, Combatant]:
    """Build combatants for entries whose ids are not already taken."""
    taken = set(existing)
    created: dict[str, Combatant] = {}
    for entry in participants:
        if entry.id not in taken and entry.id not in created:
            created[entry.id] = _participant(entry)
    for entry in adversaries:
        if entry.combat_id not in taken and entry.combat_id not in created:
            created[entry.combat_id] = _adversary(entry, rng)
    return created


# ---------------------------------------------------------------------------
# Read access
# ---------------------------------------------------------------------------

def current_combatant(state: CombatState | None) -> Combatant | None:
    """The combatant whose turn it is, or None outside the combat phase."""
    if not is_live(state) or state.phase != CombatPhase.COMBAT or not state.order:
        return None
    return state.roster[state.order[state.current_turn_index]]


def all_initiative_rolled(state: CombatState | None) -> bool:
    """Whether every combatant has rolled. False for an empty roster."""
    if state is None or not state.roster:
        return False
    return all(c.has_rolled_initiative for c in state.roster.values())


def turn_marker(state: CombatState) -> TurnMarker:
    """The (round, index) pair identifying the current turn."""
    return TurnMarker(
        combat_round=state.combat_round,
        current_turn_index=state.current_turn_index,
    )


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

def start_combat(
    state: CombatState | None,
    participants: list[ParticipantEntry],
    adversaries: list[AdversaryEntry],
    episode_id: str | None = None,
    rng: random.Random | None = None,
    previous_count: int = 0,
) -> list[Write]:
    """Begin a new encounter in the initiative phase.

    Participants enter unrolled; adversaries roll a d20 immediately. The
    retired document is replaced, keeping only its ``combat_count``.
    ``previous_count`` supplies that count when the stored document could
    not be read.

    Returns:
        A whole-document replace, or [] if both lists are empty or an
        encounter is already running.
    """
    if not participants and not adversaries:
        return []
    if is_live(state):
        return []

    roster = _new_combatants((), participants, adversaries, rng)
    new_state = CombatState(
        active=True,
        phase=CombatPhase.INITIATIVE,
        episode_id=episode_id,
        roster=roster,
        order=list(roster),
        current_turn_index=0,
        combat_round=1,
        combat_count=(state.combat_count if state else previous_count) + 1,
    )
    return [Write.replace(COMBAT_COLLECTION, COMBAT_DOC_ID, new_state.model_dump(mode="json"))]


def end_combat(state: CombatState | None) -> list[Write]:
    """Retire the encounter, persisting tracked adversary HP to placements.

    Placement writes come first and carry absolute values, so retrying
    after a partial failure converges on the same result. Succeeds from
    any phase.
    """
    if state is None:
        return []
    writes = []
    for combatant in state.combatants:
        if not combatant.is_adversary or not isinstance(combatant.hp, Tracked):
            continue
        if combatant.source_id is None:
            continue
        record = PlacementHP(
            mob_id=combatant.source_id,
            map_id=combatant.map_id,
            placement_index=combatant.placement_index,
            hp=combatant.hp.value,
        )
        writes.append(Write.replace(
            PLACEMENT_HP_COLLECTION,
            placement_key(combatant.map_id, combatant.source_id, combatant.placement_index),
            record.model_dump(mode="json"),
        ))
    writes.extend(cancel_combat(state))
    return writes


def cancel_combat(state: CombatState | None) -> list[Write]:
    """Retire the encounter without persisting any HP. Succeeds from any phase."""
    if state is None:
        return []
    return _patch({"active": False, "phase": CombatPhase.ENDED.value})


def retire_document(document: dict[str, Any] | None) -> list[Write]:
    """Retire a stored encounter that no longer validates as a CombatState.

    Only the lifecycle fields are written; the rest of the document is left
    for inspection.
    """
    if document is None:
        return []
    return _patch({"active": False, "phase": CombatPhase.ENDED.value})


def stored_combat_count(document: dict[str, Any] | None) -> int:
    """Best-effort ``combat_count`` of a stored encounter document."""
    if document is None:
        return 0
    try:
        return max(int(document.get("combat_count", 0)), 0)
    except (TypeError, ValueError):
        return 0


# ---------------------------------------------------------------------------
# Initiative
# ---------------------------------------------------------------------------

def record_initiative(state: CombatState | None, combatant_id: str, value: int) -> list[Write]:
    """Record one combatant's initiative roll as a patch on that combatant only.

    Allowed throughout the initiative phase (re-rolls overwrite), and in
    the combat phase for combatants who joined mid-encounter and have not
    rolled yet; their place in the order does not change.
    """
    if not is_live(state) or combatant_id not in state.roster:
        return []
    if not 1 <= value <= INITIATIVE_DIE:
        return []
    combatant = state.roster[combatant_id]
    if state.phase == CombatPhase.COMBAT and combatant.has_rolled_initiative:
        return []
    if state.phase not in (CombatPhase.INITIATIVE, CombatPhase.COMBAT):
        return []
    return _patch({
        _field(combatant_id, "initiative"): value,
        _field(combatant_id, "has_rolled_initiative"): True,
    })


def sort_by_initiative(state: CombatState) -> list[str]:
    """Turn order: descending initiative, ties keep their current relative order."""
    return sorted(state.order, key=lambda cid: -state.roster[cid].initiative)


def confirm_initiative(state: CombatState | None) -> list[Write]:
    """Lock the turn order and enter the combat phase.

    Guard: initiative phase, non-empty roster, everyone rolled.
    """
    if not is_live(state) or state.phase != CombatPhase.INITIATIVE:
        return []
    if not all_initiative_rolled(state):
        return []
    return _patch({
        "order": sort_by_initiative(state),
        "current_turn_index": 0,
        "combat_round": 1,
        "phase": CombatPhase.COMBAT.value,
    })


# ---------------------------------------------------------------------------
# Turn advance
# ---------------------------------------------------------------------------

def advance_pointer(index: int, combat_round: int, count: int) -> tuple[int, int, bool]:
    """Move the turn pointer one step.

    Returns:
        (new_index, new_round, wrapped). ``wrapped`` is True when the
        pointer returned to the top of the order and a new round began.
    """
    new_index = (index + 1) % count
    wrapped = new_index == 0
    return new_index, combat_round + 1 if wrapped else combat_round, wrapped


def round_boundary_fields(state: CombatState) -> dict[str, Any]:
    """Patch fields that reset every combatant's action economy."""
    fields: dict[str, Any] = {}
    for cid in state.order:
        fields[_field(cid, "has_used_action")] = False
        fields[_field(cid, "has_used_bonus_action")] = False
    return fields


def advance_combat_turn(state: CombatState | None, expected: TurnMarker | None = None) -> list[Write]:
    """Advance to the next combatant, starting a new round on wrap.

    Args:
        state: The latest snapshot.
        expected: The turn the caller saw when it decided to advance. If
            the snapshot has already moved past it (the advance was
            applied by an earlier delivery of the same intent), nothing
            is written.

    Returns:
        A patch with absolute index/round values, or [] when not in the
        combat phase, the roster is empty, or ``expected`` is stale.
    """
    if not is_live(state) or state.phase != CombatPhase.COMBAT:
        return []
    if not state.order:
        return []
    if expected is not None and expected != turn_marker(state):
        return []

    index, combat_round, wrapped = advance_pointer(
        state.current_turn_index, state.combat_round, len(state.order)
    )
    fields: dict[str, Any] = {"current_turn_index": index, "combat_round": combat_round}
    if wrapped:
        fields.update(round_boundary_fields(state))
    return _patch(fields)


# ---------------------------------------------------------------------------
# Roster changes
# ---------------------------------------------------------------------------

def add_combatants(
    state: CombatState | None,
    participants: list[ParticipantEntry],
    adversaries: list[AdversaryEntry],
    rng: random.Random | None = None,
) -> list[Write]:
    """Append combatants to a running encounter without re-sorting.

    Adversaries roll on insertion; participants enter unrolled. Ids
    already present are skipped.
    """
    if not is_live(state) or state.phase not in (CombatPhase.INITIATIVE, CombatPhase.COMBAT):
        return []
    created = _new_combatants(state.roster, participants, adversaries, rng)
    if not created:
        return []
    fields: dict[str, Any] = {
        f"roster.{cid}": combatant.model_dump(mode="json")
        for cid, combatant in created.items()
    }
    fields["order"] = state.order + list(created)
    return _patch(fields)


def remove_combatant(state: CombatState | None, combatant_id: str) -> list[Write]:
    """Drop a combatant, shifting the pointer so the logical next turn is kept.

    If the removed entry sat at or before the pointer, the pointer moves
    back one (never below 0).
    """
    if not is_live(state) or combatant_id not in state.roster:
        return []
    position = state.order.index(combatant_id)
    order = [cid for cid in state.order if cid != combatant_id]
    index = state.current_turn_index
    if position <= index:
        index = max(0, index - 1)
    index = min(index, len(order) - 1) if order else 0
    return _patch({
        f"roster.{combatant_id}": DELETE_FIELD,
        "order": order,
        "current_turn_index": index,
    })


# ---------------------------------------------------------------------------
# Actions and HP
# ---------------------------------------------------------------------------

def record_action(state: CombatState | None, combatant_id: str, bonus: bool = False) -> list[Write]:
    """Spend a combatant's action (or bonus action) for this round."""
    if not is_live(state) or state.phase != CombatPhase.COMBAT:
        return []
    combatant = state.roster.get(combatant_id)
    if combatant is None:
        return []
    name = "has_used_bonus_action" if bonus else "has_used_action"
    if getattr(combatant, name):
        return []
    return _patch({_field(combatant_id, name): True})


def _set_hp(combatant_id: str, value: int) -> list[Write]:
    return _patch({_field(combatant_id, "hp"): Tracked(value=value).model_dump(mode="json")})


def apply_damage(state: CombatState | None, target_id: str, amount: int) -> list[Write]:
    """Subtract damage from an adversary (negative amounts heal).

    The first damage instantiates per-instance tracking from the nominal
    template HP. The result is floored at 0 and never capped above.
    """
    if not is_live(state) or state.phase != CombatPhase.COMBAT:
        return []
    target = state.roster.get(target_id)
    if target is None or not target.is_adversary:
        return []
    if isinstance(target.hp, Tracked):
        base = target.hp.value
    else:
        base = target.nominal_hp or 0
    return _set_hp(target_id, max(0, base - amount))


def override_hp(state: CombatState | None, combatant_id: str, value: int) -> list[Write]:
    """Set an adversary's HP outright. May exceed the nominal maximum."""
    if not is_live(state) or value < 0:
        return []
    target = state.roster.get(combatant_id)
    if target is None or not target.is_adversary:
        return []
    return _set_hp(combatant_id, value)


# ---------------------------------------------------------------------------
# Local preview
# ---------------------------------------------------------------------------

def apply_local(state: CombatState | None, writes: list[Write]) -> CombatState | None:
    """Apply combat-document writes to a snapshot, as an optimistic local view.

    Writes to other documents are ignored. The settled state still comes
    from the store.
    """
    document = state.model_dump(mode="json") if state is not None else None
    for write in writes:
        if write.collection != COMBAT_COLLECTION or write.doc_id != COMBAT_DOC_ID:
            continue
        if write.kind == WriteKind.REPLACE:
            document = dict(write.fields)
        elif write.kind == WriteKind.DELETE:
            document = None
        elif document is not None:
            document = apply_patch(document, write.fields)
    return CombatState.model_validate(document) if document is not None else None
