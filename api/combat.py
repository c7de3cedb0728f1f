"""Encounter endpoints: start, initiative, turns, actions, HP, and retirement."""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from engine import combat
from engine.session import SessionHub
from models.actors import Actor
from models.characters import MobPlacement
from models.combat import AdversaryEntry, TurnMarker
from roles import get_actor, require_crawler, require_facilitator

router = APIRouter()


class StartCombatRequest(BaseModel):
    """Request body for starting an encounter."""
    participant_ids: list[str] = []
    adversaries: list[AdversaryEntry] = []
    episode_id: str | None = None
    from_episode: bool = False              # Build adversaries from the episode's placements
    runtime_placements: list[MobPlacement] = []


class InitiativeRequest(BaseModel):
    """A rolled initiative value, or None to roll on the combatant's behalf."""
    combatant_id: str
    value: int | None = None


class CombatantRequest(BaseModel):
    """Request body naming one combatant."""
    combatant_id: str


class AdvanceRequest(BaseModel):
    """Optional turn the caller saw; a stale marker makes the advance a no-op."""
    expected: TurnMarker | None = None


class AddCombatantsRequest(BaseModel):
    """Request body for mid-encounter joins."""
    participant_ids: list[str] = []
    adversaries: list[AdversaryEntry] = []


class DamageRequest(BaseModel):
    """Damage dealt to an adversary. Negative amounts heal."""
    target_id: str
    amount: int


class OverrideHPRequest(BaseModel):
    """Absolute HP for an adversary."""
    combatant_id: str
    value: int = Field(ge=0)


class IntentResponse(BaseModel):
    """Response after an intent was applied."""
    applied: bool


def _get_hub(request: Request) -> SessionHub:
    """Get the session hub from app state."""
    return request.app.state.hub


def _applied(ok: bool, detail: str) -> IntentResponse:
    if not ok:
        raise HTTPException(status_code=409, detail=detail)
    return IntentResponse(applied=True)


def _check_may_act(actor: Actor, combatant_id: str) -> None:
    if not actor.may_act_for(combatant_id):
        raise HTTPException(status_code=403, detail="You may only act for your own combatant")


@router.get("/combat")
def get_combat(request: Request, episode_id: str | None = Query(None)) -> dict:
    """Current encounter snapshot, or null if none is visible for the loaded episode."""
    state = _get_hub(request).combat_state()
    if state is None or (episode_id is not None and not state.matches_episode(episode_id)):
        return {"combat": None}
    current = combat.current_combatant(state)
    return {
        "combat": state.model_dump(mode="json"),
        "combatants": [c.model_dump(mode="json") for c in state.combatants],
        "current_combatant_id": current.id if current else None,
        "all_initiative_rolled": combat.all_initiative_rolled(state),
        "turn": combat.turn_marker(state).model_dump(),
    }


@router.get("/combat/adversaries", response_model=list[AdversaryEntry])
def get_adversary_entries(request: Request, episode_id: str = Query(...)) -> list[AdversaryEntry]:
    """Combat entries for the mobs placed in an episode."""
    return _get_hub(request).adversary_entries(episode_id)


@router.post("/combat/start", response_model=IntentResponse)
def start_combat(
    body: StartCombatRequest,
    request: Request,
    actor: Actor = Depends(require_facilitator),
) -> IntentResponse:
    """Start an encounter (facilitator only)."""
    hub = _get_hub(request)
    if body.from_episode:
        if body.episode_id is None:
            raise HTTPException(status_code=400, detail="from_episode requires episode_id")
        ok = hub.start_combat_from_episode(
            actor, body.episode_id, body.participant_ids, body.runtime_placements
        )
    else:
        ok = hub.start_combat(actor, body.participant_ids, body.adversaries, body.episode_id)
    return _applied(ok, "Cannot start combat: an encounter is running or no combatants were given")


@router.post("/combat/initiative", response_model=IntentResponse)
def record_initiative(
    body: InitiativeRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> IntentResponse:
    """Record a combatant's initiative roll. Participants may only roll for themselves."""
    _check_may_act(actor, body.combatant_id)
    hub = _get_hub(request)
    if body.value is None:
        ok = hub.roll_initiative_for(actor, body.combatant_id)
    else:
        ok = hub.record_initiative(actor, body.combatant_id, body.value)
    return _applied(ok, "Initiative not accepted")


@router.post("/combat/confirm", response_model=IntentResponse)
def confirm_initiative(request: Request, actor: Actor = Depends(require_facilitator)) -> IntentResponse:
    """Lock the turn order once everyone has rolled."""
    return _applied(_get_hub(request).confirm_initiative(actor), "Not every combatant has rolled")


@router.post("/combat/advance", response_model=IntentResponse)
def advance_turn(
    request: Request,
    body: AdvanceRequest | None = None,
    actor: Actor = Depends(require_facilitator),
) -> IntentResponse:
    """Advance to the next combatant."""
    expected = body.expected if body is not None else None
    ok = _get_hub(request).advance_combat_turn(actor, expected=expected)
    return _applied(ok, "Turn not advanced")


@router.post("/combat/action", response_model=IntentResponse)
def record_action(
    body: CombatantRequest,
    request: Request,
    actor: Actor = Depends(require_crawler),
) -> IntentResponse:
    """Spend the combatant's action for this round."""
    _check_may_act(actor, body.combatant_id)
    return _applied(_get_hub(request).record_action(actor, body.combatant_id), "Action already used")


@router.post("/combat/bonus-action", response_model=IntentResponse)
def record_bonus_action(
    body: CombatantRequest,
    request: Request,
    actor: Actor = Depends(require_crawler),
) -> IntentResponse:
    """Spend the combatant's bonus action for this round."""
    _check_may_act(actor, body.combatant_id)
    ok = _get_hub(request).record_bonus_action(actor, body.combatant_id)
    return _applied(ok, "Bonus action already used")


@router.post("/combat/damage", response_model=IntentResponse)
def apply_damage(
    body: DamageRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> IntentResponse:
    """Deal damage to an adversary."""
    ok = _get_hub(request).apply_damage(actor, body.target_id, body.amount)
    return _applied(ok, "Damage not applied")


@router.post("/combat/hp", response_model=IntentResponse)
def override_hp(
    body: OverrideHPRequest,
    request: Request,
    actor: Actor = Depends(require_facilitator),
) -> IntentResponse:
    """Set an adversary's HP outright."""
    ok = _get_hub(request).override_hp(actor, body.combatant_id, body.value)
    return _applied(ok, "HP not overridden")


@router.post("/combat/add", response_model=IntentResponse)
def add_combatants(
    body: AddCombatantsRequest,
    request: Request,
    actor: Actor = Depends(require_facilitator),
) -> IntentResponse:
    """Add combatants to the running encounter."""
    ok = _get_hub(request).add_combatants(actor, body.participant_ids, body.adversaries)
    return _applied(ok, "No combatants added")


@router.post("/combat/remove", response_model=IntentResponse)
def remove_combatant(
    body: CombatantRequest,
    request: Request,
    actor: Actor = Depends(require_facilitator),
) -> IntentResponse:
    """Remove a combatant from the running encounter."""
    ok = _get_hub(request).remove_combatant(actor, body.combatant_id)
    return _applied(ok, "Combatant not found")


@router.post("/combat/end", response_model=IntentResponse)
def end_combat(request: Request, actor: Actor = Depends(require_facilitator)) -> IntentResponse:
    """End the encounter, keeping adversary damage for the next one."""
    return _applied(_get_hub(request).end_combat(actor), "No encounter to end")


@router.post("/combat/cancel", response_model=IntentResponse)
def cancel_combat(request: Request, actor: Actor = Depends(require_facilitator)) -> IntentResponse:
    """Abort the encounter without keeping any damage."""
    return _applied(_get_hub(request).cancel_combat(actor), "No encounter to cancel")
