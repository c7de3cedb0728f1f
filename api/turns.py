"""Noncombat turn, rest, clock, and dice endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from engine.session import SessionHub
from models.actors import Actor
from models.turns import DiceRollEntry
from roles import get_actor, require_crawler, require_facilitator

router = APIRouter()


class RollRequest(BaseModel):
    """Request body for spending a noncombat roll."""
    crawler_id: str


class MaxRollsRequest(BaseModel):
    """Request body for changing the per-turn roll budget."""
    max_rolls: int = Field(ge=1)


class RestRequest(BaseModel):
    """Crawlers taking a rest."""
    crawler_ids: list[str]


class ClockRequest(BaseModel):
    """New absolute game time."""
    game_time: datetime


class DiceRollRequest(BaseModel):
    """Either dice notation or an ability name for a stat check."""
    crawler_id: str
    notation: str | None = None
    stat: str | None = None


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


@router.get("/turns")
def get_turns(request: Request) -> dict:
    """Noncombat turn state with each known crawler's remaining rolls."""
    hub = _get_hub(request)
    state = hub.noncombat_state()
    crawler_ids = list(hub.crawlers())
    return {
        "turns": state.model_dump(mode="json") if state else None,
        "rolls_remaining": {cid: hub.rolls_remaining(cid) for cid in crawler_ids},
        "all_rolls_spent": hub.all_rolls_spent(crawler_ids),
    }


@router.post("/turns/start", response_model=IntentResponse)
def start_noncombat_turn(request: Request, actor: Actor = Depends(require_facilitator)) -> IntentResponse:
    """Open the next exploration turn (advances the clock one hour)."""
    return _applied(_get_hub(request).start_noncombat_turn(actor), "Turn not started")


@router.post("/turns/roll", response_model=IntentResponse)
def record_roll(
    body: RollRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> IntentResponse:
    """Spend one of a crawler's rolls for this turn."""
    if not actor.may_act_for(body.crawler_id):
        raise HTTPException(status_code=403, detail="You may only roll for yourself")
    return _applied(_get_hub(request).record_roll(actor, body.crawler_id), "No rolls remaining")


@router.post("/turns/reset", response_model=IntentResponse)
def reset_turns(request: Request, actor: Actor = Depends(require_facilitator)) -> IntentResponse:
    """Reset the turn counter and every roll budget."""
    return _applied(_get_hub(request).reset_noncombat_turns(actor), "Turns not reset")


@router.put("/turns/max-rolls", response_model=IntentResponse)
def set_max_rolls(
    body: MaxRollsRequest,
    request: Request,
    actor: Actor = Depends(require_facilitator),
) -> IntentResponse:
    """Change the per-turn roll budget."""
    return _applied(_get_hub(request).set_max_rolls(actor, body.max_rolls), "Budget not changed")


@router.post("/rest/{kind}", response_model=IntentResponse)
def perform_rest(
    kind: str,
    body: RestRequest,
    request: Request,
    actor: Actor = Depends(require_facilitator),
) -> IntentResponse:
    """Short (+4h, half HP/mana) or long (+8h, full HP/mana) rest."""
    hub = _get_hub(request)
    if kind == "short":
        ok = hub.perform_short_rest(actor, body.crawler_ids)
    elif kind == "long":
        ok = hub.perform_long_rest(actor, body.crawler_ids)
    else:
        raise HTTPException(status_code=404, detail=f"Unknown rest '{kind}'")
    return _applied(ok, "No known crawlers to rest")


@router.get("/clock")
def get_clock(request: Request, episode_id: str | None = Query(None)) -> dict:
    """Game time, plus days since the episode started when one is given."""
    hub = _get_hub(request)
    clock = hub.clock_state()
    return {
        "game_time": clock.game_time.isoformat() if clock else None,
        "days_since_start": hub.days_since_start(episode_id) if episode_id else None,
    }


@router.put("/clock", response_model=IntentResponse)
def set_clock(
    body: ClockRequest,
    request: Request,
    actor: Actor = Depends(require_facilitator),
) -> IntentResponse:
    """Set the game clock."""
    return _applied(_get_hub(request).set_game_clock(actor, body.game_time), "Clock not set")


@router.post("/rolls", response_model=DiceRollEntry)
def roll_dice(
    body: DiceRollRequest,
    request: Request,
    actor: Actor = Depends(require_crawler),
) -> DiceRollEntry:
    """Roll dice or a stat check. Outside combat this spends a noncombat roll."""
    if not actor.may_act_for(body.crawler_id):
        raise HTTPException(status_code=403, detail="You may only roll for yourself")
    hub = _get_hub(request)
    if body.stat is not None:
        entry = hub.stat_check(actor, body.crawler_id, body.stat)
    elif body.notation is not None:
        try:
            entry = hub.record_dice_roll(actor, body.crawler_id, body.notation)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    else:
        raise HTTPException(status_code=400, detail="Give either notation or stat")
    if entry is None:
        raise HTTPException(status_code=409, detail="Roll refused")
    return entry


@router.get("/rolls", response_model=list[DiceRollEntry])
def get_rolls(request: Request) -> list[DiceRollEntry]:
    """Every logged dice roll, oldest first."""
    return _get_hub(request).dice_rolls()
