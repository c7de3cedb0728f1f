"""Facilitator endpoints for session setup: secret, reset, and reference records."""

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

import config
from config import (
    CRAWLERS_COLLECTION,
    EPISODES_COLLECTION,
    INVENTORY_COLLECTION,
    MOBS_COLLECTION,
    save_secret,
)
from engine.session import SessionHub
from models.actors import Actor
from models.characters import Crawler, EffectiveStats, Episode, InventoryEntry, InventoryItem, Mob
from roles import require_facilitator

router = APIRouter()


class ChangeSecretRequest(BaseModel):
    """Request body for changing the facilitator secret."""
    new_secret: str


class MessageResponse(BaseModel):
    """Plain confirmation message."""
    message: str


def _get_hub(request: Request) -> SessionHub:
    """Get the session hub from app state."""
    return request.app.state.hub


def _put(request: Request, actor: Actor, collection: str, doc_id: str, record: BaseModel) -> MessageResponse:
    if not _get_hub(request).put_record(actor, collection, doc_id, record):
        raise HTTPException(status_code=409, detail=f"{collection}/{doc_id} not written")
    return MessageResponse(message=f"{collection}/{doc_id} saved")


def _check_path_id(path_id: str, body_id: str) -> None:
    if path_id != body_id:
        raise HTTPException(status_code=400, detail=f"Path id '{path_id}' does not match body id '{body_id}'")


@router.put("/secret", response_model=MessageResponse)
def change_facilitator_secret(
    body: ChangeSecretRequest,
    actor: Actor = Depends(require_facilitator),
) -> MessageResponse:
    """Change the facilitator secret at runtime.

    Requires the current X-Facilitator-Secret header. The new secret takes
    effect immediately; subsequent requests must use it.
    """
    if not body.new_secret or len(body.new_secret) < 8:
        raise HTTPException(
            status_code=400,
            detail="New secret must be at least 8 characters",
        )

    config.FACILITATOR_SECRET = body.new_secret
    save_secret()
    return MessageResponse(message="Facilitator secret updated")


@router.post("/reset", response_model=MessageResponse)
def reset_session(request: Request, actor: Actor = Depends(require_facilitator)) -> MessageResponse:
    """Cancel any encounter and reset the noncombat tracker."""
    if not _get_hub(request).reset_session(actor):
        raise HTTPException(status_code=409, detail="Nothing to reset")
    return MessageResponse(message="Session reset")


@router.get("/crawlers")
def list_crawlers(request: Request) -> list[dict]:
    """All crawler records."""
    return [c.model_dump(mode="json") for c in _get_hub(request).crawlers().values()]


@router.put("/crawlers/{crawler_id}", response_model=MessageResponse)
def put_crawler(
    crawler_id: str,
    body: Crawler,
    request: Request,
    actor: Actor = Depends(require_facilitator),
) -> MessageResponse:
    """Create or replace a crawler record."""
    _check_path_id(crawler_id, body.id)
    return _put(request, actor, CRAWLERS_COLLECTION, crawler_id, body)


@router.get("/crawlers/{crawler_id}/stats", response_model=EffectiveStats)
def get_effective_stats(crawler_id: str, request: Request) -> EffectiveStats:
    """A crawler's stats with equipped item modifiers applied."""
    stats = _get_hub(request).effective_stats(crawler_id)
    if stats is None:
        raise HTTPException(status_code=404, detail=f"Crawler '{crawler_id}' not found")
    return stats


@router.put("/inventory/{crawler_id}", response_model=MessageResponse)
def put_inventory(
    crawler_id: str,
    items: list[InventoryItem],
    request: Request,
    actor: Actor = Depends(require_facilitator),
) -> MessageResponse:
    """Replace a crawler's inventory."""
    entry = InventoryEntry(crawler_id=crawler_id, items=items)
    return _put(request, actor, INVENTORY_COLLECTION, crawler_id, entry)


@router.put("/mobs/{mob_id}", response_model=MessageResponse)
def put_mob(
    mob_id: str,
    body: Mob,
    request: Request,
    actor: Actor = Depends(require_facilitator),
) -> MessageResponse:
    """Create or replace a mob template."""
    _check_path_id(mob_id, body.id)
    return _put(request, actor, MOBS_COLLECTION, mob_id, body)


@router.put("/episodes/{episode_id}", response_model=MessageResponse)
def put_episode(
    episode_id: str,
    body: Episode,
    request: Request,
    actor: Actor = Depends(require_facilitator),
) -> MessageResponse:
    """Create or replace an episode with its mob placements."""
    _check_path_id(episode_id, body.id)
    return _put(request, actor, EPISODES_COLLECTION, episode_id, body)
