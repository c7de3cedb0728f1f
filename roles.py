"""Actor resolution for HTTP and WebSocket requests.

This is a capability gate, not authentication: the crawler id is taken at
face value from ``X-Crawler-Id``, and facilitator rights are granted to
requests carrying the configured ``X-Facilitator-Secret``.
"""

from fastapi import HTTPException, Request

import config
from models.actors import Actor, Role


def actor_from_headers(crawler_id: str | None, facilitator_secret: str | None) -> Actor:
    """Build the actor for a request's identity headers."""
    if facilitator_secret is not None and facilitator_secret == config.FACILITATOR_SECRET:
        return Actor(id=crawler_id, role=Role.FACILITATOR)
    return Actor(id=crawler_id, role=Role.PARTICIPANT)


def get_actor(request: Request) -> Actor:
    """FastAPI dependency: the actor behind this request.

    Usage:
        @router.post("/endpoint")
        def endpoint(actor: Actor = Depends(get_actor)):
            ...
    """
    return actor_from_headers(
        request.headers.get("X-Crawler-Id"),
        request.headers.get("X-Facilitator-Secret"),
    )


def require_facilitator(request: Request) -> Actor:
    """FastAPI dependency: like ``get_actor`` but rejects non-facilitators.

    Raises:
        HTTPException 403: If the facilitator secret is missing or wrong.
    """
    actor = get_actor(request)
    if not actor.is_facilitator:
        raise HTTPException(status_code=403, detail="Facilitator only")
    return actor


def require_crawler(request: Request) -> Actor:
    """FastAPI dependency: an actor that names a crawler.

    Raises:
        HTTPException 400: If ``X-Crawler-Id`` is missing.
    """
    actor = get_actor(request)
    if actor.id is None:
        raise HTTPException(status_code=400, detail="Missing X-Crawler-Id header")
    return actor
