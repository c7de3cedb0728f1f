"""FastAPI app entry point for the Crawlhub session server."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.admin import router as admin_router
from api.combat import router as combat_router
from api.turns import router as turns_router
from api.ws import router as ws_router
from config import LOG_LEVEL, ROOM_ID, STORE_BACKEND, STORE_FILE, load_secret
from engine.session import SessionHub
from store.base import DocumentStore, StoreUnavailableError
from store.json_file import JsonFileDocumentStore
from store.memory import InMemoryDocumentStore


def setup_logging(level: str = LOG_LEVEL) -> None:
    """Configure root logging at the given level name."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


logger = logging.getLogger(__name__)


def create_store(backend: str = STORE_BACKEND) -> DocumentStore:
    """Build the shared document store for the configured backend."""
    if backend == "memory":
        return InMemoryDocumentStore()
    if backend == "file":
        return JsonFileDocumentStore(STORE_FILE)
    raise ValueError(f"Unknown store backend: {backend}")


setup_logging()
load_secret()

app = FastAPI(
    title="Crawlhub",
    description="Shared turn engine for tabletop crawl sessions",
    version="0.1.0",
)

app.state.hub = SessionHub(create_store(), room_id=ROOM_ID)
logger.info(f"Session hub ready (backend={STORE_BACKEND}, room={ROOM_ID})")


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    """Store outages are retryable; report them as 503."""
    return JSONResponse(status_code=503, content={"detail": str(exc)})


app.include_router(combat_router, prefix="/session", tags=["Combat"])
app.include_router(turns_router, prefix="/session", tags=["Turns"])
app.include_router(ws_router, prefix="/session", tags=["WebSocket"])
app.include_router(admin_router, prefix="/admin", tags=["Admin"])


@app.get("/")
def root() -> dict:
    """Root endpoint returning server info."""
    return {"name": "Crawlhub", "version": "0.1.0", "status": "running"}


@app.get("/health")
def health() -> dict:
    """Health check endpoint."""
    return {"healthy": True}
