"""Session-wide configuration constants for the Crawlhub session server."""

import os
from datetime import datetime, timezone

DATA_DIR = os.environ.get("DATA_DIR", ".")  # Persistent data directory
STORE_FILE = os.path.join(DATA_DIR, "session_store.json")
STORE_BACKEND = os.environ.get("STORE_BACKEND", "file")  # "file" or "memory"
ROOM_ID = os.environ.get("ROOM_ID") or None  # Scopes every collection under rooms/<id>/
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# Turn economy
DEFAULT_MAX_ROLLS = 3            # Noncombat rolls per crawler per turn
INITIATIVE_DIE = 20              # Initiative is a straight d20, no modifiers

# Clock coupling, in in-game hours
NONCOMBAT_TURN_HOURS = 1
SHORT_REST_HOURS = 4
LONG_REST_HOURS = 8
SHORT_REST_FRACTION = 0.5        # Share of effective max HP/mana restored
LONG_REST_FRACTION = 1.0
DEFAULT_GAME_TIME = datetime.fromisoformat(
    os.environ.get("DEFAULT_GAME_TIME", "2024-01-01T08:00:00+00:00")
)
if DEFAULT_GAME_TIME.tzinfo is None:
    DEFAULT_GAME_TIME = DEFAULT_GAME_TIME.replace(tzinfo=timezone.utc)

# Collection and singleton document names in the shared store
COMBAT_COLLECTION = "combat"
COMBAT_DOC_ID = "current"
TURNS_COLLECTION = "noncombat_turns"
TURNS_DOC_ID = "state"
CLOCK_COLLECTION = "game_clock"
CLOCK_DOC_ID = "state"
CRAWLERS_COLLECTION = "crawlers"
INVENTORY_COLLECTION = "inventory"
MOBS_COLLECTION = "mobs"
EPISODES_COLLECTION = "episodes"
PLACEMENT_HP_COLLECTION = "placement_hp"
DICE_ROLLS_COLLECTION = "dice_rolls"

FACILITATOR_SECRET = os.environ.get("FACILITATOR_SECRET", "change-me-in-production")
SECRET_FILE = os.path.join(DATA_DIR, "facilitator_secret.txt")


def load_secret() -> None:
    """Load the facilitator secret from its persistent file, if it exists."""
    global FACILITATOR_SECRET
    if os.path.exists(SECRET_FILE):
        with open(SECRET_FILE) as f:
            stored = f.read().strip()
        if stored:
            FACILITATOR_SECRET = stored


def save_secret() -> None:
    """Persist the current facilitator secret to file (atomic write)."""
    tmp_path = SECRET_FILE + ".tmp"
    with open(tmp_path, "w") as f:
        f.write(FACILITATOR_SECRET)
    os.replace(tmp_path, SECRET_FILE)
