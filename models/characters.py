"""Crawler, inventory, mob, and episode records read by the turn engine."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class AbilityScores(BaseModel):
    """The five crawler ability scores."""
    strength: int = 10
    dexterity: int = 10
    constitution: int = 10
    intelligence: int = 10
    charisma: int = 10


class Crawler(BaseModel):
    """A participant's profile. HP and mana here are base values."""
    id: str
    name: str
    race: str = "Human"
    job: str = "Adventurer"
    level: int = 1
    hp: int
    max_hp: int
    mana: int = 0
    max_mana: int = 0
    ability_scores: AbilityScores = AbilityScores()
    gold: int = 0
    avatar: str | None = None


class InventoryItem(BaseModel):
    """An item a crawler carries; equipped items apply their modifiers."""
    id: str
    name: str
    description: str = ""
    equipped: bool = False
    modifiers: dict[str, int] = {}      # e.g. {"max_hp": 10, "charisma": 5}


class InventoryEntry(BaseModel):
    """One crawler's inventory document."""
    crawler_id: str
    items: list[InventoryItem] = []


class EffectiveStats(BaseModel):
    """Base attributes plus every equipped modifier."""
    strength: int
    dexterity: int
    constitution: int
    intelligence: int
    charisma: int
    hp: int
    max_hp: int
    mana: int
    max_mana: int


class MobKind(str, Enum):
    """Mob template categories."""
    NORMAL = "normal"
    BOSS = "boss"
    NPC = "npc"


class Mob(BaseModel):
    """A mob template. Several placements may share one template."""
    id: str
    name: str
    level: int = 1
    type: MobKind = MobKind.NORMAL
    description: str = ""
    hidden: bool = False
    image: str | None = None
    hit_points: int | None = None


class MobPlacement(BaseModel):
    """A mob placed on a map."""
    mob_id: str
    map_id: str | None = None
    x: float = 0.0                  # Percentage of map width (0-100)
    y: float = 0.0                  # Percentage of map height (0-100)
    scale: float = 1.0


class PlacementHP(BaseModel):
    """HP carried over from a previous encounter for one placement."""
    mob_id: str
    map_id: str | None = None
    placement_index: int | None = None
    hp: int


class Episode(BaseModel):
    """A scenario: its maps, mob placements, and starting clock."""
    id: str
    name: str
    description: str = ""
    map_ids: list[str] = []
    mob_placements: list[MobPlacement] = []
    starting_game_time: datetime | None = None
