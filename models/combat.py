"""Encounter models: combatants, hit point tracking, and the combat document."""

import logging
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, ValidationError, model_validator

from config import INITIATIVE_DIE

logger = logging.getLogger(__name__)


class CombatPhase(str, Enum):
    """Lifecycle phases of one encounter."""
    SETUP = "setup"
    INITIATIVE = "initiative"       # Waiting on initiative rolls
    COMBAT = "combat"               # Turn order is authoritative
    ENDED = "ended"                 # Retired, kept for history


ACTIVE_PHASES = (CombatPhase.SETUP, CombatPhase.INITIATIVE, CombatPhase.COMBAT)


class CombatantType(str, Enum):
    """Who controls a combatant."""
    PARTICIPANT = "participant"     # A crawler
    ADVERSARY = "adversary"         # A mob instance


class Untracked(BaseModel):
    """No per-instance HP yet; the template's nominal HP applies."""
    kind: Literal["untracked"] = "untracked"


class Tracked(BaseModel):
    """Per-instance HP, instantiated by first damage or an override."""
    kind: Literal["tracked"] = "tracked"
    value: int = 0

    @model_validator(mode="after")
    def _floor_at_zero(self) -> "Tracked":
        if self.value < 0:
            self.value = 0
        return self


HitPoints = Annotated[Union[Untracked, Tracked], Field(discriminator="kind")]


class Combatant(BaseModel):
    """A crawler or mob instance holding a place in the turn order."""
    id: str = Field(pattern=r"^[^.]+$")   # Used as a patch path segment
    type: CombatantType
    name: str
    avatar: str | None = None
    initiative: int = 0
    has_rolled_initiative: bool = False
    has_used_action: bool = False
    has_used_bonus_action: bool = False
    hp: HitPoints = Field(default_factory=Untracked)
    nominal_hp: int | None = None         # Template HP at encounter start
    source_id: str | None = None          # Mob template id
    map_id: str | None = None
    placement_index: int | None = None

    @property
    def is_adversary(self) -> bool:
        return self.type == CombatantType.ADVERSARY

    @property
    def current_hp(self) -> int | None:
        """HP to display: tracked value, else the nominal template HP."""
        if isinstance(self.hp, Tracked):
            return self.hp.value
        return self.nominal_hp

    @model_validator(mode="after")
    def _repair_initiative(self) -> "Combatant":
        if not self.has_rolled_initiative:
            self.initiative = 0
        else:
            self.initiative = min(max(self.initiative, 1), INITIATIVE_DIE)
        return self


class ParticipantEntry(BaseModel):
    """A crawler joining an encounter."""
    id: str = Field(pattern=r"^[^.]+$")
    name: str
    avatar: str | None = None


class AdversaryEntry(BaseModel):
    """A mob placement joining an encounter."""
    combat_id: str = Field(pattern=r"^[^.]+$")   # Synthetic per-instance id
    mob_id: str                     # Template id
    name: str                       # Display name, suffixed for duplicates
    hit_points: int | None = None
    avatar: str | None = None
    map_id: str | None = None
    placement_index: int | None = None


class TurnMarker(BaseModel):
    """The (round, index) a client observed, used to make advances replay-safe."""
    combat_round: int
    current_turn_index: int


class CombatState(BaseModel):
    """The live encounter document for one session.

    Combatants are kept in ``roster`` keyed by id so a single combatant's
    fields can be patched without rewriting its siblings; ``order`` holds
    the turn order.
    """
    active: bool = False
    phase: CombatPhase = CombatPhase.ENDED
    episode_id: str | None = None
    roster: dict[str, Combatant] = {}
    order: list[str] = []
    current_turn_index: int = 0
    combat_round: int = 1
    combat_count: int = 0

    @property
    def combatants(self) -> list[Combatant]:
        """Combatants in turn order."""
        return [self.roster[cid] for cid in self.order]

    @property
    def is_live(self) -> bool:
        return self.active and self.phase in ACTIVE_PHASES

    def matches_episode(self, episode_id: str | None) -> bool:
        """Whether a client with ``episode_id`` loaded should show this encounter.

        An encounter started without an episode is shown everywhere.
        """
        return self.episode_id is None or self.episode_id == episode_id

    @model_validator(mode="before")
    @classmethod
    def _drop_partial_entries(cls, data: Any) -> Any:
        # A patch racing a removal can leave behind a fragment such as
        # {"initiative": 12, "has_rolled_initiative": true}. Entries are
        # checked one at a time so one bad entry never hides the encounter.
        if not isinstance(data, dict) or not isinstance(data.get("roster"), dict):
            return data
        roster = {}
        for cid, entry in data["roster"].items():
            if isinstance(entry, dict):
                try:
                    entry = Combatant.model_validate(entry)
                except ValidationError as e:
                    logger.warning(f"Dropping unreadable combatant entry '{cid}': {e}")
                    continue
            if isinstance(entry, Combatant) and entry.id != cid:
                logger.warning(f"Dropping combatant entry '{cid}' stored under the wrong id")
                continue
            roster[cid] = entry
        return {**data, "roster": roster}

    @model_validator(mode="after")
    def _repair(self) -> "CombatState":
        seen: set[str] = set()
        order = []
        for cid in self.order:
            if cid in self.roster and cid not in seen:
                order.append(cid)
                seen.add(cid)
        order.extend(cid for cid in self.roster if cid not in seen)
        self.order = order

        if self.combat_round < 1:
            self.combat_round = 1
        if self.combat_count < 0:
            self.combat_count = 0
        if not order:
            self.current_turn_index = 0
        else:
            self.current_turn_index = min(max(self.current_turn_index, 0), len(order) - 1)
        return self
