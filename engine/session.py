"""Session hub: the presenter-facing entry point to the turn engine.

Each intent reads the latest snapshot from the shared store, asks the pure
engine for the writes, and applies them. Calls return True when writes
were applied and False when a guard or role check rejected the intent.
Store failures propagate as ``StoreUnavailableError``; the snapshot is
never modified locally, so a failed call leaves nothing to undo.
"""

from __future__ import annotations

import logging
import random
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

from pydantic import BaseModel, ValidationError

from config import (
    CLOCK_COLLECTION,
    CLOCK_DOC_ID,
    COMBAT_COLLECTION,
    COMBAT_DOC_ID,
    CRAWLERS_COLLECTION,
    DICE_ROLLS_COLLECTION,
    EPISODES_COLLECTION,
    INVENTORY_COLLECTION,
    MOBS_COLLECTION,
    PLACEMENT_HP_COLLECTION,
    TURNS_COLLECTION,
    TURNS_DOC_ID,
)
from engine import combat, rest, turns
from engine.dice import DiceResult, roll, roll_initiative, stat_check
from engine.encounter import adversary_entries
from engine.inventory import ABILITY_KEYS, effective_stats
from models.actors import Actor
from models.characters import (
    Crawler,
    EffectiveStats,
    Episode,
    InventoryEntry,
    InventoryItem,
    Mob,
    MobPlacement,
    PlacementHP,
)
from models.combat import AdversaryEntry, CombatState, ParticipantEntry, TurnMarker
from models.turns import DiceRollEntry, GameClockState, NoncombatTurnState
from models.writes import Write
from store.base import DocumentNotFound, DocumentStore, SnapshotCallback, StoreUnavailableError, Subscription

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Collections pushed to presenters.
WATCHED_COLLECTIONS = (
    COMBAT_COLLECTION,
    TURNS_COLLECTION,
    CLOCK_COLLECTION,
    CRAWLERS_COLLECTION,
    DICE_ROLLS_COLLECTION,
)


class SessionHub:
    """Runs engine transitions for one session (optionally one room) against a store."""

    def __init__(
        self,
        store: DocumentStore,
        room_id: str | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.store = store
        self.room_id = room_id
        self.rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Store plumbing
    # ------------------------------------------------------------------

    def _scoped(self, collection: str) -> str:
        if self.room_id:
            return f"rooms/{self.room_id}/{collection}"
        return collection

    def _read(self, collection: str, doc_id: str, model: type[ModelT]) -> ModelT | None:
        document = self.store.get(self._scoped(collection), doc_id)
        if document is None:
            return None
        try:
            return model.model_validate(document)
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable document {collection}/{doc_id}: {e}")
            return None

    def _read_all(self, collection: str, model: type[ModelT]) -> dict[str, ModelT]:
        result = {}
        for doc_id, document in self.store.query(self._scoped(collection)).items():
            try:
                result[doc_id] = model.model_validate(document)
            except ValidationError as e:
                logger.warning(f"Ignoring unreadable document {collection}/{doc_id}: {e}")
        return result

    def _commit(self, operation: str, writes: list[Write]) -> bool:
        """Apply engine writes in order. [] means the guard rejected the intent."""
        if not writes:
            logger.info(f"{operation}: rejected by guard")
            return False
        try:
            for write in writes:
                self.store.apply(write.model_copy(update={"collection": self._scoped(write.collection)}))
        except StoreUnavailableError:
            logger.error(f"{operation}: store unavailable")
            raise
        except DocumentNotFound as e:
            # The document vanished between our read and our write.
            logger.warning(f"{operation}: {e}")
            return False
        logger.info(f"{operation}: applied {len(writes)} write(s)")
        return True

    def _facilitator_only(self, actor: Actor, operation: str) -> bool:
        if actor.is_facilitator:
            return True
        logger.warning(f"{operation}: refused for non-facilitator {actor.id!r}")
        return False

    def _self_or_facilitator(self, actor: Actor, combatant_id: str, operation: str) -> bool:
        if actor.may_act_for(combatant_id):
            return True
        logger.warning(f"{operation}: {actor.id!r} may not act for {combatant_id!r}")
        return False

    def subscribe(self, collection: str, callback: SnapshotCallback) -> Subscription:
        """Subscribe to a collection; the callback sees the unscoped collection name."""
        def _forward(_scoped_name: str, documents: dict[str, dict[str, Any]]) -> None:
            callback(collection, documents)

        return self.store.subscribe(self._scoped(collection), _forward)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def combat_state(self) -> CombatState | None:
        return self._read(COMBAT_COLLECTION, COMBAT_DOC_ID, CombatState)

    def _combat_document(self) -> dict[str, Any] | None:
        """The raw encounter document, for when it does not validate."""
        return self.store.get(self._scoped(COMBAT_COLLECTION), COMBAT_DOC_ID)

    def noncombat_state(self) -> NoncombatTurnState | None:
        return self._read(TURNS_COLLECTION, TURNS_DOC_ID, NoncombatTurnState)

    def clock_state(self) -> GameClockState | None:
        return self._read(CLOCK_COLLECTION, CLOCK_DOC_ID, GameClockState)

    def crawlers(self) -> dict[str, Crawler]:
        return self._read_all(CRAWLERS_COLLECTION, Crawler)

    def mobs(self) -> dict[str, Mob]:
        return self._read_all(MOBS_COLLECTION, Mob)

    def episode(self, episode_id: str) -> Episode | None:
        return self._read(EPISODES_COLLECTION, episode_id, Episode)

    def inventory_items(self, crawler_id: str) -> list[InventoryItem]:
        entry = self._read(INVENTORY_COLLECTION, crawler_id, InventoryEntry)
        return entry.items if entry is not None else []

    def effective_stats(self, crawler_id: str) -> EffectiveStats | None:
        """Base stats plus equipment, or None for an unknown crawler."""
        crawler = self._read(CRAWLERS_COLLECTION, crawler_id, Crawler)
        if crawler is None:
            return None
        return effective_stats(crawler, self.inventory_items(crawler_id))

    def adversary_entries(
        self,
        episode_id: str,
        runtime_placements: list[MobPlacement] | None = None,
    ) -> list[AdversaryEntry]:
        """Combat entries for every visible mob placed in the episode."""
        episode = self.episode(episode_id)
        placements = list(episode.mob_placements) if episode is not None else []
        placements.extend(runtime_placements or [])
        carried = self._read_all(PLACEMENT_HP_COLLECTION, PlacementHP)
        return adversary_entries(placements, self.mobs(), carried)

    def dice_rolls(self) -> list[DiceRollEntry]:
        """Every logged dice roll, oldest first."""
        rolls = self._read_all(DICE_ROLLS_COLLECTION, DiceRollEntry).values()
        return sorted(rolls, key=lambda r: r.timestamp)

    def days_since_start(self, episode_id: str) -> int | None:
        return rest.days_since_start(self.clock_state(), self.episode(episode_id))

    def _participant_entries(self, participant_ids: list[str]) -> list[ParticipantEntry]:
        crawlers = self.crawlers()
        entries = []
        for pid in participant_ids:
            if "." in pid:
                logger.warning(f"Skipping participant id {pid!r}: ids may not contain '.'")
                continue
            crawler = crawlers.get(pid)
            if crawler is None:
                entries.append(ParticipantEntry(id=pid, name=pid))
            else:
                entries.append(ParticipantEntry(id=pid, name=crawler.name, avatar=crawler.avatar))
        return entries

    # ------------------------------------------------------------------
    # Combat
    # ------------------------------------------------------------------

    def start_combat(
        self,
        actor: Actor,
        participant_ids: list[str],
        adversaries: list[AdversaryEntry],
        episode_id: str | None = None,
    ) -> bool:
        if not self._facilitator_only(actor, "start_combat"):
            return False
        state = self.combat_state()
        previous_count = combat.stored_combat_count(self._combat_document()) if state is None else 0
        writes = combat.start_combat(
            state,
            self._participant_entries(participant_ids),
            adversaries,
            episode_id=episode_id,
            rng=self.rng,
            previous_count=previous_count,
        )
        return self._commit("start_combat", writes)

    def start_combat_from_episode(
        self,
        actor: Actor,
        episode_id: str,
        participant_ids: list[str],
        runtime_placements: list[MobPlacement] | None = None,
    ) -> bool:
        """Start an encounter against every visible mob placed in the episode."""
        if not self._facilitator_only(actor, "start_combat"):
            return False
        entries = self.adversary_entries(episode_id, runtime_placements)
        return self.start_combat(actor, participant_ids, entries, episode_id=episode_id)

    def record_initiative(self, actor: Actor, combatant_id: str, value: int) -> bool:
        if not self._self_or_facilitator(actor, combatant_id, "record_initiative"):
            return False
        writes = combat.record_initiative(self.combat_state(), combatant_id, value)
        return self._commit(f"record_initiative {combatant_id}={value}", writes)

    def roll_initiative_for(self, actor: Actor, combatant_id: str) -> bool:
        """Roll a d20 on the combatant's behalf and record it."""
        return self.record_initiative(actor, combatant_id, roll_initiative(self.rng))

    def confirm_initiative(self, actor: Actor) -> bool:
        if not self._facilitator_only(actor, "confirm_initiative"):
            return False
        return self._commit("confirm_initiative", combat.confirm_initiative(self.combat_state()))

    def advance_combat_turn(self, actor: Actor, expected: TurnMarker | None = None) -> bool:
        if not self._facilitator_only(actor, "advance_combat_turn"):
            return False
        writes = combat.advance_combat_turn(self.combat_state(), expected=expected)
        return self._commit("advance_combat_turn", writes)

    def record_action(self, actor: Actor, combatant_id: str) -> bool:
        if not self._self_or_facilitator(actor, combatant_id, "record_action"):
            return False
        return self._commit(
            f"record_action {combatant_id}",
            combat.record_action(self.combat_state(), combatant_id),
        )

    def record_bonus_action(self, actor: Actor, combatant_id: str) -> bool:
        if not self._self_or_facilitator(actor, combatant_id, "record_bonus_action"):
            return False
        return self._commit(
            f"record_bonus_action {combatant_id}",
            combat.record_action(self.combat_state(), combatant_id, bonus=True),
        )

    def apply_damage(self, actor: Actor, target_id: str, amount: int) -> bool:
        writes = combat.apply_damage(self.combat_state(), target_id, amount)
        return self._commit(f"apply_damage {target_id} {amount}", writes)

    def override_hp(self, actor: Actor, combatant_id: str, value: int) -> bool:
        if not self._facilitator_only(actor, "override_hp"):
            return False
        writes = combat.override_hp(self.combat_state(), combatant_id, value)
        return self._commit(f"override_hp {combatant_id}={value}", writes)

    def add_combatants(
        self,
        actor: Actor,
        participant_ids: list[str] | None = None,
        adversaries: list[AdversaryEntry] | None = None,
    ) -> bool:
        if not self._facilitator_only(actor, "add_combatants"):
            return False
        writes = combat.add_combatants(
            self.combat_state(),
            self._participant_entries(participant_ids or []),
            adversaries or [],
            rng=self.rng,
        )
        return self._commit("add_combatants", writes)

    def remove_combatant(self, actor: Actor, combatant_id: str) -> bool:
        if not self._facilitator_only(actor, "remove_combatant"):
            return False
        writes = combat.remove_combatant(self.combat_state(), combatant_id)
        return self._commit(f"remove_combatant {combatant_id}", writes)

    def end_combat(self, actor: Actor) -> bool:
        if not self._facilitator_only(actor, "end_combat"):
            return False
        state = self.combat_state()
        if state is None:
            return self._commit("end_combat", combat.retire_document(self._combat_document()))
        return self._commit("end_combat", combat.end_combat(state))

    def cancel_combat(self, actor: Actor) -> bool:
        if not self._facilitator_only(actor, "cancel_combat"):
            return False
        state = self.combat_state()
        if state is None:
            return self._commit("cancel_combat", combat.retire_document(self._combat_document()))
        return self._commit("cancel_combat", combat.cancel_combat(state))

    # ------------------------------------------------------------------
    # Noncombat turns
    # ------------------------------------------------------------------

    def start_noncombat_turn(self, actor: Actor) -> bool:
        if not self._facilitator_only(actor, "start_noncombat_turn"):
            return False
        writes = turns.start_noncombat_turn(self.noncombat_state(), self.clock_state())
        return self._commit("start_noncombat_turn", writes)

    def record_roll(self, actor: Actor, participant_id: str) -> bool:
        if not self._self_or_facilitator(actor, participant_id, "record_roll"):
            return False
        writes = turns.record_roll(self.noncombat_state(), participant_id)
        return self._commit(f"record_roll {participant_id}", writes)

    def rolls_remaining(self, participant_id: str) -> int:
        return turns.rolls_remaining(self.noncombat_state(), participant_id)

    def all_rolls_spent(self, participant_ids: list[str] | None = None) -> bool:
        """Whether every listed crawler (default: every known crawler) is out of rolls."""
        if participant_ids is None:
            participant_ids = list(self.crawlers())
        return turns.all_rolls_spent(self.noncombat_state(), participant_ids)

    def reset_noncombat_turns(self, actor: Actor) -> bool:
        if not self._facilitator_only(actor, "reset_noncombat_turns"):
            return False
        return self._commit("reset_noncombat_turns", turns.reset_noncombat_turns(self.noncombat_state()))

    def set_max_rolls(self, actor: Actor, max_rolls: int) -> bool:
        if not self._facilitator_only(actor, "set_max_rolls"):
            return False
        return self._commit("set_max_rolls", turns.set_max_rolls(self.noncombat_state(), max_rolls))

    # ------------------------------------------------------------------
    # Rests and clock
    # ------------------------------------------------------------------

    def _rest(self, actor: Actor, crawler_ids: list[str], kind: rest.RestKind) -> bool:
        operation = f"{kind.value}_rest"
        if not self._facilitator_only(actor, operation):
            return False
        crawlers = {cid: c for cid, c in self.crawlers().items() if cid in crawler_ids}
        if not crawlers:
            logger.info(f"{operation}: no known crawlers in {crawler_ids}")
            return False
        stats = {
            cid: effective_stats(crawler, self.inventory_items(cid))
            for cid, crawler in crawlers.items()
        }
        outcome = rest.rest(self.clock_state(), crawler_ids, stats, kind)
        return self._commit(operation, rest.rest_writes(outcome, crawlers, stats))

    def perform_short_rest(self, actor: Actor, crawler_ids: list[str]) -> bool:
        return self._rest(actor, crawler_ids, rest.RestKind.SHORT)

    def perform_long_rest(self, actor: Actor, crawler_ids: list[str]) -> bool:
        return self._rest(actor, crawler_ids, rest.RestKind.LONG)

    def set_game_clock(self, actor: Actor, game_time: datetime) -> bool:
        if not self._facilitator_only(actor, "set_game_clock"):
            return False
        return self._commit("set_game_clock", rest.set_game_clock(game_time))

    # ------------------------------------------------------------------
    # Dice
    # ------------------------------------------------------------------

    def _log_roll(
        self,
        actor: Actor,
        crawler_id: str,
        make_roll: Callable[[], DiceResult],
        stat: str | None = None,
    ) -> DiceRollEntry | None:
        """Roll and log dice for a crawler.

        Outside combat the roll spends one of the crawler's noncombat
        rolls and is refused once the budget is gone.
        """
        if not self._self_or_facilitator(actor, crawler_id, "dice_roll"):
            return None
        crawler = self._read(CRAWLERS_COLLECTION, crawler_id, Crawler)
        spend = not combat.is_live(self.combat_state())
        if spend and not self._commit(
            f"record_roll {crawler_id}",
            turns.record_roll(self.noncombat_state(), crawler_id),
        ):
            return None

        result = make_roll()
        entry = DiceRollEntry(
            id=str(uuid.uuid4()),
            crawler_id=crawler_id,
            crawler_name=crawler.name if crawler is not None else crawler_id,
            timestamp=datetime.now(timezone.utc),
            notation=result.notation,
            rolls=result.rolls,
            modifier=result.modifier,
            total=result.total,
            stat=stat,
            noncombat_roll=spend,
        )
        self._commit(
            f"dice_roll {crawler_id} {result.notation}",
            [Write.replace(DICE_ROLLS_COLLECTION, entry.id, entry.model_dump(mode="json"))],
        )
        return entry

    def record_dice_roll(self, actor: Actor, crawler_id: str, notation: str) -> DiceRollEntry | None:
        """Roll dice notation for a crawler.

        Raises:
            ValueError: If the notation cannot be parsed.
        """
        roll(notation)  # Validate before spending a roll
        return self._log_roll(actor, crawler_id, lambda: roll(notation, rng=self.rng))

    def stat_check(self, actor: Actor, crawler_id: str, stat: str) -> DiceRollEntry | None:
        """d20 plus the modifier of the crawler's effective ability score."""
        if stat not in ABILITY_KEYS:
            return None
        stats = self.effective_stats(crawler_id)
        if stats is None:
            return None
        score = getattr(stats, stat)
        return self._log_roll(actor, crawler_id, lambda: stat_check(score, rng=self.rng), stat=stat)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def reset_session(self, actor: Actor) -> bool:
        """Cancel any encounter, reset the noncombat tracker, and clear the roll log."""
        if not self._facilitator_only(actor, "reset_session"):
            return False
        state = self.combat_state()
        if state is None:
            writes = combat.retire_document(self._combat_document())
        else:
            writes = combat.cancel_combat(state)
        writes += [
            Write.delete(DICE_ROLLS_COLLECTION, doc_id)
            for doc_id in self.store.query(self._scoped(DICE_ROLLS_COLLECTION))
        ]
        writes += turns.reset_noncombat_turns(self.noncombat_state())
        return self._commit("reset_session", writes)

    def put_record(self, actor: Actor, collection: str, doc_id: str, record: BaseModel) -> bool:
        """Create or replace a reference record (crawler, inventory, mob, episode)."""
        if not self._facilitator_only(actor, f"put {collection}"):
            return False
        return self._commit(
            f"put {collection}/{doc_id}",
            [Write.replace(collection, doc_id, record.model_dump(mode="json"))],
        )
