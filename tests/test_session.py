"""Tests for the session hub: roles, shared-store concurrency, and outages."""

import random
from datetime import datetime, timezone

import pytest

from config import (
    COMBAT_COLLECTION,
    COMBAT_DOC_ID,
    CRAWLERS_COLLECTION,
    DICE_ROLLS_COLLECTION,
    EPISODES_COLLECTION,
    INVENTORY_COLLECTION,
    MOBS_COLLECTION,
    PLACEMENT_HP_COLLECTION,
)
from engine import combat
from engine.session import SessionHub
from models.actors import FACILITATOR, Actor
from models.characters import AbilityScores, Crawler, Episode, InventoryEntry, InventoryItem, Mob, MobPlacement
from models.combat import AdversaryEntry, CombatPhase
from store.base import StoreUnavailableError
from store.memory import InMemoryDocumentStore


def _make_hub(store: InMemoryDocumentStore | None = None, room_id: str | None = None, seed: int = 1) -> SessionHub:
    """Helper to create a hub over a fresh in-memory store."""
    return SessionHub(store or InMemoryDocumentStore(), room_id=room_id, rng=random.Random(seed))


def _crawler(cid: str) -> Actor:
    return Actor(id=cid)


def _seed_crawlers(hub: SessionHub, *ids: str) -> None:
    for cid in ids:
        hub.put_record(
            FACILITATOR,
            CRAWLERS_COLLECTION,
            cid,
            Crawler(id=cid, name=cid.title(), hp=5, max_hp=20, mana=1, max_mana=10,
                    ability_scores=AbilityScores(dexterity=14)),
        )


def _seed_episode(hub: SessionHub) -> None:
    hub.put_record(FACILITATOR, MOBS_COLLECTION, "goblin", Mob(id="goblin", name="Goblin", hit_points=7))
    hub.put_record(FACILITATOR, EPISODES_COLLECTION, "ep1", Episode(
        id="ep1",
        name="Floor 1",
        mob_placements=[MobPlacement(mob_id="goblin", map_id="m1"), MobPlacement(mob_id="goblin", map_id="m1")],
        starting_game_time=datetime(2024, 1, 1, 8, tzinfo=timezone.utc),
    ))


def _hub_in_combat(*ids: str, rolls: dict[str, int] | None = None) -> SessionHub:
    """A hub with an encounter past confirmation."""
    hub = _make_hub()
    _seed_crawlers(hub, *ids)
    assert hub.start_combat(FACILITATOR, list(ids), [])
    for cid in ids:
        assert hub.record_initiative(_crawler(cid), cid, (rolls or {}).get(cid, 10))
    assert hub.confirm_initiative(FACILITATOR)
    return hub


class TestRoles:
    """Tests for facilitator-only and self-or-facilitator checks."""

    def test_participant_cannot_start_combat(self):
        hub = _make_hub()
        assert not hub.start_combat(_crawler("a"), ["a"], [])
        assert hub.combat_state() is None

    def test_participant_rolls_only_for_self(self):
        hub = _make_hub()
        _seed_crawlers(hub, "a", "b")
        hub.start_combat(FACILITATOR, ["a", "b"], [])
        assert not hub.record_initiative(_crawler("a"), "b", 12)
        assert hub.record_initiative(_crawler("a"), "a", 12)

    def test_facilitator_rolls_for_anyone(self):
        hub = _make_hub()
        hub.start_combat(FACILITATOR, ["a"], [])
        assert hub.roll_initiative_for(FACILITATOR, "a")
        assert hub.combat_state().roster["a"].has_rolled_initiative

    def test_participant_cannot_advance(self):
        hub = _hub_in_combat("a", "b")
        assert not hub.advance_combat_turn(_crawler("a"))

    def test_participant_action_for_other_refused(self):
        hub = _hub_in_combat("a", "b")
        assert not hub.record_action(_crawler("a"), "b")
        assert hub.record_action(_crawler("b"), "b")

    def test_participant_cannot_put_records(self):
        hub = _make_hub()
        assert not hub.put_record(_crawler("a"), MOBS_COLLECTION, "m", Mob(id="m", name="M"))


class TestEncounterFlow:
    """End-to-end encounter through the hub."""

    def test_start_uses_crawler_profiles(self):
        hub = _make_hub()
        _seed_crawlers(hub, "carl")
        hub.start_combat(FACILITATOR, ["carl", "stranger"], [])
        state = hub.combat_state()
        assert state.roster["carl"].name == "Carl"
        assert state.roster["stranger"].name == "stranger"

    def test_dotted_participant_ids_skipped(self):
        hub = _make_hub()
        hub.start_combat(FACILITATOR, ["a", "b.c"], [])
        assert hub.combat_state().order == ["a"]

    def test_confirm_orders_by_initiative(self):
        hub = _hub_in_combat("a", "b", rolls={"a": 4, "b": 19})
        state = hub.combat_state()
        assert state.phase == CombatPhase.COMBAT
        assert state.order == ["b", "a"]

    def test_second_start_rejected_while_live(self):
        hub = _hub_in_combat("a")
        assert not hub.start_combat(FACILITATOR, ["b"], [])

    def test_start_from_episode(self):
        hub = _make_hub()
        _seed_crawlers(hub, "a")
        _seed_episode(hub)
        assert hub.start_combat_from_episode(FACILITATOR, "ep1", ["a"])
        state = hub.combat_state()
        assert state.order == ["a", "goblin:0", "goblin:1"]
        assert state.roster["goblin:1"].name == "Goblin B"
        assert state.episode_id == "ep1"

    def test_runtime_placements_join(self):
        hub = _make_hub()
        _seed_episode(hub)
        hub.start_combat_from_episode(
            FACILITATOR, "ep1", [], [MobPlacement(mob_id="goblin", map_id="m1")]
        )
        assert len(hub.combat_state().order) == 3

    def test_damage_carries_to_next_encounter(self):
        hub = _make_hub()
        _seed_crawlers(hub, "a")
        _seed_episode(hub)
        hub.start_combat_from_episode(FACILITATOR, "ep1", ["a"])
        hub.record_initiative(_crawler("a"), "a", 10)
        hub.confirm_initiative(FACILITATOR)
        assert hub.apply_damage(_crawler("a"), "goblin:1", 5)
        assert hub.end_combat(FACILITATOR)

        assert hub.store.get(PLACEMENT_HP_COLLECTION, "m1:goblin:1")["hp"] == 2
        entries = {e.combat_id: e for e in hub.adversary_entries("ep1")}
        assert entries["goblin:0"].hit_points == 7
        assert entries["goblin:1"].hit_points == 2

        hub.start_combat_from_episode(FACILITATOR, "ep1", ["a"])
        state = hub.combat_state()
        assert state.roster["goblin:1"].current_hp == 2
        assert state.combat_count == 2

    def test_cancel_keeps_no_hp(self):
        hub = _make_hub()
        _seed_episode(hub)
        hub.start_combat_from_episode(FACILITATOR, "ep1", [])
        hub.confirm_initiative(FACILITATOR)
        hub.apply_damage(FACILITATOR, "goblin:0", 3)
        assert hub.cancel_combat(FACILITATOR)
        assert hub.store.query(PLACEMENT_HP_COLLECTION) == {}

    def test_add_and_remove_mid_encounter(self):
        hub = _hub_in_combat("a", "b", rolls={"a": 15, "b": 10})
        hub.advance_combat_turn(FACILITATOR)
        assert hub.add_combatants(FACILITATOR, ["c"], [
            AdversaryEntry(combat_id="rat", mob_id="rat", name="Rat", hit_points=2),
        ])
        assert hub.remove_combatant(FACILITATOR, "a")
        state = hub.combat_state()
        assert state.order == ["b", "c", "rat"]
        assert combat.current_combatant(state).id == "b"

    def test_override_hp(self):
        hub = _make_hub()
        hub.start_combat(FACILITATOR, [], [AdversaryEntry(combat_id="rat", mob_id="rat", name="Rat", hit_points=2)])
        assert hub.override_hp(FACILITATOR, "rat", 9)
        assert hub.combat_state().roster["rat"].current_hp == 9

    def test_hand_added_adversary_hp_written_back(self):
        hub = _make_hub()
        hub.start_combat(FACILITATOR, ["a"], [
            AdversaryEntry(combat_id="ogre", mob_id="ogre", name="Ogre", hit_points=30, map_id="m1"),
        ])
        hub.record_initiative(FACILITATOR, "a", 10)
        hub.confirm_initiative(FACILITATOR)
        assert hub.apply_damage(_crawler("a"), "ogre", 12)
        assert hub.end_combat(FACILITATOR)
        assert hub.store.get(PLACEMENT_HP_COLLECTION, "m1:ogre")["hp"] == 18


class TestUnreadableEncounter:
    """An encounter document with entries the model rejects."""

    def _skewed_hub(self) -> SessionHub:
        hub = _hub_in_combat("a", "b")
        hub.store.patch(COMBAT_COLLECTION, COMBAT_DOC_ID, {
            "combat_count": 7,
            "roster.x": {"id": "x", "type": "npc", "name": "Old"},
        })
        return hub

    def test_bad_roster_entry_dropped_on_read(self):
        state = self._skewed_hub().combat_state()
        assert state.is_live
        assert set(state.roster) == {"a", "b"}
        assert "x" not in state.order

    def test_cancel_retires(self):
        hub = self._skewed_hub()
        assert hub.cancel_combat(FACILITATOR)
        assert hub.store.get(COMBAT_COLLECTION, COMBAT_DOC_ID)["active"] is False

    def test_combat_count_carries_over(self):
        hub = self._skewed_hub()
        assert hub.end_combat(FACILITATOR)
        assert hub.start_combat(FACILITATOR, ["a"], [])
        assert hub.combat_state().combat_count == 8

    def test_unvalidated_document_still_retired(self):
        hub = self._skewed_hub()
        hub.store.patch(COMBAT_COLLECTION, COMBAT_DOC_ID, {"phase": "paused"})
        assert hub.combat_state() is None
        assert hub.cancel_combat(FACILITATOR)
        assert hub.store.get(COMBAT_COLLECTION, COMBAT_DOC_ID)["active"] is False
        assert hub.start_combat(FACILITATOR, ["a"], [])
        assert hub.combat_state().combat_count == 8


class TestConcurrency:
    """Interleavings of intents from several clients against one store."""

    def test_concurrent_initiative_rolls_both_land(self):
        """Two clients read the same snapshot, then both write."""
        hub = _make_hub()
        hub.start_combat(FACILITATOR, ["a", "b"], [])
        snapshot = hub.combat_state()
        for write in combat.record_initiative(snapshot, "a", 7) + combat.record_initiative(snapshot, "b", 15):
            hub.store.apply(write)
        state = hub.combat_state()
        assert state.roster["a"].initiative == 7
        assert state.roster["b"].initiative == 15
        assert combat.all_initiative_rolled(state)

    def test_duplicate_advance_delivery_applies_once(self):
        hub = _hub_in_combat("a", "b", "c", rolls={"a": 15, "b": 10, "c": 5})
        seen = combat.turn_marker(hub.combat_state())
        assert hub.advance_combat_turn(FACILITATOR, expected=seen)
        assert not hub.advance_combat_turn(FACILITATOR, expected=seen)
        assert hub.combat_state().current_turn_index == 1

    def test_replayed_advance_patch_is_idempotent(self):
        hub = _hub_in_combat("a", "b", rolls={"a": 15, "b": 10})
        writes = combat.advance_combat_turn(hub.combat_state())
        for write in writes + writes:
            hub.store.apply(write)
        state = hub.combat_state()
        assert state.current_turn_index == 1
        assert state.combat_round == 1

    def test_roll_racing_removal_leaves_no_phantom(self):
        hub = _make_hub()
        hub.start_combat(FACILITATOR, ["a", "b"], [])
        stale = hub.combat_state()
        assert hub.remove_combatant(FACILITATOR, "b")
        for write in combat.record_initiative(stale, "b", 12):
            hub.store.apply(write)
        state = hub.combat_state()
        assert list(state.roster) == ["a"]
        assert state.order == ["a"]

    def test_action_racing_advance_both_land(self):
        hub = _hub_in_combat("a", "b", rolls={"a": 15, "b": 10})
        snapshot = hub.combat_state()
        action = combat.record_action(snapshot, "b")
        advance = combat.advance_combat_turn(snapshot)
        for write in advance + action:
            hub.store.apply(write)
        state = hub.combat_state()
        assert state.current_turn_index == 1
        assert state.roster["b"].has_used_action

    def test_concurrent_noncombat_rolls(self):
        from engine import turns

        hub = _make_hub()
        hub.reset_noncombat_turns(FACILITATOR)
        snapshot = hub.noncombat_state()
        for write in turns.record_roll(snapshot, "a") + turns.record_roll(snapshot, "b"):
            hub.store.apply(write)
        assert hub.rolls_remaining("a") == 2
        assert hub.rolls_remaining("b") == 2


class TestNoncombatTurns:
    """Tests for noncombat turns through the hub."""

    def test_roll_budget(self):
        hub = _make_hub()
        _seed_crawlers(hub, "a", "b")
        hub.start_noncombat_turn(FACILITATOR)
        for _ in range(3):
            assert hub.record_roll(_crawler("a"), "a")
        assert not hub.record_roll(_crawler("a"), "a")
        assert hub.rolls_remaining("a") == 0
        assert not hub.all_rolls_spent()
        for _ in range(3):
            hub.record_roll(_crawler("b"), "b")
        assert hub.all_rolls_spent()

    def test_turn_start_clears_budget_and_advances_clock(self):
        hub = _make_hub()
        hub.set_game_clock(FACILITATOR, datetime(2024, 1, 1, 8, tzinfo=timezone.utc))
        hub.record_roll(_crawler("a"), "a")
        hub.start_noncombat_turn(FACILITATOR)
        assert hub.rolls_remaining("a") == 3
        assert hub.noncombat_state().turn_number == 1
        assert hub.clock_state().game_time == datetime(2024, 1, 1, 9, tzinfo=timezone.utc)

    def test_set_max_rolls(self):
        hub = _make_hub()
        assert hub.set_max_rolls(FACILITATOR, 5)
        assert hub.rolls_remaining("a") == 5
        assert not hub.set_max_rolls(FACILITATOR, 0)

    def test_days_since_start(self):
        hub = _make_hub()
        _seed_episode(hub)
        hub.set_game_clock(FACILITATOR, datetime(2024, 1, 3, 9, tzinfo=timezone.utc))
        assert hub.days_since_start("ep1") == 2


class TestRests:
    """Tests for rests through the hub."""

    def test_long_rest_restores_with_equipment(self):
        hub = _make_hub()
        _seed_crawlers(hub, "a")
        hub.put_record(FACILITATOR, INVENTORY_COLLECTION, "a", InventoryEntry(crawler_id="a", items=[
            InventoryItem(id="belt", name="Belt", equipped=True, modifiers={"max_hp": 10}),
        ]))
        hub.set_game_clock(FACILITATOR, datetime(2024, 1, 1, 20, tzinfo=timezone.utc))
        assert hub.perform_long_rest(FACILITATOR, ["a"])
        crawler = hub.crawlers()["a"]
        assert crawler.hp == 30
        assert crawler.mana == 10
        assert hub.clock_state().game_time == datetime(2024, 1, 2, 4, tzinfo=timezone.utc)

    def test_short_rest_half(self):
        hub = _make_hub()
        _seed_crawlers(hub, "a")
        assert hub.perform_short_rest(FACILITATOR, ["a"])
        assert hub.crawlers()["a"].hp == 10
        assert hub.crawlers()["a"].mana == 5

    def test_rest_needs_known_crawlers(self):
        hub = _make_hub()
        assert not hub.perform_long_rest(FACILITATOR, ["ghost"])
        assert hub.clock_state() is None

    def test_participant_cannot_rest_party(self):
        hub = _make_hub()
        _seed_crawlers(hub, "a")
        assert not hub.perform_long_rest(_crawler("a"), ["a"])


class TestDiceRolls:
    """Tests for logged dice rolls and stat checks."""

    def test_noncombat_roll_spends_budget(self):
        hub = _make_hub()
        _seed_crawlers(hub, "a")
        entry = hub.record_dice_roll(_crawler("a"), "a", "2d6+1")
        assert entry.noncombat_roll
        assert entry.crawler_name == "A"
        assert hub.rolls_remaining("a") == 2
        assert entry.id in hub.store.query(DICE_ROLLS_COLLECTION)

    def test_roll_refused_when_budget_spent(self):
        hub = _make_hub()
        hub.set_max_rolls(FACILITATOR, 1)
        assert hub.record_dice_roll(_crawler("a"), "a", "1d4") is not None
        assert hub.record_dice_roll(_crawler("a"), "a", "1d4") is None

    def test_combat_roll_is_free(self):
        hub = _hub_in_combat("a")
        entry = hub.record_dice_roll(_crawler("a"), "a", "1d20")
        assert not entry.noncombat_roll
        assert hub.rolls_remaining("a") == 3

    def test_bad_notation_raises_before_spending(self):
        hub = _make_hub()
        with pytest.raises(ValueError):
            hub.record_dice_roll(_crawler("a"), "a", "lots")
        assert hub.rolls_remaining("a") == 3

    def test_stat_check_uses_effective_score(self):
        hub = _make_hub()
        _seed_crawlers(hub, "a")
        entry = hub.stat_check(_crawler("a"), "a", "dexterity")
        assert entry.stat == "dexterity"
        assert entry.modifier == 2

    def test_stat_check_unknown_stat(self):
        hub = _make_hub()
        _seed_crawlers(hub, "a")
        assert hub.stat_check(_crawler("a"), "a", "luck") is None

    def test_roll_for_other_crawler_refused(self):
        hub = _make_hub()
        assert hub.record_dice_roll(_crawler("a"), "b", "1d6") is None

    def test_dice_rolls_listed_oldest_first(self):
        hub = _hub_in_combat("a")
        first = hub.record_dice_roll(_crawler("a"), "a", "1d4")
        second = hub.record_dice_roll(_crawler("a"), "a", "1d6")
        assert [r.id for r in hub.dice_rolls()] == [first.id, second.id]


class TestRooms:
    """Tests for room scoping."""

    def test_rooms_are_isolated(self):
        store = InMemoryDocumentStore()
        red = _make_hub(store, room_id="red")
        blue = _make_hub(store, room_id="blue")
        red.start_combat(FACILITATOR, ["a"], [])
        assert red.combat_state().is_live
        assert blue.combat_state() is None
        assert store.get(f"rooms/red/{COMBAT_COLLECTION}", COMBAT_DOC_ID) is not None

    def test_subscription_sees_unscoped_name(self):
        hub = _make_hub(room_id="red")
        seen = []
        hub.subscribe(COMBAT_COLLECTION, lambda name, docs: seen.append((name, docs)))
        hub.start_combat(FACILITATOR, ["a"], [])
        assert seen[0] == (COMBAT_COLLECTION, {})
        assert seen[-1][0] == COMBAT_COLLECTION
        assert COMBAT_DOC_ID in seen[-1][1]


class TestStoreUnavailable:
    """Store outages propagate and leave state untouched."""

    def test_intent_raises(self):
        store = InMemoryDocumentStore()
        hub = _make_hub(store)
        store.available = False
        with pytest.raises(StoreUnavailableError):
            hub.start_combat(FACILITATOR, ["a"], [])

    def test_retry_after_outage(self):
        hub = _hub_in_combat("a", "b", rolls={"a": 15, "b": 10})
        store = hub.store
        seen = combat.turn_marker(hub.combat_state())
        store.available = False
        with pytest.raises(StoreUnavailableError):
            hub.advance_combat_turn(FACILITATOR, expected=seen)
        store.available = True
        assert hub.advance_combat_turn(FACILITATOR, expected=seen)
        assert hub.combat_state().current_turn_index == 1


class TestResetSession:
    """Tests for reset_session()."""

    def test_reset_cancels_and_clears(self):
        hub = _hub_in_combat("a")
        hub.record_dice_roll(_crawler("a"), "a", "1d4")
        hub.set_max_rolls(FACILITATOR, 4)
        assert hub.reset_session(FACILITATOR)
        assert not hub.combat_state().is_live
        turns = hub.noncombat_state()
        assert turns.turn_number == 0
        assert turns.max_rolls == 4
        assert hub.dice_rolls() == []
        assert hub.store.query(DICE_ROLLS_COLLECTION) == {}

    def test_reset_without_encounter(self):
        hub = _make_hub()
        assert hub.reset_session(FACILITATOR)
        assert hub.combat_state() is None
