"""Tests for adversary entries built from episode placements."""

from engine.encounter import adversary_entries, placement_key
from models.characters import Mob, MobPlacement, PlacementHP


def _make_mobs() -> dict[str, Mob]:
    """Helper to create a small mob catalogue."""
    return {
        "goblin": Mob(id="goblin", name="Goblin", hit_points=7, image="goblin.png"),
        "ogre": Mob(id="ogre", name="Ogre", hit_points=30),
        "lurker": Mob(id="lurker", name="Lurker", hidden=True, hit_points=12),
    }


def _place(mob_id: str, map_id: str = "m1") -> MobPlacement:
    return MobPlacement(mob_id=mob_id, map_id=map_id)


class TestAdversaryEntries:
    """Tests for adversary_entries()."""

    def test_single_placement_keeps_template_id_and_name(self):
        entries = adversary_entries([_place("ogre")], _make_mobs())
        assert len(entries) == 1
        assert entries[0].combat_id == "ogre"
        assert entries[0].name == "Ogre"
        assert entries[0].hit_points == 30
        assert entries[0].placement_index == 0

    def test_duplicates_get_letters_and_ids(self):
        entries = adversary_entries(
            [_place("goblin"), _place("ogre"), _place("goblin")],
            _make_mobs(),
        )
        goblins = [e for e in entries if e.mob_id == "goblin"]
        assert [e.combat_id for e in goblins] == ["goblin:0", "goblin:2"]
        assert [e.name for e in goblins] == ["Goblin A", "Goblin B"]
        assert goblins[0].avatar == "goblin.png"

    def test_hidden_and_unknown_mobs_skipped(self):
        entries = adversary_entries(
            [_place("lurker"), _place("nobody"), _place("ogre")],
            _make_mobs(),
        )
        assert [e.combat_id for e in entries] == ["ogre"]
        assert entries[0].placement_index == 0

    def test_placement_index_counts_per_map_and_mob(self):
        entries = adversary_entries(
            [_place("goblin"), _place("ogre"), _place("goblin", map_id="m2"), _place("goblin")],
            _make_mobs(),
        )
        assert [(e.map_id, e.mob_id, e.placement_index) for e in entries] == [
            ("m1", "goblin", 0),
            ("m1", "ogre", 0),
            ("m2", "goblin", 0),
            ("m1", "goblin", 1),
        ]

    def test_carried_hp_survives_other_placements_changing(self):
        carried = {
            placement_key("m1", "goblin", 1): PlacementHP(
                mob_id="goblin", map_id="m1", placement_index=1, hp=3
            ),
        }
        entries = adversary_entries(
            [_place("ogre"), _place("goblin"), _place("ogre"), _place("goblin")],
            _make_mobs(),
            carried,
        )
        goblins = [e for e in entries if e.mob_id == "goblin"]
        assert [e.hit_points for e in goblins] == [7, 3]

    def test_carried_hp_overrides_template(self):
        carried = {
            placement_key("m1", "goblin", 1): PlacementHP(
                mob_id="goblin", map_id="m1", placement_index=1, hp=2
            ),
        }
        entries = adversary_entries([_place("goblin"), _place("goblin")], _make_mobs(), carried)
        assert [e.hit_points for e in entries] == [7, 2]

    def test_carried_hp_is_per_map(self):
        carried = {
            placement_key("m2", "ogre", 0): PlacementHP(
                mob_id="ogre", map_id="m2", placement_index=0, hp=1
            ),
        }
        entries = adversary_entries([_place("ogre", map_id="m1")], _make_mobs(), carried)
        assert entries[0].hit_points == 30

    def test_no_placements(self):
        assert adversary_entries([], _make_mobs()) == []


class TestPlacementKey:
    """Tests for placement_key()."""

    def test_key_format(self):
        assert placement_key("m1", "goblin", 3) == "m1:goblin:3"

    def test_missing_map(self):
        assert placement_key(None, "goblin", 0) == "_:goblin:0"

    def test_missing_index(self):
        assert placement_key("m1", "ogre") == "m1:ogre"
