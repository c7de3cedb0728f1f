"""Adversary roster entries built from an episode's mob placements."""

from models.characters import Mob, MobPlacement, PlacementHP
from models.combat import AdversaryEntry


def placement_key(map_id: str | None, mob_id: str, placement_index: int | None = None) -> str:
    """Document id of a placement's persisted HP record.

    ``placement_index`` counts placements of the same mob on the same map.
    Entries added by hand carry no index and share one record per map and mob.
    """
    if placement_index is None:
        return f"{map_id or '_'}:{mob_id}"
    return f"{map_id or '_'}:{mob_id}:{placement_index}"


def adversary_entries(
    placements: list[MobPlacement],
    mobs: dict[str, Mob],
    placement_hp: dict[str, PlacementHP] | None = None,
) -> list[AdversaryEntry]:
    """Turn placements into combat entries, one per visible placed mob.

    A template placed more than once gets per-placement ids
    (``<mob_id>:<position>``) and lettered names ("Goblin A", "Goblin B");
    a single placement keeps the template id and name. Placements of
    unknown or hidden mobs are skipped. HP left over from a previous
    encounter on the same placement replaces the template HP.

    Each entry's ``placement_index`` is its ordinal among placements of
    the same mob on the same map, so adding or removing other mobs does
    not move carried HP onto a different placement.

    Args:
        placements: Episode placements followed by any runtime placements.
        mobs: Mob templates keyed by id.
        placement_hp: Persisted HP records keyed by ``placement_key``.
    """
    placement_hp = placement_hp or {}
    counts: dict[str, int] = {}
    for placement in placements:
        counts[placement.mob_id] = counts.get(placement.mob_id, 0) + 1

    letters: dict[str, int] = {}
    ordinals: dict[tuple[str | None, str], int] = {}
    entries = []
    for position, placement in enumerate(placements):
        mob = mobs.get(placement.mob_id)
        if mob is None or mob.hidden:
            continue
        duplicate = counts[placement.mob_id] > 1
        letter = letters.get(placement.mob_id, 0)
        letters[placement.mob_id] = letter + 1
        ordinal = ordinals.get((placement.map_id, mob.id), 0)
        ordinals[(placement.map_id, mob.id)] = ordinal + 1

        carried = placement_hp.get(placement_key(placement.map_id, mob.id, ordinal))
        entries.append(AdversaryEntry(
            combat_id=f"{mob.id}:{position}" if duplicate else mob.id,
            mob_id=mob.id,
            name=f"{mob.name} {chr(65 + letter)}" if duplicate else mob.name,
            hit_points=carried.hp if carried is not None else mob.hit_points,
            avatar=mob.image,
            map_id=placement.map_id,
            placement_index=ordinal,
        ))
    return entries
