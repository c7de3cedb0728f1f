"""Effective stats: crawler base values plus equipped item modifiers."""

import logging

from models.characters import Crawler, EffectiveStats, InventoryItem

logger = logging.getLogger(__name__)

ABILITY_KEYS = ("strength", "dexterity", "constitution", "intelligence", "charisma")
POOL_KEYS = ("hp", "max_hp", "mana", "max_mana")
STAT_KEYS = ABILITY_KEYS + POOL_KEYS


def equipment_modifiers(items: list[InventoryItem]) -> dict[str, int]:
    """Sum the modifiers of every equipped item. Unknown stat names are ignored."""
    totals = {key: 0 for key in STAT_KEYS}
    for item in items:
        if not item.equipped:
            continue
        for stat, amount in item.modifiers.items():
            if stat not in totals:
                logger.debug(f"Ignoring unknown modifier '{stat}' on item {item.id}")
                continue
            totals[stat] += amount
    return totals


def effective_stats(crawler: Crawler, items: list[InventoryItem] | None = None) -> EffectiveStats:
    """Base stats plus equipment. Maxima never drop below 0."""
    mods = equipment_modifiers(items or [])
    abilities = crawler.ability_scores
    return EffectiveStats(
        strength=abilities.strength + mods["strength"],
        dexterity=abilities.dexterity + mods["dexterity"],
        constitution=abilities.constitution + mods["constitution"],
        intelligence=abilities.intelligence + mods["intelligence"],
        charisma=abilities.charisma + mods["charisma"],
        hp=crawler.hp + mods["hp"],
        max_hp=max(0, crawler.max_hp + mods["max_hp"]),
        mana=crawler.mana + mods["mana"],
        max_mana=max(0, crawler.max_mana + mods["max_mana"]),
    )
