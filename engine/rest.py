"""Rest mechanics and the shared game clock.

Rests are pure: (clock, crawler ids, effective stats) in, (new clock,
restored HP/mana) out. Restoration never lowers a value that is already
above the target.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel

from config import (
    CLOCK_COLLECTION,
    CLOCK_DOC_ID,
    CRAWLERS_COLLECTION,
    DEFAULT_GAME_TIME,
    LONG_REST_FRACTION,
    LONG_REST_HOURS,
    SHORT_REST_FRACTION,
    SHORT_REST_HOURS,
)
from models.characters import Crawler, EffectiveStats, Episode
from models.turns import GameClockState
from models.writes import Write


class RestKind(str, Enum):
    """Available rests."""
    SHORT = "short"
    LONG = "long"


# kind -> (share of effective max restored, hours the clock advances)
REST_RULES = {
    RestKind.SHORT: (SHORT_REST_FRACTION, SHORT_REST_HOURS),
    RestKind.LONG: (LONG_REST_FRACTION, LONG_REST_HOURS),
}


class Vitals(BaseModel):
    """Effective HP and mana after a rest."""
    hp: int
    mana: int


class RestOutcome(BaseModel):
    """Result of a rest: the new clock and each rested crawler's vitals."""
    game_time: datetime
    restored: dict[str, Vitals] = {}


def advance_clock(clock: GameClockState | None, hours: float) -> GameClockState:
    """Clock moved forward by ``hours``; a missing clock starts at DEFAULT_GAME_TIME."""
    start = clock.game_time if clock is not None else DEFAULT_GAME_TIME
    return GameClockState(game_time=start + timedelta(hours=hours))


def days_since_start(clock: GameClockState | None, episode: Episode | None) -> int | None:
    """Whole in-game days since the episode's starting time, or None if unknown."""
    if clock is None or episode is None or episode.starting_game_time is None:
        return None
    return max(0, (clock.game_time - episode.starting_game_time).days)


def rest(
    clock: GameClockState | None,
    crawler_ids: list[str],
    stats: dict[str, EffectiveStats],
    kind: RestKind,
) -> RestOutcome:
    """Restore listed crawlers toward a share of their effective maxima.

    Crawlers without stats are skipped. Targets round down.
    """
    fraction, hours = REST_RULES[kind]
    restored = {}
    for crawler_id in dict.fromkeys(crawler_ids):
        current = stats.get(crawler_id)
        if current is None:
            continue
        restored[crawler_id] = Vitals(
            hp=max(current.hp, math.floor(current.max_hp * fraction)),
            mana=max(current.mana, math.floor(current.max_mana * fraction)),
        )
    return RestOutcome(game_time=advance_clock(clock, hours).game_time, restored=restored)


def short_rest(clock, crawler_ids, stats) -> RestOutcome:
    return rest(clock, crawler_ids, stats, RestKind.SHORT)


def long_rest(clock, crawler_ids, stats) -> RestOutcome:
    return rest(clock, crawler_ids, stats, RestKind.LONG)


def rest_writes(
    outcome: RestOutcome,
    crawlers: dict[str, Crawler],
    stats: dict[str, EffectiveStats],
) -> list[Write]:
    """Crawler patches for the restored vitals, then the clock write.

    Restored values are effective; the stored profile holds base values,
    so any equipment bonus to current HP or mana is subtracted back out.
    """
    writes = []
    for crawler_id, vitals in outcome.restored.items():
        crawler = crawlers.get(crawler_id)
        if crawler is None:
            continue
        hp_bonus = stats[crawler_id].hp - crawler.hp
        mana_bonus = stats[crawler_id].mana - crawler.mana
        writes.append(Write.patch(CRAWLERS_COLLECTION, crawler_id, {
            "hp": vitals.hp - hp_bonus,
            "mana": vitals.mana - mana_bonus,
        }))
    clock = GameClockState(game_time=outcome.game_time)
    writes.append(Write.replace(CLOCK_COLLECTION, CLOCK_DOC_ID, clock.model_dump(mode="json")))
    return writes


def set_game_clock(game_time: datetime) -> list[Write]:
    """Set the clock outright."""
    clock = GameClockState(game_time=game_time)
    return [Write.replace(CLOCK_COLLECTION, CLOCK_DOC_ID, clock.model_dump(mode="json"))]
