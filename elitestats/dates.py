"""Best-guess dates for time entries submitted without one.

A dateless entry is bounded by the player's own dated times on the same
(stage, level): it cannot predate a slower time nor postdate a faster one.
Missing bounds fall back to the player's join date (or the game release)
and to the player's last dated submission, capped at the day after which
the source always recorded dates.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import replace
from datetime import date, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .catalog import LAST_EMPTY_DATE_CUTOFF, Game, release_date
from .errors import InvalidInput
from .models import Player, TimeEntry

logger = logging.getLogger(__name__)


class NoDateRule(Enum):
    IGNORE = "ignore"
    MIN = "min"
    MAX = "max"
    AVERAGE = "average"
    PLAYER_HABIT = "player_habit"


def parse_no_date_rule(raw) -> NoDateRule:
    if isinstance(raw, NoDateRule):
        return raw
    key = str(raw or "").strip().lower().replace("-", "_")
    for rule in NoDateRule:
        if key in (rule.value, rule.name.lower()):
            return rule
    raise InvalidInput(f"unknown no-date rule: {raw}")


def _same_slot(a: TimeEntry, b: TimeEntry) -> bool:
    return a.stage == b.stage and a.level == b.level


def _midpoint(lo: date, hi: date) -> date:
    return lo + timedelta(days=(hi - lo).days // 2)


def has_worse_time_later(entry: TimeEntry, slot_entries: Iterable[TimeEntry], ranking_date: date) -> bool:
    """True when the player posted a slower time on this slot after ``ranking_date``."""
    return any(
        e.time > entry.time and e.date is not None and e.date > ranking_date
        for e in slot_entries
    )


def compute_bounds(
    entry: TimeEntry,
    player_entries: Sequence[TimeEntry],
    player: Optional[Player],
    game: Game,
) -> Tuple[date, date]:
    """Return the ``(lower, upper)`` window the dateless ``entry`` must fall in."""
    slot = [e for e in player_entries if e is not entry and _same_slot(e, entry) and e.date is not None]

    worse_dates = [e.date for e in slot if e.time > entry.time]
    better_dates = [e.date for e in slot if e.time < entry.time]

    if worse_dates:
        lower = max(worse_dates)
    else:
        lower = (player.join_date if player else None) or release_date(game)

    if better_dates:
        upper = min(better_dates)
    else:
        dated = [e.date for e in player_entries if e.date is not None]
        upper = min(max(dated), LAST_EMPTY_DATE_CUTOFF) if dated else LAST_EMPTY_DATE_CUTOFF

    # Newcomers can join after their last capped submission.
    if upper < lower:
        upper = lower
    return lower, upper


def _narrow_to_habit_year(lower: date, upper: date, player_entries: Sequence[TimeEntry]) -> Tuple[date, date]:
    years = Counter(
        e.date.year for e in player_entries
        if e.date is not None and lower <= e.date <= upper
    )
    if not years:
        return lower, upper
    best = max(years.values())
    year = min(y for y, n in years.items() if n == best)
    return max(lower, date(year, 1, 1)), min(upper, date(year, 12, 31))


def resolve_date(
    entry: TimeEntry,
    player_entries: Sequence[TimeEntry],
    player: Optional[Player],
    game: Game,
    rule: NoDateRule,
    ranking_date: Optional[date] = None,
) -> Optional[date]:
    """Effective date of ``entry`` under ``rule``; ``None`` when the rule ignores it."""
    if entry.date is not None:
        return entry.date
    if rule is NoDateRule.IGNORE:
        return None

    for other in player_entries:
        if other is not entry and other.date is not None and _same_slot(other, entry) and other.time == entry.time:
            return other.date

    if ranking_date is not None:
        slot = [e for e in player_entries if e is not entry and _same_slot(e, entry)]
        if has_worse_time_later(entry, slot, ranking_date):
            return ranking_date + timedelta(days=1)

    lower, upper = compute_bounds(entry, player_entries, player, game)
    if rule is NoDateRule.MIN:
        return lower
    if rule is NoDateRule.MAX:
        return upper
    if rule is NoDateRule.PLAYER_HABIT:
        lower, upper = _narrow_to_habit_year(lower, upper, player_entries)
    return _midpoint(lower, upper)


def resolve_entries(
    entries: Iterable[TimeEntry],
    players: Mapping[int, Player],
    game: Game,
    rule: NoDateRule,
    ranking_date: Optional[date] = None,
) -> List[TimeEntry]:
    """Copy of ``entries`` where every dateless entry carries a simulated date.

    Dated entries are returned unchanged; with ``NoDateRule.IGNORE`` dateless
    entries are dropped. Order is preserved.
    """
    entries = list(entries)
    by_player: Dict[int, List[TimeEntry]] = defaultdict(list)
    for e in entries:
        by_player[e.player_id].append(e)

    out: List[TimeEntry] = []
    simulated = 0
    for e in entries:
        if e.date is not None:
            out.append(e)
            continue
        resolved = resolve_date(e, by_player[e.player_id], players.get(e.player_id), game, rule, ranking_date)
        if resolved is None:
            continue
        out.append(replace(e, date=resolved, is_simulated_date=True))
        simulated += 1
    logger.debug("resolve_entries rule=%s entries=%d simulated=%d", rule.value, len(entries), simulated)
    return out


__all__ = [
    "NoDateRule",
    "parse_no_date_rule",
    "has_worse_time_later",
    "compute_bounds",
    "resolve_date",
    "resolve_entries",
]
