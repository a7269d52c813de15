"""Stage sweeps: runs of days where one player holds the record on every level."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set

from .catalog import LEVELS, Level, Stage
from .errors import InvalidInput
from .models import Player, StageSweep, TimeEntry

logger = logging.getLogger(__name__)


class _LevelState:
    """Running best time and holder set of one level, replayed in date order."""

    def __init__(self, entries: Iterable[TimeEntry]):
        self._pending = sorted((e for e in entries if e.date is not None), key=lambda e: e.date)
        self._cursor = 0
        self.best: Optional[int] = None
        self.holders: Set[int] = set()

    def advance(self, day: date) -> None:
        while self._cursor < len(self._pending) and self._pending[self._cursor].date <= day:
            e = self._pending[self._cursor]
            self._cursor += 1
            if self.best is None or e.time < self.best:
                self.best = e.time
                self.holders = {e.player_id}
            elif e.time == self.best:
                self.holders.add(e.player_id)


def _sweepers(states: List[_LevelState], untied: bool) -> FrozenSet[int]:
    if untied:
        if any(len(s.holders) != 1 for s in states):
            return frozenset()
        owners = {next(iter(s.holders)) for s in states}
        return frozenset(owners) if len(owners) == 1 else frozenset()
    common = set(states[0].holders)
    for s in states[1:]:
        common &= s.holders
    return frozenset(common)


def sweep_days(
    stage: Stage,
    entries_by_level: Mapping[Level, Iterable[TimeEntry]],
    untied: bool,
    start: date,
    end: date,
) -> Dict[int, List[date]]:
    """Days in ``[start, end]`` each player swept ``stage``."""
    states = [_LevelState(entries_by_level.get(level, ())) for level in LEVELS]
    days: Dict[int, List[date]] = defaultdict(list)
    day = start
    while day <= end:
        for state in states:
            state.advance(day)
        for player_id in _sweepers(states, untied):
            days[player_id].append(day)
        day += timedelta(days=1)
    return days


def consolidate(stage: Stage, player: Player, days: List[date]) -> List[StageSweep]:
    """Merge consecutive days into ``[start, end)`` intervals."""
    out: List[StageSweep] = []
    current: Optional[StageSweep] = None
    for day in sorted(days):
        if current is not None and current.end_date == day:
            current.end_date = day + timedelta(days=1)
            continue
        current = StageSweep(stage, player, day, day + timedelta(days=1))
        out.append(current)
    return out


def detect_stage_sweeps(
    stage: Stage,
    entries: Iterable[TimeEntry],
    players: Mapping[int, Player],
    untied: bool,
    start: date,
    end: date,
) -> List[StageSweep]:
    if start > end:
        raise InvalidInput(f"start date {start} is after end date {end}")
    by_level: Dict[Level, List[TimeEntry]] = defaultdict(list)
    for e in entries:
        if e.stage == stage and e.player_id in players:
            by_level[e.level].append(e)
    out: List[StageSweep] = []
    for player_id, days in sweep_days(stage, by_level, untied, start, end).items():
        out.extend(consolidate(stage, players[player_id], days))
    logger.debug("detect_stage_sweeps stage=%s untied=%s sweeps=%d", stage.name, untied, len(out))
    return out


def sort_sweeps(sweeps: List[StageSweep]) -> List[StageSweep]:
    return sorted(sweeps, key=lambda s: (-s.days, s.start_date, s.stage.value, s.player.id))


__all__ = [
    "sweep_days",
    "consolidate",
    "detect_stage_sweeps",
    "sort_sweeps",
]
