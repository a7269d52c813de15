"""Points ranking of every eligible player for one game at one date.

For each (stage, level) the best qualifying time of every player is ranked;
rank 1 scores 100, rank 2 scores 97 and rank r scores ``98 - r`` down to
zero. Slots without a time cost the penalty time in the cumulated total.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from enum import Enum
from itertools import groupby
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .catalog import DEFAULT_RANK_CUTOFF, LEVELS, Engine, Game, Level, Stage, points_for_rank
from .chain import validate_entries
from .dates import NoDateRule, resolve_entries
from .errors import InvalidInput
from .models import Player, RankingEntry, StageLeaderboard, StageLeaderboardItem, TimeEntry

logger = logging.getLogger(__name__)

# (entry, rank, untied) for one scored slot position.
Scored = Tuple[TimeEntry, int, bool]
Runner = Callable[[Callable[[Stage], List[Scored]], Sequence[Stage]], List[Scored]]


class ExcludePlayer(Enum):
    HAS_WORLD_RECORD = "has_world_record"
    HAS_UNTIED = "has_untied"


def parse_exclude(raw) -> Optional[ExcludePlayer]:
    if raw is None or isinstance(raw, ExcludePlayer):
        return raw
    key = str(raw).strip().lower().replace("-", "_")
    if not key or key == "none":
        return None
    for item in ExcludePlayer:
        if key in (item.value, item.name.lower()):
            return item
    raise InvalidInput(f"unknown exclusion policy: {raw}")


def _months_before(day: date, months: int) -> date:
    total = day.year * 12 + (day.month - 1) - months
    year, month = divmod(total, 12)
    month += 1
    # Clamp to the last valid day of the target month.
    for candidate in (day.day, 30, 29, 28):
        try:
            return date(year, month, candidate)
        except ValueError:
            continue
    return date(year, month, 28)


def select_current_entries(
    entries: Iterable[TimeEntry],
    players: Mapping[int, Player],
    ranking_date: date,
    no_date_rule: NoDateRule,
    game: Game,
    engine: Optional[Engine] = None,
    months_of_fresh_times: Optional[int] = None,
    versus_legacy: Optional[Tuple[int, date]] = None,
) -> List[TimeEntry]:
    """Best entry per (player, stage, level) qualifying at ``ranking_date``.

    With ``versus_legacy`` set to ``(player_id, legacy_date)`` every player but
    ``player_id`` is taken as of ``legacy_date``.
    """
    def _limit(player_id: int) -> date:
        if versus_legacy is not None and player_id != versus_legacy[0]:
            return versus_legacy[1]
        return ranking_date

    known = [
        e for e in entries
        if e.player_id in players
        and (players[e.player_id].join_date or _limit(e.player_id)) <= _limit(e.player_id)
    ]
    # Dates are resolved across engines; the engine filter applies afterwards.
    resolved: List[TimeEntry] = []
    for limit in sorted({_limit(e.player_id) for e in known}):
        group = [e for e in known if _limit(e.player_id) == limit]
        resolved.extend(resolve_entries(group, players, game, no_date_rule, limit))

    best: Dict[Tuple[int, Stage, Level], TimeEntry] = {}
    for e in resolved:
        limit = _limit(e.player_id)
        if e.date > limit:
            continue
        if engine is not None and e.engine != engine:
            continue
        if months_of_fresh_times and e.date < _months_before(limit, months_of_fresh_times):
            continue
        key = (e.player_id, e.stage, e.level)
        kept = best.get(key)
        if kept is None or (e.time, e.date) < (kept.time, kept.date):
            best[key] = e
    return list(best.values())


def _rank_slot(slot_entries: Sequence[TimeEntry], rank_cutoff: int):
    """Yield ``(entry, rank, untied)`` for one (stage, level) bucket."""
    ordered = sorted(slot_entries, key=lambda e: (e.time, e.player_id))
    rank = 1
    for _time, group in groupby(ordered, key=lambda e: e.time):
        tied = list(group)
        if rank > rank_cutoff:
            break
        untied = rank == 1 and len(tied) == 1
        for e in tied:
            yield e, rank, untied
        rank += len(tied)


def _assign_ranks(ranking: Sequence) -> None:
    # Competition ranking on points: 1, 1, 3.
    previous_points = None
    current_rank = 0
    for position, item in enumerate(ranking, start=1):
        if item.points != previous_points:
            current_rank = position
            previous_points = item.points
        item.rank = current_rank


def _serial(fn: Callable[[Stage], List[Scored]], stages: Sequence[Stage]) -> List[Scored]:
    return [scored for stage in stages for scored in fn(stage)]


def _compute_once(
    selected: Sequence[TimeEntry],
    players: Mapping[int, Player],
    game: Game,
    full_details: bool,
    rank_cutoff: int,
    skip_stages: Set[Stage],
    runner: Runner,
) -> Tuple[List[RankingEntry], Set[int], Set[int]]:
    by_player: Dict[int, RankingEntry] = {}
    for e in selected:
        if e.player_id not in by_player:
            by_player[e.player_id] = RankingEntry(game, players[e.player_id], full_details=full_details)

    by_slot: Dict[Tuple[Stage, Level], List[TimeEntry]] = defaultdict(list)
    for e in selected:
        if e.stage not in skip_stages:
            by_slot[(e.stage, e.level)].append(e)

    def _score_stage(stage: Stage) -> List[Scored]:
        return [scored for level in LEVELS for scored in _rank_slot(by_slot.get((stage, level), []), rank_cutoff)]

    stages = sorted({stage for stage, _level in by_slot}, key=lambda s: s.value)
    record_holders: Set[int] = set()
    untied_holders: Set[int] = set()
    for e, rank, untied in runner(_score_stage, stages):
        by_player[e.player_id].add_stage_and_level_datas(e, rank, points_for_rank(rank), untied)
        if rank == 1:
            record_holders.add(e.player_id)
            if untied:
                untied_holders.add(e.player_id)

    ranking = sorted(
        by_player.values(),
        key=lambda r: (-r.points, r.cumulated_time, r.player.id),
    )
    _assign_ranks(ranking)
    return ranking, record_holders, untied_holders


def compute_ranking(
    entries: Iterable[TimeEntry],
    players: Iterable[Player],
    ranking_date: date,
    no_date_rule: NoDateRule = NoDateRule.AVERAGE,
    *,
    game: Game,
    full_details: bool = False,
    engine: Optional[Engine] = None,
    rank_cutoff: int = DEFAULT_RANK_CUTOFF,
    exclude: Optional[ExcludePlayer] = None,
    skip_stages: Iterable[Stage] = (),
    months_of_fresh_times: Optional[int] = None,
    versus_legacy: Optional[Tuple[int, date]] = None,
    runner: Optional[Runner] = None,
) -> List[RankingEntry]:
    """Ranked, pointed and aggregated standing of every player at ``ranking_date``.

    With ``exclude`` the players holding a (or an untied) world record in a
    first pass are removed and the ranking is computed again without them.
    ``runner(fn, stages)`` scores the stages and concatenates the results in
    stage order; by default they are scored one after the other.
    """
    if rank_cutoff <= 0:
        raise InvalidInput(f"rank cutoff must be positive, got {rank_cutoff}")
    if months_of_fresh_times is not None and months_of_fresh_times <= 0:
        raise InvalidInput(f"months of fresh times must be positive, got {months_of_fresh_times}")
    if versus_legacy is not None and versus_legacy[1] > ranking_date:
        raise InvalidInput(f"legacy date {versus_legacy[1]} is after ranking date {ranking_date}")
    entries = list(entries)
    validate_entries(entries)
    skipped = set(skip_stages)
    known = {p.id: p for p in players}
    runner = runner or _serial

    selected = select_current_entries(
        entries, known, ranking_date, no_date_rule, game,
        engine=engine, months_of_fresh_times=months_of_fresh_times, versus_legacy=versus_legacy,
    )
    ranking, holders, untied_holders = _compute_once(selected, known, game, full_details, rank_cutoff, skipped, runner)

    if exclude is not None:
        removed = holders if exclude is ExcludePlayer.HAS_WORLD_RECORD else untied_holders
        if removed:
            remaining = [e for e in selected if e.player_id not in removed]
            ranking, _h, _u = _compute_once(remaining, known, game, full_details, rank_cutoff, skipped, runner)

    logger.info(
        "compute_ranking game=%s date=%s entries=%d players=%d rule=%s",
        game.name, ranking_date.isoformat(), len(entries), len(ranking), no_date_rule.value,
    )
    return ranking


def stage_leaderboard(
    selected: Iterable[TimeEntry],
    stage: Stage,
    players: Mapping[int, Player],
    day: date,
    rank_cutoff: int = DEFAULT_RANK_CUTOFF,
) -> StageLeaderboard:
    """Points of every player on ``stage``, levels summed, from already selected entries."""
    by_level: Dict[Level, List[TimeEntry]] = defaultdict(list)
    for e in selected:
        if e.stage == stage:
            by_level[e.level].append(e)

    items: Dict[int, StageLeaderboardItem] = {}
    for level in LEVELS:
        for e, rank, _untied in _rank_slot(by_level[level], rank_cutoff):
            item = items.get(e.player_id)
            if item is None:
                item = items[e.player_id] = StageLeaderboardItem(players[e.player_id])
            item.points += points_for_rank(rank)
            if item.latest_time is None or e.date > item.latest_time:
                item.latest_time = e.date

    ordered = sorted(items.values(), key=lambda i: (-i.points, i.player.id))
    _assign_ranks(ordered)
    return StageLeaderboard(stage, day, ordered)


__all__ = [
    "ExcludePlayer",
    "parse_exclude",
    "select_current_entries",
    "compute_ranking",
    "stage_leaderboard",
]
