"""Request-level operations: fetch, validate, compute, merge.

Per-stage work runs on a bounded thread pool. Each worker returns its own
list and the coordinator concatenates them once every future has completed,
so no partial aggregate is ever visible.
"""

from __future__ import annotations

import logging
import os
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from . import clock, datastore
from .catalog import (
    DEFAULT_RANK_CUTOFF,
    LEVELS,
    Engine,
    Game,
    Level,
    Stage,
    game_label,
    get_stages,
    in_game_lifespan,
    release_date,
    stage_game,
)
from .chain import build_chain, find_ambiguous, last_tied_record, validate_entries
from .dates import NoDateRule, parse_no_date_rule, resolve_entries
from .errors import InvalidInput
from .models import (
    Player,
    RankingEntry,
    StageEntryCount,
    StageLeaderboard,
    Standing,
    StageSweep,
    TimeEntry,
    WorldRecord,
)
from .ranking import ExcludePlayer, compute_ranking as _compute_ranking, select_current_entries, stage_leaderboard
from .standings import StandingType, compute_standings as _standings_of, sort_standings
from .sweeps import detect_stage_sweeps, sort_sweeps

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

Slot = Tuple[Stage, Level]


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)))
    except ValueError:
        return default


def worker_count() -> int:
    return max(1, _env_int("ELITE_WORKERS", os.cpu_count() or 1))


def default_no_date_rule() -> NoDateRule:
    return parse_no_date_rule(os.environ.get("ELITE_NO_DATE_RULE", NoDateRule.AVERAGE.value))


def default_rank_cutoff() -> int:
    return _env_int("ELITE_RANK_CUTOFF", DEFAULT_RANK_CUTOFF)


@dataclass
class RankingOptions:
    full_details: bool = False
    engine: Optional[Engine] = None
    no_date_rule: Optional[NoDateRule] = None
    exclude: Optional[ExcludePlayer] = None
    skip_stages: Sequence[Stage] = field(default_factory=tuple)
    months_of_fresh_times: Optional[int] = None
    rank_cutoff: Optional[int] = None
    include_dirty: bool = False
    # (player_id, legacy_date): that player at the ranking date against everyone else at legacy_date.
    versus_legacy: Optional[Tuple[int, date]] = None


def fan_out(fn: Callable[[T], List[R]], items: Sequence[T], name: str) -> List[R]:
    """Run ``fn`` over ``items`` on the worker pool and concatenate results in item order.

    A failing worker re-raises here once the pool has drained; the other
    workers finish and their results are discarded.
    """
    if not items:
        return []
    workers = min(worker_count(), len(items))
    if workers == 1:
        out: List[R] = []
        for item in items:
            out.extend(fn(item))
        return out
    executor: Optional[ThreadPoolExecutor] = None
    try:
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"elite-{name}")
        futures = [executor.submit(fn, item) for item in items]
        merged: List[R] = []
        for future in futures:
            merged.extend(future.result())
        return merged
    finally:
        if executor is not None:
            executor.shutdown(wait=True)


def _players(include_dirty: bool = False) -> Dict[int, Player]:
    return {p.id: p for p in datastore.fetch_players(include_dirty=include_dirty)}


def _check_stage(game: Game, stage: Optional[Stage]) -> None:
    if stage is not None and stage not in get_stages(game):
        raise InvalidInput(f"stage {stage.name} does not belong to {game.name}")


def _check_day(game: Game, day: Optional[date], what: str) -> None:
    if day is not None and not in_game_lifespan(game, day, clock.today()):
        raise InvalidInput(f"{what} {day} is outside the lifespan of {game_label(game)}")


def _resolved_entries(
    game: Game,
    players: Dict[int, Player],
    stage: Optional[Stage] = None,
    level: Optional[Level] = None,
    as_of: Optional[date] = None,
    engine: Optional[Engine] = None,
) -> Dict[Slot, List[TimeEntry]]:
    """Entries of known players by slot, dateless ones carrying their resolved date.

    Resolution sees every entry of the game; the stage, level, date and engine
    filters apply to the resolved copies.
    """
    entries = datastore.fetch_entries(game=game)
    validate_entries(entries)
    known = [e for e in entries if e.player_id in players]
    resolved = resolve_entries(known, players, game, default_no_date_rule(), as_of)
    by_slot: Dict[Slot, List[TimeEntry]] = defaultdict(list)
    for e in resolved:
        if stage is not None and e.stage != stage:
            continue
        if level is not None and e.level != level:
            continue
        if as_of is not None and e.date > as_of:
            continue
        if engine is not None and e.engine != engine:
            continue
        by_slot[(e.stage, e.level)].append(e)
    return by_slot


def compute_ranking(game: Game, ranking_date: date, options: Optional[RankingOptions] = None) -> List[RankingEntry]:
    options = options or RankingOptions()
    _check_day(game, ranking_date, "ranking date")
    for stage in options.skip_stages:
        _check_stage(game, stage)
    players = datastore.fetch_players(include_dirty=options.include_dirty)
    if options.versus_legacy is not None:
        player_id, legacy_date = options.versus_legacy
        _check_day(game, legacy_date, "legacy date")
        if player_id not in {p.id for p in players}:
            raise InvalidInput(f"unknown player {player_id}")
    entries = datastore.fetch_entries(game=game)
    return _compute_ranking(
        entries,
        players,
        ranking_date,
        options.no_date_rule or default_no_date_rule(),
        game=game,
        full_details=options.full_details,
        engine=options.engine,
        rank_cutoff=options.rank_cutoff or default_rank_cutoff(),
        exclude=options.exclude,
        skip_stages=options.skip_stages,
        months_of_fresh_times=options.months_of_fresh_times,
        versus_legacy=options.versus_legacy,
        runner=lambda fn, stages: fan_out(fn, stages, "ranking"),
    )


def compute_world_records(
    game: Game,
    stage: Optional[Stage] = None,
    level: Optional[Level] = None,
    as_of: Optional[date] = None,
    engine: Optional[Engine] = None,
) -> Dict[Slot, List[WorldRecord]]:
    """World-record chain of every requested (stage, level), in catalog order."""
    _check_stage(game, stage)
    _check_day(game, as_of, "date")
    players = _players()
    by_slot = _resolved_entries(game, players, stage=stage, level=level, as_of=as_of, engine=engine)
    stages = [stage] if stage is not None else list(get_stages(game))
    levels = [level] if level is not None else list(LEVELS)

    def _stage_chains(stg: Stage) -> List[Tuple[Slot, List[WorldRecord]]]:
        return [((stg, lvl), build_chain(stg, lvl, by_slot.get((stg, lvl), []), players)) for lvl in levels]

    chains = dict(fan_out(_stage_chains, stages, "wr"))
    logger.info(
        "compute_world_records game=%s slots=%d nodes=%d",
        game.name, len(chains), sum(len(c) for c in chains.values()),
    )
    return chains


def compute_standings(
    game: Game,
    standing_type: StandingType,
    as_of: Optional[date] = None,
    still_ongoing: bool = False,
    engine: Optional[Engine] = None,
    reference_date: Optional[date] = None,
) -> List[Standing]:
    """Longest standings of ``game`` under ``standing_type``, longest first."""
    _check_day(game, as_of, "date")
    players = _players()
    by_slot = _resolved_entries(game, players, as_of=as_of, engine=engine)
    reference = reference_date or as_of or clock.today()

    def _stage_standings(stg: Stage) -> List[Standing]:
        chains = [build_chain(stg, lvl, by_slot.get((stg, lvl), []), players) for lvl in LEVELS]
        return _standings_of(chains, standing_type, reference, still_ongoing)

    standings = fan_out(_stage_standings, list(get_stages(game)), "standing")
    logger.info("compute_standings game=%s type=%s standings=%d", game.name, standing_type.value, len(standings))
    return sort_standings(standings)


def compute_sweeps(
    game: Game,
    untied: bool,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    stage: Optional[Stage] = None,
) -> List[StageSweep]:
    start = start_date or release_date(game)
    end = end_date or clock.today()
    if start > end:
        raise InvalidInput(f"start date {start} is after end date {end}")
    _check_stage(game, stage)
    players = _players()
    by_slot = _resolved_entries(game, players, stage=stage, as_of=end)
    stages = [stage] if stage is not None else list(get_stages(game))

    def _stage_sweeps(stg: Stage) -> List[StageSweep]:
        stage_entries = [e for lvl in LEVELS for e in by_slot.get((stg, lvl), [])]
        return detect_stage_sweeps(stg, stage_entries, players, untied, start, end)

    sweeps = fan_out(_stage_sweeps, stages, "sweep")
    logger.info("compute_sweeps game=%s untied=%s sweeps=%d", game.name, untied, len(sweeps))
    return sort_sweeps(sweeps)


def compute_ambiguous_world_records(game: Game, untied_slay: bool) -> List[WorldRecord]:
    """Chain nodes whose holder order cannot be settled from day-level dates."""
    chains = compute_world_records(game)
    out: List[WorldRecord] = []
    for slot in sorted(chains, key=lambda k: (k[0].value, k[1].value)):
        out.extend(find_ambiguous(chains[slot], untied_slay))
    return out


def compute_last_tied_records(game: Game, day: date) -> Dict[Stage, Dict[Level, Tuple[Optional[TimeEntry], bool]]]:
    """Per stage and level, the latest entry matching the record time as of ``day``."""
    _check_day(game, day, "date")
    players = _players()
    by_slot = _resolved_entries(game, players, as_of=day)

    def _stage_last(stg: Stage) -> List[Tuple[Stage, Dict[Level, Tuple[Optional[TimeEntry], bool]]]]:
        return [(stg, {lvl: last_tied_record(by_slot.get((stg, lvl), []), day) for lvl in LEVELS})]

    return dict(fan_out(_stage_last, list(get_stages(game)), "last-tied"))


def _within(day: Optional[date], start: Optional[date], end: Optional[date]) -> bool:
    # Half-open [start, end); a missing bound is unbounded.
    if day is None:
        return start is None and end is None
    return (start is None or day >= start) and (end is None or day < end)


def compute_entries_count(
    game: Game,
    start_date: date,
    end_date: date,
    level_details: bool = False,
    global_start_date: Optional[date] = None,
    global_end_date: Optional[date] = None,
) -> List[StageEntryCount]:
    """Submissions per stage (per level with ``level_details``) over ``[start_date, end_date)``.

    The total count covers the global window, or every submission when it is
    left open. Dateless submissions only count toward an open total.
    """
    if start_date >= end_date:
        raise InvalidInput(f"start date {start_date} is not before end date {end_date}")
    if global_start_date is not None and global_end_date is not None and global_start_date >= global_end_date:
        raise InvalidInput(f"global start date {global_start_date} is not before {global_end_date}")
    entries = datastore.fetch_entries(game=game)
    period = [e for e in entries if e.date is not None and start_date <= e.date < end_date]
    overall = [e for e in entries if _within(e.date, global_start_date, global_end_date)]
    levels: List[Optional[Level]] = list(LEVELS) if level_details else [None]

    def _matches(e: TimeEntry, stg: Stage, lvl: Optional[Level]) -> bool:
        return e.stage == stg and (lvl is None or e.level == lvl)

    def _stage_counts(stg: Stage) -> List[StageEntryCount]:
        return [
            StageEntryCount(
                stg,
                lvl,
                start_date,
                end_date,
                period_entries_count=sum(1 for e in period if _matches(e, stg, lvl)),
                total_entries_count=sum(1 for e in overall if _matches(e, stg, lvl)),
                all_stages_entries_count=len(period),
            )
            for lvl in levels
        ]

    counts = fan_out(_stage_counts, list(get_stages(game)), "count")
    logger.info("compute_entries_count game=%s period=%d total=%d", game.name, len(period), len(overall))
    return counts


def compute_leaderboard_history(
    stage: Stage,
    days_step: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    no_date_rule: Optional[NoDateRule] = None,
) -> List[StageLeaderboard]:
    """Stage leaderboard every ``days_step`` days from ``start_date``, plus ``end_date``."""
    if days_step <= 0:
        raise InvalidInput(f"days step must be positive, got {days_step}")
    game = stage_game(stage)
    start = start_date or release_date(game)
    end = end_date or clock.today()
    if start > end:
        raise InvalidInput(f"start date {start} is after end date {end}")
    players = _players()
    entries = datastore.fetch_entries(game=game)
    validate_entries(entries)
    rule = no_date_rule or default_no_date_rule()
    cutoff = default_rank_cutoff()

    days: List[date] = []
    current = start
    while current <= end:
        days.append(current)
        current += timedelta(days=days_step)
    if days[-1] != end:
        days.append(end)

    def _board(day: date) -> List[StageLeaderboard]:
        selected = select_current_entries(entries, players, day, rule, game)
        return [stage_leaderboard(selected, stage, players, day, cutoff)]

    history = fan_out(_board, days, "history")
    logger.info("compute_leaderboard_history stage=%s samples=%d", stage.name, len(history))
    return history


__all__ = [
    "RankingOptions",
    "fan_out",
    "worker_count",
    "default_no_date_rule",
    "default_rank_cutoff",
    "compute_ranking",
    "compute_world_records",
    "compute_standings",
    "compute_sweeps",
    "compute_ambiguous_world_records",
    "compute_last_tied_records",
    "compute_entries_count",
    "compute_leaderboard_history",
]
