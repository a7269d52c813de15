"""Data models shared by the computation modules.

Input records (``TimeEntry``, ``Player``) are frozen; the engine only ever
produces decorated copies of them. Derived records are plain dataclasses built
fresh for every request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from .catalog import (
    PENALTY_TIME,
    Engine,
    Game,
    Level,
    Stage,
    get_stages,
    level_label,
    stage_game,
    stage_label,
)


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class TimeEntry:
    player_id: int
    stage: Stage
    level: Level
    time: int
    date: Optional[date] = None
    engine: Optional[Engine] = None
    is_simulated_date: bool = False
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "player_id": self.player_id,
            "stage": self.stage.name,
            "level": self.level.name,
            "time": self.time,
            "date": _iso(self.date),
            "engine": self.engine.name if self.engine else None,
            "is_simulated_date": self.is_simulated_date,
        }


@dataclass(frozen=True)
class Player:
    id: int
    real_name: str = ""
    surname: str = ""
    color: str = "000000"
    join_date: Optional[date] = None
    is_dirty: bool = False
    is_banned: bool = False

    @property
    def display_name(self) -> str:
        return self.real_name or self.surname or str(self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.display_name,
            "surname": self.surname,
            "color": self.color,
            "join_date": _iso(self.join_date),
        }


@dataclass
class RankingEntry:
    """Per-player aggregate for one game at one ranking date.

    ``details`` and the per-level maps are only filled when the ranking was
    requested with full detail.
    """

    game: Game
    player: Player
    points: int = 0
    records_count: int = 0
    untied_records_count: int = 0
    cumulated_time: int = 0
    rank: int = 0
    full_details: bool = False
    level_points: Dict[Level, int] = field(default_factory=dict)
    level_records_count: Dict[Level, int] = field(default_factory=dict)
    level_untied_records_count: Dict[Level, int] = field(default_factory=dict)
    level_cumulated_time: Dict[Level, int] = field(default_factory=dict)
    details: Dict[Stage, Dict[Level, Tuple[int, int, int, Optional[date]]]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        stage_count = len(get_stages(self.game))
        if not self.cumulated_time:
            self.cumulated_time = PENALTY_TIME * stage_count * len(Level)
        if self.full_details:
            for level in Level:
                self.level_points.setdefault(level, 0)
                self.level_records_count.setdefault(level, 0)
                self.level_untied_records_count.setdefault(level, 0)
                self.level_cumulated_time.setdefault(level, PENALTY_TIME * stage_count)

    def add_stage_and_level_datas(self, entry: TimeEntry, rank: int, points: int, untied: bool) -> None:
        """Fold one scored slot into the aggregate."""
        is_record = rank == 1
        # A slot over the penalty time costs more than an empty one.
        saved = PENALTY_TIME - entry.time
        self.points += points
        self.cumulated_time -= saved
        if is_record:
            self.records_count += 1
            if untied:
                self.untied_records_count += 1
        if not self.full_details:
            return
        level = entry.level
        self.level_points[level] += points
        self.level_cumulated_time[level] -= saved
        if is_record:
            self.level_records_count[level] += 1
            if untied:
                self.level_untied_records_count[level] += 1
        self.details.setdefault(entry.stage, {})[level] = (rank, points, entry.time, entry.date)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "rank": self.rank,
            "player": self.player.to_dict(),
            "points": self.points,
            "records_count": self.records_count,
            "untied_records_count": self.untied_records_count,
            "cumulated_time": self.cumulated_time,
        }
        if self.full_details:
            out["levels"] = {
                level.name: {
                    "points": self.level_points[level],
                    "records_count": self.level_records_count[level],
                    "untied_records_count": self.level_untied_records_count[level],
                    "cumulated_time": self.level_cumulated_time[level],
                }
                for level in Level
            }
            out["details"] = {
                stage.name: {
                    level.name: {"rank": r, "points": p, "time": t, "date": _iso(d)}
                    for level, (r, p, t, d) in levels.items()
                }
                for stage, levels in self.details.items()
            }
        return out


@dataclass(frozen=True)
class Holder:
    player: Player
    date: date
    engine: Optional[Engine] = None


@dataclass
class WorldRecord:
    """One node of a (stage, level) world-record chain."""

    stage: Stage
    level: Level
    time: int
    holders: List[Holder] = field(default_factory=list)
    slay_player: Optional[Player] = None
    slay_date: Optional[date] = None

    @property
    def player(self) -> Player:
        return self.holders[0].player

    @property
    def date(self) -> date:
        return self.holders[0].date

    @property
    def engine(self) -> Optional[Engine]:
        return self.holders[0].engine

    @property
    def untied_slay_player(self) -> Optional[Player]:
        return self.holders[1].player if len(self.holders) > 1 else None

    @property
    def untied_slay_date(self) -> Optional[date]:
        return self.holders[1].date if len(self.holders) > 1 else None

    @property
    def still_standing(self) -> bool:
        return self.slay_date is None

    @property
    def is_untied(self) -> bool:
        """True when the first holder held the time alone for at least a day."""
        if len(self.holders) == 1:
            return True
        return self.holders[1].date > self.holders[0].date

    @property
    def is_ambiguous(self) -> bool:
        return self.check_ambiguous_holders(1) or self.check_ambiguous_holders(2)

    def has_holder(self, player_id: int) -> bool:
        return any(h.player.id == player_id for h in self.holders)

    def add_holder(self, player: Player, day: date, engine: Optional[Engine] = None) -> bool:
        # The same player on a second engine is not a new holder.
        if self.has_holder(player.id):
            return False
        self.holders.append(Holder(player, day, engine))
        return True

    def add_slayer(self, player: Player, day: date) -> None:
        self.slay_player = player
        self.slay_date = day

    def check_ambiguous_holders(self, index: int) -> bool:
        """True when holder ``index`` and its predecessor share an acquisition day."""
        return len(self.holders) > index and self.holders[index - 1].date == self.holders[index].date

    def days_before_slay(self, reference: date, untied: bool) -> int:
        end = reference
        if untied and self.untied_slay_date is not None and self.untied_slay_date < reference:
            end = self.untied_slay_date
        elif self.slay_date is not None and self.slay_date < reference:
            end = self.slay_date
        return (end - self.date).days

    def to_dict(self, reference: Optional[date] = None) -> Dict[str, Any]:
        """JSON shape of the node; ``reference`` adds the standing lengths in days."""
        game = stage_game(self.stage)
        out = {
            "stage": self.stage.name,
            "stage_label": stage_label(self.stage),
            "level": self.level.name,
            "level_label": level_label(self.level, game),
            "time": self.time,
            "holders": [
                {
                    "player": h.player.to_dict(),
                    "date": _iso(h.date),
                    "engine": h.engine.name if h.engine else None,
                }
                for h in self.holders
            ],
            "slay_player": self.slay_player.to_dict() if self.slay_player else None,
            "slay_date": _iso(self.slay_date),
            "untied": self.is_untied,
            "ambiguous": self.is_ambiguous,
        }
        if reference is not None:
            out["days"] = self.days_before_slay(reference, untied=False)
            out["untied_days"] = self.days_before_slay(reference, untied=True)
        return out


@dataclass
class Standing:
    stage: Stage
    level: Level
    start_date: date
    author: Player
    end_date: Optional[date] = None
    slayer: Optional[Player] = None
    times: List[int] = field(default_factory=list)
    days: int = 0

    @property
    def still_ongoing(self) -> bool:
        return self.end_date is None

    def add_time(self, time: int) -> None:
        if time not in self.times:
            self.times.append(time)

    def with_days(self, reference: date) -> "Standing":
        self.days = ((self.end_date or reference) - self.start_date).days
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.name,
            "level": self.level.name,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "author": self.author.to_dict(),
            "slayer": self.slayer.to_dict() if self.slayer else None,
            "times": list(self.times),
            "days": self.days,
        }


@dataclass
class StageSweep:
    """``[start_date, end_date)`` run of days one player swept every level of a stage."""

    stage: Stage
    player: Player
    start_date: date
    end_date: date

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.name,
            "player": self.player.to_dict(),
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "days": self.days,
        }


@dataclass
class StageEntryCount:
    """Submission counts of a stage (or one of its levels) over ``[start_date, end_date)``."""

    stage: Stage
    level: Optional[Level]
    start_date: date
    end_date: date
    period_entries_count: int = 0
    total_entries_count: int = 0
    all_stages_entries_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.name,
            "level": self.level.name if self.level else None,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "period_entries_count": self.period_entries_count,
            "total_entries_count": self.total_entries_count,
            "all_stages_entries_count": self.all_stages_entries_count,
        }


@dataclass
class StageLeaderboardItem:
    player: Player
    points: int = 0
    latest_time: Optional[date] = None
    rank: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "player": self.player.to_dict(),
            "points": self.points,
            "latest_time": _iso(self.latest_time),
        }


@dataclass
class StageLeaderboard:
    """Points leaderboard of one stage, all levels summed, as it stood on ``date``."""

    stage: Stage
    date: date
    items: List[StageLeaderboardItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.name,
            "date": _iso(self.date),
            "items": [i.to_dict() for i in self.items],
        }


__all__ = [
    "TimeEntry",
    "Player",
    "RankingEntry",
    "Holder",
    "WorldRecord",
    "Standing",
    "StageSweep",
    "StageEntryCount",
    "StageLeaderboardItem",
    "StageLeaderboard",
]
