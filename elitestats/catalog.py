"""Fixed reference data: games, stages, levels, engines and the points table.

Everything here is immutable and built once at import time. Parsing helpers
accept enum names, display labels or integer codes so the HTTP layer can pass
query-string values straight through.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Dict, Optional, Tuple

from .errors import InvalidInput


class Game(Enum):
    GOLDENEYE = 1
    PERFECT_DARK = 2


class Level(Enum):
    EASY = 1
    MEDIUM = 2
    HARD = 3


class Engine(Enum):
    NTSC_J = 1
    NTSC = 2
    PAL = 3


class Stage(Enum):
    DAM = 1
    FACILITY = 2
    RUNWAY = 3
    SURFACE_1 = 4
    BUNKER_1 = 5
    SILO = 6
    FRIGATE = 7
    SURFACE_2 = 8
    BUNKER_2 = 9
    STATUE = 10
    ARCHIVES = 11
    STREETS = 12
    DEPOT = 13
    TRAIN = 14
    JUNGLE = 15
    CONTROL = 16
    CAVERNS = 17
    CRADLE = 18
    AZTEC = 19
    EGYPT = 20
    DEFECTION = 21
    INVESTIGATION = 22
    EXTRACTION = 23
    VILLA = 24
    CHICAGO = 25
    G5 = 26
    INFILTRATION = 27
    RESCUE = 28
    ESCAPE = 29
    AIR_BASE = 30
    AIR_FORCE_ONE = 31
    CRASH_SITE = 32
    PELAGIC_II = 33
    DEEP_SEA = 34
    CARRINGTON_INSTITUTE = 35
    ATTACK_SHIP = 36
    SKEDAR_RUINS = 37
    MR_BLONDES_REVENGE = 38
    MAIAN_SOS = 39
    WAR = 40


STAGES_PER_GAME = 20

# Slot without a time is charged this many seconds in the cumulated time.
PENALTY_TIME = 1200

# Submissions after this day always carry a date.
LAST_EMPTY_DATE_CUTOFF = date(2013, 1, 1)

DEFAULT_RANK_CUTOFF = 100

_RELEASE_DATES: Dict[Game, date] = {
    Game.GOLDENEYE: date(1998, 7, 26),
    Game.PERFECT_DARK: date(1998, 7, 26),
}

_GAME_LABELS: Dict[Game, str] = {
    Game.GOLDENEYE: "GoldenEye",
    Game.PERFECT_DARK: "Perfect Dark",
}

_STAGE_LABELS: Dict[Stage, str] = {
    Stage.DAM: "Dam",
    Stage.FACILITY: "Facility",
    Stage.RUNWAY: "Runway",
    Stage.SURFACE_1: "Surface 1",
    Stage.BUNKER_1: "Bunker 1",
    Stage.SILO: "Silo",
    Stage.FRIGATE: "Frigate",
    Stage.SURFACE_2: "Surface 2",
    Stage.BUNKER_2: "Bunker 2",
    Stage.STATUE: "Statue",
    Stage.ARCHIVES: "Archives",
    Stage.STREETS: "Streets",
    Stage.DEPOT: "Depot",
    Stage.TRAIN: "Train",
    Stage.JUNGLE: "Jungle",
    Stage.CONTROL: "Control",
    Stage.CAVERNS: "Caverns",
    Stage.CRADLE: "Cradle",
    Stage.AZTEC: "Aztec",
    Stage.EGYPT: "Egypt",
    Stage.DEFECTION: "dataDyne Central - Defection",
    Stage.INVESTIGATION: "dataDyne Research - Investigation",
    Stage.EXTRACTION: "dataDyne Central - Extraction",
    Stage.VILLA: "Carrington Villa - Hostage One",
    Stage.CHICAGO: "Chicago - Stealth",
    Stage.G5: "G5 Building - Reconnaissance",
    Stage.INFILTRATION: "Area 51 - Infiltration",
    Stage.RESCUE: "Area 51 - Rescue",
    Stage.ESCAPE: "Area 51 - Escape",
    Stage.AIR_BASE: "Air Base - Espionage",
    Stage.AIR_FORCE_ONE: "Air Force One - Antiterrorism",
    Stage.CRASH_SITE: "Crash Site - Confrontation",
    Stage.PELAGIC_II: "Pelagic II - Exploration",
    Stage.DEEP_SEA: "Deep Sea - Nullify Threat",
    Stage.CARRINGTON_INSTITUTE: "Carrington Institute - Defense",
    Stage.ATTACK_SHIP: "Attack Ship - Covert Assault",
    Stage.SKEDAR_RUINS: "Skedar Ruins - Battle Shrine",
    Stage.MR_BLONDES_REVENGE: "Mr. Blonde's Revenge",
    Stage.MAIAN_SOS: "Maian SOS",
    Stage.WAR: "WAR!",
}

_LEVEL_LABELS: Dict[Tuple[Level, Game], str] = {
    (Level.EASY, Game.GOLDENEYE): "Agent",
    (Level.MEDIUM, Game.GOLDENEYE): "Secret agent",
    (Level.HARD, Game.GOLDENEYE): "00 agent",
    (Level.EASY, Game.PERFECT_DARK): "Agent",
    (Level.MEDIUM, Game.PERFECT_DARK): "Special agent",
    (Level.HARD, Game.PERFECT_DARK): "Perfect agent",
}

_STAGES_BY_GAME: Dict[Game, Tuple[Stage, ...]] = {
    game: tuple(
        s for s in Stage
        if (game.value - 1) * STAGES_PER_GAME < s.value <= game.value * STAGES_PER_GAME
    )
    for game in Game
}

LEVELS: Tuple[Level, ...] = tuple(Level)


def get_stages(game: Game) -> Tuple[Stage, ...]:
    return _STAGES_BY_GAME[game]


def stage_game(stage: Stage) -> Game:
    return Game((stage.value - 1) // STAGES_PER_GAME + 1)


def release_date(game: Game) -> date:
    """First day times were recorded for ``game``."""
    return _RELEASE_DATES[game]


def game_label(game: Game) -> str:
    return _GAME_LABELS[game]


def stage_label(stage: Stage) -> str:
    return _STAGE_LABELS[stage]


def level_label(level: Level, game: Game) -> str:
    return _LEVEL_LABELS[(level, game)]


def stage_from_label(label: str) -> Optional[Stage]:
    target = (label or "").strip().lower()
    for stage, text in _STAGE_LABELS.items():
        if text.lower() == target:
            return stage
    return None


def level_from_label(label: str) -> Optional[Level]:
    target = (label or "").strip().lower()
    for (level, _game), text in _LEVEL_LABELS.items():
        if text.lower() == target:
            return level
    return None


def in_game_lifespan(game: Game, day: date, today: date) -> bool:
    return release_date(game) <= day <= today


def points_for_rank(rank: int) -> int:
    """Points awarded for ``rank`` within a (stage, level) bucket."""
    if rank <= 0:
        raise InvalidInput(f"rank must be positive, got {rank}")
    if rank == 1:
        return 100
    if rank == 2:
        return 97
    return max(0, 98 - rank)


def _parse_enum(enum_cls, raw, what: str, label_lookup=None):
    if isinstance(raw, enum_cls):
        return raw
    if raw is None:
        raise InvalidInput(f"missing {what}")
    text = str(raw).strip()
    if text.lstrip("-").isdigit():
        try:
            return enum_cls(int(text))
        except ValueError:
            raise InvalidInput(f"unknown {what} code: {raw}") from None
    key = text.upper().replace(" ", "_").replace("-", "_")
    if key in enum_cls.__members__:
        return enum_cls[key]
    if label_lookup is not None:
        found = label_lookup(text)
        if found is not None:
            return found
    raise InvalidInput(f"unknown {what} code: {raw}")


def parse_game(raw) -> Game:
    def _by_label(text: str) -> Optional[Game]:
        for game, label in _GAME_LABELS.items():
            if label.lower() == text.lower():
                return game
        return None
    return _parse_enum(Game, raw, "game", _by_label)


def parse_stage(raw) -> Stage:
    return _parse_enum(Stage, raw, "stage", stage_from_label)


def parse_level(raw) -> Level:
    return _parse_enum(Level, raw, "level", level_from_label)


def parse_engine(raw) -> Engine:
    return _parse_enum(Engine, raw, "engine")


__all__ = [
    "Game",
    "Stage",
    "Level",
    "Engine",
    "LEVELS",
    "STAGES_PER_GAME",
    "PENALTY_TIME",
    "LAST_EMPTY_DATE_CUTOFF",
    "DEFAULT_RANK_CUTOFF",
    "get_stages",
    "stage_game",
    "release_date",
    "game_label",
    "stage_label",
    "level_label",
    "stage_from_label",
    "level_from_label",
    "in_game_lifespan",
    "points_for_rank",
    "parse_game",
    "parse_stage",
    "parse_level",
    "parse_engine",
]
