from datetime import date
from typing import Any, Dict, List, Optional

# Read-only repository proxy.
# Delegates to datastore_pg; tests monkeypatch the datastore_pg functions.

from . import datastore_pg as _pg
from .catalog import Game, Level, Stage
from .errors import InvalidInput
from .models import Player, TimeEntry


def fetch_entries(
    game: Optional[Game] = None,
    stage: Optional[Stage] = None,
    level: Optional[Level] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> List[TimeEntry]:
    """Entries of ``game``, ``stage`` or ``stage`` + ``level`` within an optional date range."""
    if game is None and stage is None:
        raise InvalidInput("fetch_entries needs a game or a stage")
    if level is not None and stage is None:
        raise InvalidInput("fetch_entries needs a stage when a level is given")
    if start_date is not None and end_date is not None and start_date > end_date:
        raise InvalidInput(f"start date {start_date} is after end date {end_date}")
    return _pg.fetch_entries(game=game, stage=stage, level=level, start_date=start_date, end_date=end_date)


def fetch_players(include_dirty: bool = False) -> List[Player]:
    return _pg.fetch_players(include_dirty=include_dirty)


def server_info() -> Dict[str, Any]:
    return _pg.server_info()
