import logging
import os
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2 import pool as pg_pool
from psycopg2.extras import RealDictCursor

from .catalog import Engine, Game, Level, Stage, STAGES_PER_GAME
from .errors import DataUnavailable
from .models import Player, TimeEntry

logger = logging.getLogger(__name__)

_POOL: Optional[pg_pool.AbstractConnectionPool] = None

_ENTRY_COLUMNS = "id, player_id, stage_id, level_id, time, date, system_id"
_PLAYER_COLUMNS = "id, real_name, surname, color, join_date, is_dirty, is_banned"


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def _connect_kwargs() -> Dict[str, Any]:
    """Common connection kwargs: connect_timeout + TCP keepalives.

    Defaults:
      - connect_timeout: 10 seconds (overridable via DB_CONNECT_TIMEOUT)
      - keepalives: enabled unless DB_KEEPALIVES=0
      - keepalive tunables applied if provided (IDLE/INTERVAL/COUNT)
    """
    kwargs: Dict[str, Any] = {}
    ct_env = _env_int("DB_CONNECT_TIMEOUT")
    kwargs["connect_timeout"] = ct_env if ct_env is not None else 10

    ka_env = os.environ.get("DB_KEEPALIVES")
    if ka_env is None:
        kwargs["keepalives"] = 1
    else:
        kwargs["keepalives"] = 0 if str(ka_env).lower() in ("0", "false") else 1

    for env_name, key in (
        ("DB_KEEPALIVES_IDLE", "keepalives_idle"),
        ("DB_KEEPALIVES_INTERVAL", "keepalives_interval"),
        ("DB_KEEPALIVES_COUNT", "keepalives_count"),
    ):
        value = _env_int(env_name)
        if value is not None:
            kwargs[key] = value
    return kwargs


def init_pool(minconn: int = 1, maxconn: int = 10) -> None:
    """Create the shared read pool from DATABASE_URL.

    Calling again once a pool exists is a no-op. Without DATABASE_URL the
    pool stays unset and each query opens a direct connection.
    """
    global _POOL
    if _POOL is not None:
        return
    url = os.environ.get("DATABASE_URL")
    if not url:
        return
    _POOL = pg_pool.ThreadedConnectionPool(minconn, maxconn, dsn=url, **_connect_kwargs())
    logger.info("PostgreSQL pool ready minconn=%d maxconn=%d", minconn, maxconn)


def _is_healthy(conn) -> bool:
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
        if not getattr(conn, "autocommit", False):
            conn.rollback()
    except (psycopg2.OperationalError, psycopg2.InterfaceError):
        return False
    return True


@contextmanager
def _get_conn():
    """Yield a pooled connection, or a direct one when no pool exists.

    A pooled connection failing the ``SELECT 1`` ping is discarded and the
    checkout retried once; a second failure raises ``OperationalError``.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise DataUnavailable("DATABASE_URL not set; configure a PostgreSQL connection string")
    if _POOL is None:
        conn = psycopg2.connect(url, **_connect_kwargs())
        try:
            yield conn
        finally:
            conn.close()
        return

    conn = None
    for _attempt in range(2):
        candidate = _POOL.getconn()
        if _is_healthy(candidate):
            conn = candidate
            break
        logger.warning("Discarding stale pooled connection")
        _POOL.putconn(candidate, close=True)
    if conn is None:
        raise psycopg2.OperationalError("Failed to acquire healthy DB connection after retry")
    try:
        yield conn
    finally:
        # status 1 = active, 2 = in transaction, 3 = in error
        if getattr(conn, "closed", 0) == 0 and not getattr(conn, "autocommit", False):
            if getattr(conn, "status", 0) in (1, 2, 3):
                conn.rollback()
        _POOL.putconn(conn)


def _query(sql: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
    try:
        with _get_conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, params)
                return list(cur.fetchall())
    except psycopg2.Error as exc:
        logger.exception("Query failed")
        raise DataUnavailable(f"database query failed: {exc}") from exc


def _as_date(val) -> Optional[date]:
    if val is None:
        return None
    if isinstance(val, datetime):
        return val.date()
    return val


def _row_to_entry(row: Dict[str, Any]) -> TimeEntry:
    system_id = row.get("system_id")
    return TimeEntry(
        id=row.get("id"),
        player_id=int(row["player_id"]),
        stage=Stage(int(row["stage_id"])),
        level=Level(int(row["level_id"])),
        time=int(row["time"]),
        date=_as_date(row.get("date")),
        engine=Engine(int(system_id)) if system_id else None,
    )


def _row_to_player(row: Dict[str, Any]) -> Player:
    return Player(
        id=int(row["id"]),
        real_name=row.get("real_name") or "",
        surname=row.get("surname") or "",
        color=row.get("color") or "000000",
        join_date=_as_date(row.get("join_date")),
        is_dirty=bool(row.get("is_dirty")),
        is_banned=bool(row.get("is_banned")),
    )


def fetch_entries(
    game: Optional[Game] = None,
    stage: Optional[Stage] = None,
    level: Optional[Level] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> List[TimeEntry]:
    """Entries for a game, a stage or a stage and level.

    The date range bounds dated entries only; dateless entries are always
    returned so the caller can resolve them.
    """
    # A row without a time is not a submission.
    clauses: List[str] = ["time IS NOT NULL"]
    params: Dict[str, Any] = {}
    if stage is not None:
        clauses.append("stage_id = %(stage_id)s")
        params["stage_id"] = stage.value
    elif game is not None:
        clauses.append("stage_id BETWEEN %(first_stage)s AND %(last_stage)s")
        params["first_stage"] = (game.value - 1) * STAGES_PER_GAME + 1
        params["last_stage"] = game.value * STAGES_PER_GAME
    if level is not None:
        clauses.append("level_id = %(level_id)s")
        params["level_id"] = level.value
    if start_date is not None:
        clauses.append("(date IS NULL OR date >= %(start_date)s)")
        params["start_date"] = start_date
    if end_date is not None:
        clauses.append("(date IS NULL OR date <= %(end_date)s)")
        params["end_date"] = end_date
    sql = f"SELECT {_ENTRY_COLUMNS} FROM entry WHERE " + " AND ".join(clauses)
    sql += " ORDER BY stage_id, level_id, date NULLS LAST, time, id"
    rows = _query(sql, params)
    logger.debug("fetch_entries rows=%d", len(rows))
    return [_row_to_entry(r) for r in rows if r.get("time") is not None]


def fetch_players(include_dirty: bool = False) -> List[Player]:
    sql = f"SELECT {_PLAYER_COLUMNS} FROM player WHERE is_banned = FALSE"
    if not include_dirty:
        sql += " AND is_dirty = FALSE"
    sql += " ORDER BY id"
    return [_row_to_player(r) for r in _query(sql, {})]


def server_info() -> Dict[str, Any]:
    rows = _query("SELECT current_user AS user, current_database() AS database, version() AS version", {})
    row = rows[0] if rows else {}
    return {
        "user": row.get("user"),
        "database": row.get("database"),
        "server_version": (row.get("version") or "").split("\n")[0],
    }
