from flask import Blueprint, current_app, jsonify, request
from datetime import date
import os
import time

from . import clock, datastore, service
from .catalog import game_label, level_label, parse_engine, parse_game, parse_stage, parse_level, stage_label
from .dates import parse_no_date_rule
from .errors import EliteStatsError, InvalidInput
from .ranking import parse_exclude
from .standings import parse_standing_type


bp = Blueprint('main', __name__)

# Simple in-process caches for expensive computations
_RANKING_CACHE: dict[tuple, tuple[float, list[dict]]] = {}
_STANDINGS_CACHE: dict[tuple, tuple[float, list[dict]]] = {}
_RANKING_TTL = int(os.environ.get('CACHE_TTL_RANKING', '180'))  # seconds
_STANDINGS_TTL = int(os.environ.get('CACHE_TTL_STANDINGS', '180'))  # seconds


def _cache_get(cache: dict, key: tuple) -> list[dict] | None:
    entry = cache.get(key)
    if not entry:
        return None
    exp, value = entry
    if exp < time.time():
        cache.pop(key, None)
        return None
    return value


def _cache_set(cache: dict, key: tuple, value: list[dict], ttl: int) -> None:
    if ttl <= 0:
        return
    cache[key] = (time.time() + ttl, value)


def _cache_clear_all() -> None:
    _RANKING_CACHE.clear()
    _STANDINGS_CACHE.clear()


@bp.errorhandler(EliteStatsError)
def handle_elite_error(exc: EliteStatsError):
    if exc.status_code >= 500:
        current_app.logger.error("%s: %s", exc.kind, exc.message)
    else:
        current_app.logger.info("Rejected request %s: %s", request.path, exc.message)
    return jsonify(exc.to_dict()), exc.status_code


def _arg_date(name: str) -> date | None:
    raw = (request.args.get(name) or '').strip()
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise InvalidInput(f"{name} must be an ISO date (YYYY-MM-DD), got {raw!r}") from None


def _arg_bool(name: str, default: bool = False) -> bool:
    raw = request.args.get(name)
    if raw is None or raw == '':
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def _arg_int(name: str, default: int | None = None) -> int | None:
    raw = (request.args.get(name) or '').strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidInput(f"{name} must be an integer, got {raw!r}") from None


def _arg_optional(name: str, parser):
    raw = (request.args.get(name) or '').strip()
    return parser(raw) if raw else None


def _paginate(items: list, page: int, count: int) -> dict:
    if page < 1 or count < 1:
        raise InvalidInput("page and count must be positive")
    start = (page - 1) * count
    return {
        'page': page,
        'count': count,
        'total': len(items),
        'pages': (len(items) + count - 1) // count,
        'items': items[start:start + count],
    }


@bp.route('/health/db')
def health_db():
    """Database connectivity health check.

    Always answers 200; the body says whether the repository is reachable.
    """
    if not os.environ.get('DATABASE_URL'):
        return {
            'connected': False,
            'status': 'no_database_url',
            'message': 'DATABASE_URL is not set.',
        }
    try:
        info = datastore.server_info()
    except EliteStatsError as exc:
        return {'connected': False, 'status': 'error', 'error': exc.message}
    return {'connected': True, 'status': 'ok', **info}


@bp.route('/games/<game>/rankings')
def rankings(game):
    g = parse_game(game)
    requested_date = _arg_date('date')
    simulated_player_id = _arg_int('simulated_player_id')
    versus_legacy = None
    if simulated_player_id is not None and requested_date is not None:
        # That player today against everyone else at the requested date
        versus_legacy = (simulated_player_id, requested_date)
        ranking_date = clock.today()
    else:
        ranking_date = requested_date or clock.today()
    skip = tuple(parse_stage(s) for s in request.args.getlist('skip') if s)
    options = service.RankingOptions(
        full_details=_arg_bool('full'),
        engine=_arg_optional('engine', parse_engine),
        no_date_rule=_arg_optional('no_date_rule', parse_no_date_rule),
        exclude=_arg_optional('exclude', parse_exclude),
        skip_stages=skip,
        months_of_fresh_times=_arg_int('fresh_months'),
        rank_cutoff=_arg_int('rank_cutoff'),
        include_dirty=_arg_bool('include_dirty'),
        versus_legacy=versus_legacy,
    )
    key = (
        g.name, ranking_date.isoformat(), options.full_details,
        options.engine.name if options.engine else None,
        options.no_date_rule.value if options.no_date_rule else None,
        options.exclude.value if options.exclude else None,
        tuple(s.name for s in skip), options.months_of_fresh_times,
        options.rank_cutoff, options.include_dirty,
        versus_legacy[0] if versus_legacy else None, versus_legacy[1].isoformat() if versus_legacy else None,
    )
    table = _cache_get(_RANKING_CACHE, key)
    if table is None:
        current_app.logger.info("Computing ranking game=%s date=%s", g.name, ranking_date)
        table = [r.to_dict() for r in service.compute_ranking(g, ranking_date, options)]
        _cache_set(_RANKING_CACHE, key, table, _RANKING_TTL)
    page = _paginate(table, _arg_int('page', 1), _arg_int('count', 100))
    return {'game': game_label(g), 'date': ranking_date.isoformat(), **page}


@bp.route('/games/<game>/world-records')
def world_records(game):
    g = parse_game(game)
    stage = _arg_optional('stage', parse_stage)
    level = _arg_optional('level', parse_level)
    as_of = _arg_date('date')
    reference = as_of or clock.today()
    chains = service.compute_world_records(
        g,
        stage=stage,
        level=level,
        as_of=as_of,
        engine=_arg_optional('engine', parse_engine),
    )
    return {
        'game': game_label(g),
        'chains': [
            {
                'stage': stg.name,
                'stage_label': stage_label(stg),
                'level': lvl.name,
                'level_label': level_label(lvl, g),
                'records': [wr.to_dict(reference) for wr in chain],
            }
            for (stg, lvl), chain in chains.items()
        ],
    }


@bp.route('/games/<game>/longest-standings')
def longest_standings(game):
    g = parse_game(game)
    standing_type = parse_standing_type(request.args.get('standing_type') or 'untied')
    as_of = _arg_date('date')
    still_ongoing = _arg_bool('still_ongoing')
    engine = _arg_optional('engine', parse_engine)
    reference = as_of or clock.today()
    key = (g.name, standing_type.value, reference.isoformat(), still_ongoing, engine.name if engine else None)
    table = _cache_get(_STANDINGS_CACHE, key)
    if table is None:
        standings = service.compute_standings(
            g, standing_type, as_of=as_of, still_ongoing=still_ongoing, engine=engine, reference_date=reference,
        )
        table = [s.to_dict() for s in standings]
        _cache_set(_STANDINGS_CACHE, key, table, _STANDINGS_TTL)
    count = _arg_int('count')
    if count is not None and count < 1:
        raise InvalidInput("count must be positive")
    return {
        'game': game_label(g),
        'standing_type': standing_type.value,
        'standings': table[:count] if count else table,
    }


@bp.route('/games/<game>/sweeps')
def sweeps(game):
    g = parse_game(game)
    untied = _arg_bool('untied')
    result = service.compute_sweeps(
        g,
        untied,
        start_date=_arg_date('start_date'),
        end_date=_arg_date('end_date'),
        stage=_arg_optional('stage', parse_stage),
    )
    return {'game': game_label(g), 'untied': untied, 'sweeps': [s.to_dict() for s in result]}


@bp.route('/games/<game>/ambiguous-world-records')
def ambiguous_world_records(game):
    g = parse_game(game)
    untied_slay = _arg_bool('untied_slay')
    records = service.compute_ambiguous_world_records(g, untied_slay)
    return {'game': game_label(g), 'untied_slay': untied_slay, 'records': [wr.to_dict() for wr in records]}


@bp.route('/games/<game>/last-tied-records')
def last_tied_records(game):
    g = parse_game(game)
    day = _arg_date('date') or clock.today()
    data = service.compute_last_tied_records(g, day)
    out = []
    for stg, levels in data.items():
        for lvl, (entry, untied) in levels.items():
            out.append({
                'stage': stg.name,
                'level': lvl.name,
                'entry': entry.to_dict() if entry else None,
                'untied': untied,
            })
    return {'game': game_label(g), 'date': day.isoformat(), 'records': out}


@bp.route('/games/<game>/entries-count')
def entries_count(game):
    g = parse_game(game)
    start_date = _arg_date('start_date')
    end_date = _arg_date('end_date')
    if start_date is None or end_date is None:
        raise InvalidInput("start_date and end_date are required")
    counts = service.compute_entries_count(
        g,
        start_date,
        end_date,
        level_details=_arg_bool('level_details'),
        global_start_date=_arg_date('global_start_date'),
        global_end_date=_arg_date('global_end_date'),
    )
    return {'game': game_label(g), 'counts': [c.to_dict() for c in counts]}


@bp.route('/stages/<stage>/leaderboard-history')
def leaderboard_history(stage):
    stg = parse_stage(stage)
    history = service.compute_leaderboard_history(
        stg,
        _arg_int('days_step', 30),
        start_date=_arg_date('start_date'),
        end_date=_arg_date('end_date'),
        no_date_rule=_arg_optional('no_date_rule', parse_no_date_rule),
    )
    return {'stage': stg.name, 'stage_label': stage_label(stg), 'leaderboards': [b.to_dict() for b in history]}
