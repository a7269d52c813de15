from datetime import date, timedelta

import pytest

from elitestats.catalog import PENALTY_TIME, Engine, Game, Level, Stage
from elitestats.dates import NoDateRule
from elitestats.errors import InvalidInput
from elitestats.models import Player, TimeEntry
from elitestats.ranking import ExcludePlayer, compute_ranking, parse_exclude, select_current_entries, stage_leaderboard

GAME = Game.GOLDENEYE
SLOTS = 20 * 3
FULL_PENALTY = PENALTY_TIME * SLOTS
D0 = date(2000, 1, 1)


def day(n):
    return D0 + timedelta(days=n - 1)


def _p(pid, join=None):
    return Player(id=pid, real_name=f"P{pid}", join_date=join)


def _e(pid, time, n=1, stage=Stage.DAM, level=Level.EASY, engine=None):
    return TimeEntry(player_id=pid, stage=stage, level=level, time=time, date=day(n) if n else None, engine=engine)


def _by_player(ranking):
    return {r.player.id: r for r in ranking}


def test_rank_points_and_untied_records():
    players = [_p(1), _p(2), _p(3)]
    entries = [_e(1, 100), _e(2, 100), _e(3, 110), _e(3, 50, stage=Stage.RUNWAY)]
    ranking = compute_ranking(entries, players, day(10), game=GAME)
    rows = _by_player(ranking)
    assert rows[1].points == 100 and rows[2].points == 100
    # rank 3 after a two-way tie at rank 1
    assert rows[3].points == 95 + 100
    assert rows[3].records_count == 1 and rows[3].untied_records_count == 1
    assert rows[1].records_count == 1 and rows[1].untied_records_count == 0
    assert [r.player.id for r in ranking] == [3, 1, 2]
    assert [r.rank for r in ranking] == [1, 2, 2]


def test_missing_slot_costs_penalty_and_no_points():
    ranking = compute_ranking([_e(1, 100)], [_p(1)], day(10), game=GAME)
    [row] = ranking
    assert row.cumulated_time == FULL_PENALTY - (PENALTY_TIME - 100)
    assert row.points == 100


def test_time_above_penalty_counts_in_full():
    ranking = compute_ranking([_e(1, 1500)], [_p(1)], day(10), game=GAME, full_details=True)
    assert ranking[0].cumulated_time == PENALTY_TIME * (SLOTS - 1) + 1500
    assert ranking[0].level_cumulated_time[Level.EASY] == PENALTY_TIME * 19 + 1500


def test_best_time_before_ranking_date_is_used():
    entries = [_e(1, 120, 1), _e(1, 100, 20), _e(2, 110, 5)]
    ranking = compute_ranking(entries, [_p(1), _p(2)], day(10), game=GAME)
    rows = _by_player(ranking)
    assert rows[2].points == 100
    assert rows[1].points == 97


def test_players_joining_later_and_unknown_players_are_dropped():
    entries = [_e(1, 100), _e(2, 90), _e(99, 80)]
    ranking = compute_ranking(entries, [_p(1), _p(2, join=day(30))], day(10), game=GAME)
    assert [r.player.id for r in ranking] == [1]
    assert ranking[0].points == 100


def test_ignore_rule_excludes_dateless_entries():
    entries = [_e(1, 120, 1), _e(1, 100, 11), _e(1, 110, None), _e(2, 115, 2)]
    players = [_p(1), _p(2)]
    ignored = _by_player(compute_ranking(entries, players, day(8), NoDateRule.IGNORE, game=GAME))
    # without the dateless 110, player 1 only has 120 at day 8
    assert ignored[1].points == 97
    averaged = _by_player(compute_ranking(entries, players, day(8), NoDateRule.AVERAGE, game=GAME))
    # midpoint of day 1 and day 11 is day 6, so 110 counts
    assert averaged[1].points == 100


def test_full_details_fill_level_maps():
    entries = [_e(1, 100), _e(1, 200, level=Level.HARD), _e(2, 210, level=Level.HARD)]
    ranking = compute_ranking(entries, [_p(1), _p(2)], day(10), game=GAME, full_details=True)
    row = _by_player(ranking)[1]
    assert row.details[Stage.DAM][Level.HARD] == (1, 100, 200, day(1))
    assert row.level_points[Level.EASY] == 100
    assert row.level_records_count[Level.HARD] == 1
    assert row.level_cumulated_time[Level.MEDIUM] == PENALTY_TIME * 20
    assert "details" in row.to_dict()


def test_engine_filter():
    entries = [_e(1, 100, engine=Engine.PAL), _e(2, 110, engine=Engine.NTSC)]
    ranking = compute_ranking(entries, [_p(1), _p(2)], day(10), game=GAME, engine=Engine.NTSC)
    assert [r.player.id for r in ranking] == [2]


def test_exclusion_recomputes_without_record_holders():
    entries = [_e(1, 100), _e(2, 110), _e(3, 120), _e(2, 50, stage=Stage.RUNWAY), _e(3, 50, stage=Stage.RUNWAY)]
    players = [_p(1), _p(2), _p(3)]
    untied_excluded = compute_ranking(entries, players, day(10), game=GAME, exclude=ExcludePlayer.HAS_UNTIED)
    assert sorted(r.player.id for r in untied_excluded) == [2, 3]
    assert _by_player(untied_excluded)[2].points == 200
    all_excluded = compute_ranking(entries, players, day(10), game=GAME, exclude=ExcludePlayer.HAS_WORLD_RECORD)
    assert all_excluded == []


def test_rank_cutoff_skips_scoring():
    entries = [_e(1, 100), _e(2, 110), _e(3, 120)]
    ranking = compute_ranking(entries, [_p(1), _p(2), _p(3)], day(10), game=GAME, rank_cutoff=2)
    rows = _by_player(ranking)
    assert rows[3].points == 0
    assert rows[3].cumulated_time == FULL_PENALTY


def test_skip_stages_and_fresh_months():
    entries = [_e(1, 100), _e(2, 100, stage=Stage.RUNWAY, n=300)]
    players = [_p(1), _p(2)]
    skipped = _by_player(compute_ranking(entries, players, day(320), game=GAME, skip_stages=[Stage.DAM]))
    assert skipped[1].points == 0
    fresh = compute_ranking(entries, players, day(320), game=GAME, months_of_fresh_times=3)
    assert [r.player.id for r in fresh] == [2]


def test_ranking_is_idempotent():
    entries = [_e(p, 100 + p * 3 + lvl.value, stage=stg, level=lvl) for p in range(1, 6) for stg in (Stage.DAM, Stage.SILO) for lvl in Level]
    entries.append(_e(3, 101, None))
    players = [_p(p) for p in range(1, 6)]
    first = compute_ranking(entries, players, day(10), NoDateRule.PLAYER_HABIT, game=GAME, full_details=True)
    second = compute_ranking(entries, players, day(10), NoDateRule.PLAYER_HABIT, game=GAME, full_details=True)
    assert [r.to_dict() for r in first] == [r.to_dict() for r in second]


def test_competition_ranks_share_points():
    entries = [_e(1, 100), _e(2, 100, stage=Stage.SILO), _e(3, 100, stage=Stage.RUNWAY), _e(4, 110, stage=Stage.RUNWAY)]
    ranking = compute_ranking(entries, [_p(i) for i in range(1, 5)], day(10), game=GAME)
    assert [r.rank for r in ranking] == [1, 1, 1, 4]


def test_invalid_inputs():
    with pytest.raises(InvalidInput):
        compute_ranking([_e(1, 0)], [_p(1)], day(10), game=GAME)
    with pytest.raises(InvalidInput):
        compute_ranking([], [], day(10), game=GAME, rank_cutoff=0)
    with pytest.raises(InvalidInput):
        parse_exclude("everyone")
    assert parse_exclude("has-untied") is ExcludePlayer.HAS_UNTIED


def test_engine_filter_reuses_date_from_other_engine():
    entries = [
        _e(1, 100, 3, engine=Engine.PAL),
        _e(1, 100, None, engine=Engine.NTSC),
        _e(2, 110, 1, engine=Engine.NTSC),
    ]
    ranking = compute_ranking(entries, [_p(1), _p(2)], day(5), game=GAME, engine=Engine.NTSC)
    assert [r.player.id for r in ranking] == [1, 2]
    selected = select_current_entries(entries, {1: _p(1), 2: _p(2)}, day(5), NoDateRule.AVERAGE, GAME, engine=Engine.NTSC)
    mine = [e for e in selected if e.player_id == 1]
    assert [(e.engine, e.date, e.is_simulated_date) for e in mine] == [(Engine.NTSC, day(3), True)]


def test_player_versus_legacy_field():
    entries = [_e(1, 100, 1), _e(1, 80, 20), _e(2, 90, 15)]
    players = [_p(1), _p(2)]
    current = compute_ranking(entries, players, day(30), game=GAME)
    assert [r.player.id for r in current] == [1, 2]
    legacy = compute_ranking(entries, players, day(30), game=GAME, versus_legacy=(2, day(10)))
    assert [r.player.id for r in legacy] == [2, 1]
    assert _by_player(legacy)[1].details == {} and _by_player(legacy)[1].points == 97
    with pytest.raises(InvalidInput):
        compute_ranking(entries, players, day(5), game=GAME, versus_legacy=(2, day(10)))


def test_runner_scores_stages_in_order():
    entries = [_e(1, 100), _e(2, 90, stage=Stage.SILO), _e(1, 95, stage=Stage.SILO, level=Level.HARD)]
    players = [_p(1), _p(2)]
    calls = []

    def runner(fn, stages):
        calls.append(list(stages))
        return [scored for stage in stages for scored in fn(stage)]

    serial = compute_ranking(entries, players, day(10), game=GAME, full_details=True)
    custom = compute_ranking(entries, players, day(10), game=GAME, full_details=True, runner=runner)
    assert calls == [[Stage.DAM, Stage.SILO]]
    assert [r.to_dict() for r in custom] == [r.to_dict() for r in serial]


def test_stage_leaderboard_sums_levels():
    players = {1: _p(1), 2: _p(2)}
    selected = [_e(1, 100, 2), _e(2, 110, 4), _e(2, 200, 6, level=Level.HARD), _e(1, 50, 1, stage=Stage.SILO)]
    board = stage_leaderboard(selected, Stage.DAM, players, day(10))
    assert board.stage is Stage.DAM and board.date == day(10)
    assert [(i.player.id, i.points, i.rank, i.latest_time) for i in board.items] == [
        (2, 197, 1, day(6)),
        (1, 100, 2, day(2)),
    ]
