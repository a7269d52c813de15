from datetime import date, timedelta

import pytest

from elitestats import clock, service
from elitestats.catalog import Engine, Game, Level, Stage
from elitestats.errors import DataUnavailable, InvalidInput
from elitestats.models import Player, TimeEntry
from elitestats.ranking import ExcludePlayer
from elitestats.standings import StandingType

D0 = date(2000, 1, 1)


def day(n):
    return D0 + timedelta(days=n - 1)


def _e(pid, time, n, stage=Stage.DAM, level=Level.EASY, engine=None):
    return TimeEntry(player_id=pid, stage=stage, level=level, time=time, date=day(n) if n else None, engine=engine)


@pytest.fixture()
def seeded(memory_store):
    memory_store["players"] = [
        Player(id=1, real_name="Alice"),
        Player(id=2, real_name="Bob"),
        Player(id=3, real_name="Carol"),
        Player(id=4, real_name="Dirty", is_dirty=True),
    ]
    memory_store["entries"] = [
        _e(1, 100, 1),
        _e(2, 100, 3),
        _e(3, 95, 10),
        _e(4, 90, 11),
        _e(1, 200, 2, level=Level.MEDIUM, engine=Engine.PAL),
        _e(1, 300, 2, level=Level.HARD),
        _e(2, 50, 5, stage=Stage.DEFECTION),
    ]
    return memory_store


def test_world_records_per_slot(seeded):
    chains = service.compute_world_records(Game.GOLDENEYE)
    assert len(chains) == 60
    dam_easy = chains[(Stage.DAM, Level.EASY)]
    # dirty player excluded
    assert [wr.time for wr in dam_easy] == [100, 95]
    assert chains[(Stage.FACILITY, Level.EASY)] == []


def test_world_records_for_one_stage_level_as_of(seeded):
    chains = service.compute_world_records(Game.GOLDENEYE, Stage.DAM, Level.EASY, as_of=day(5))
    assert list(chains) == [(Stage.DAM, Level.EASY)]
    [node] = chains[(Stage.DAM, Level.EASY)]
    assert node.still_standing and len(node.holders) == 2


def test_world_records_engine_filter(seeded):
    chains = service.compute_world_records(Game.GOLDENEYE, Stage.DAM, engine=Engine.PAL)
    assert chains[(Stage.DAM, Level.EASY)] == []
    assert [wr.time for wr in chains[(Stage.DAM, Level.MEDIUM)]] == [200]


def test_stage_from_other_game_rejected(seeded):
    with pytest.raises(InvalidInput):
        service.compute_world_records(Game.GOLDENEYE, Stage.DEFECTION)


def test_standings_match_single_thread_result(seeded, monkeypatch):
    pooled = service.compute_standings(Game.GOLDENEYE, StandingType.UNSLAYED, reference_date=day(40))
    monkeypatch.setenv("ELITE_WORKERS", "1")
    serial = service.compute_standings(Game.GOLDENEYE, StandingType.UNSLAYED, reference_date=day(40))
    assert [s.to_dict() for s in pooled] == [s.to_dict() for s in serial]
    assert pooled[0].days == 38


def test_standings_as_of_and_still_ongoing(seeded):
    standings = service.compute_standings(Game.GOLDENEYE, StandingType.UNTIED, as_of=day(8), still_ongoing=True)
    assert {(s.stage, s.level, s.author.id) for s in standings} == {
        (Stage.DAM, Level.MEDIUM, 1),
        (Stage.DAM, Level.HARD, 1),
    }
    assert all(s.days == 6 for s in standings)


def test_sweeps_default_range_uses_clock(seeded):
    clock.set_today(day(20))
    sweeps = service.compute_sweeps(Game.GOLDENEYE, untied=True)
    assert [(s.player.id, s.start_date, s.end_date) for s in sweeps] == [(1, day(2), day(3))]
    tied = service.compute_sweeps(Game.GOLDENEYE, untied=False, start_date=day(1), end_date=day(20))
    assert [(s.player.id, s.start_date, s.end_date) for s in tied] == [(1, day(2), day(10))]


def test_sweeps_inverted_range(seeded):
    with pytest.raises(InvalidInput):
        service.compute_sweeps(Game.GOLDENEYE, True, start_date=day(5), end_date=day(1))


def test_ranking_through_service(seeded):
    options = service.RankingOptions(full_details=True)
    ranking = service.compute_ranking(Game.GOLDENEYE, day(30), options)
    assert [r.player.id for r in ranking] == [1, 3, 2]
    with_dirty = service.compute_ranking(Game.GOLDENEYE, day(30), service.RankingOptions(include_dirty=True))
    assert 4 in {r.player.id for r in with_dirty}
    excluded = service.compute_ranking(Game.GOLDENEYE, day(30), service.RankingOptions(exclude=ExcludePlayer.HAS_UNTIED))
    assert [r.player.id for r in excluded] == [2]


def test_ambiguous_and_last_tied(seeded, memory_store):
    memory_store["entries"].append(_e(3, 300, 2, level=Level.HARD))
    ambiguous = service.compute_ambiguous_world_records(Game.GOLDENEYE, untied_slay=False)
    assert [(wr.stage, wr.level) for wr in ambiguous] == [(Stage.DAM, Level.HARD)]
    last = service.compute_last_tied_records(Game.GOLDENEYE, day(5))
    entry, untied = last[Stage.DAM][Level.EASY]
    assert entry.player_id == 2 and not untied
    assert last[Stage.FACILITY][Level.EASY] == (None, False)


def test_worker_error_propagates(seeded, monkeypatch):
    import elitestats.datastore_pg as pg

    def broken(**_kwargs):
        raise DataUnavailable("connection refused")

    monkeypatch.setattr(pg, "fetch_entries", broken)
    with pytest.raises(DataUnavailable):
        service.compute_world_records(Game.GOLDENEYE)


def test_fan_out_keeps_item_order(monkeypatch):
    monkeypatch.setenv("ELITE_WORKERS", "3")
    result = service.fan_out(lambda n: [n, n * 10], [1, 2, 3, 4], "test")
    assert result == [1, 10, 2, 20, 3, 30, 4, 40]


def test_fan_out_reraises_worker_failure():
    def work(n):
        if n == 2:
            raise InvalidInput("bad item")
        return [n]

    with pytest.raises(InvalidInput):
        service.fan_out(work, [1, 2, 3], "test")


def test_dateless_record_enters_chain(memory_store):
    memory_store["players"] = [Player(id=1, real_name="Alice"), Player(id=2, real_name="Bob")]
    memory_store["entries"] = [_e(1, 100, None), _e(2, 110, 1)]
    chains = service.compute_world_records(Game.GOLDENEYE, Stage.DAM, Level.EASY)
    assert [wr.time for wr in chains[(Stage.DAM, Level.EASY)]] == [110, 100]
    last = service.compute_last_tied_records(Game.GOLDENEYE, date(2020, 1, 1))
    entry, untied = last[Stage.DAM][Level.EASY]
    assert entry.player_id == 1 and entry.is_simulated_date and untied


def test_dateless_entries_dropped_under_ignore_rule(memory_store, monkeypatch):
    monkeypatch.setenv("ELITE_NO_DATE_RULE", "ignore")
    memory_store["players"] = [Player(id=1, real_name="Alice"), Player(id=2, real_name="Bob")]
    memory_store["entries"] = [_e(1, 100, None), _e(2, 110, 1)]
    chains = service.compute_world_records(Game.GOLDENEYE, Stage.DAM, Level.EASY)
    assert [wr.time for wr in chains[(Stage.DAM, Level.EASY)]] == [110]


def test_ranking_pooled_matches_serial(seeded, monkeypatch):
    options = service.RankingOptions(full_details=True)
    pooled = service.compute_ranking(Game.GOLDENEYE, day(30), options)
    monkeypatch.setenv("ELITE_WORKERS", "1")
    serial = service.compute_ranking(Game.GOLDENEYE, day(30), options)
    assert [r.to_dict() for r in pooled] == [r.to_dict() for r in serial]


def test_ranking_versus_legacy(seeded):
    options = service.RankingOptions(versus_legacy=(3, day(5)))
    ranking = service.compute_ranking(Game.GOLDENEYE, day(30), options)
    # Carol at day 30 against the field of day 5
    assert ranking[0].player.id == 1
    assert {r.player.id: r.records_count for r in ranking}[3] == 1
    with pytest.raises(InvalidInput):
        service.compute_ranking(Game.GOLDENEYE, day(30), service.RankingOptions(versus_legacy=(99, day(5))))


def test_dates_outside_game_lifespan_rejected(seeded):
    with pytest.raises(InvalidInput):
        service.compute_ranking(Game.GOLDENEYE, date(1990, 1, 1))
    with pytest.raises(InvalidInput):
        service.compute_world_records(Game.GOLDENEYE, as_of=date(1990, 1, 1))
    clock.set_today(day(10))
    with pytest.raises(InvalidInput):
        service.compute_standings(Game.GOLDENEYE, StandingType.UNTIED, as_of=day(20))


def test_entries_count(seeded, memory_store):
    memory_store["entries"].append(_e(2, 120, None, stage=Stage.SILO))
    counts = service.compute_entries_count(Game.GOLDENEYE, day(1), day(4))
    assert len(counts) == 20
    dam = counts[0]
    assert (dam.stage, dam.level) == (Stage.DAM, None)
    assert (dam.period_entries_count, dam.total_entries_count, dam.all_stages_entries_count) == (4, 6, 4)
    silo = [c for c in counts if c.stage is Stage.SILO][0]
    assert (silo.period_entries_count, silo.total_entries_count) == (0, 1)

    detailed = service.compute_entries_count(
        Game.GOLDENEYE, day(1), day(4), level_details=True, global_start_date=day(1), global_end_date=day(5),
    )
    assert len(detailed) == 60
    dam_easy = detailed[0]
    assert (dam_easy.level, dam_easy.period_entries_count, dam_easy.total_entries_count) == (Level.EASY, 2, 2)
    silo_easy = [c for c in detailed if (c.stage, c.level) == (Stage.SILO, Level.EASY)][0]
    assert silo_easy.total_entries_count == 0
    with pytest.raises(InvalidInput):
        service.compute_entries_count(Game.GOLDENEYE, day(4), day(4))


def test_leaderboard_history(seeded):
    history = service.compute_leaderboard_history(Stage.DAM, 5, start_date=day(1), end_date=day(12))
    assert [b.date for b in history] == [day(1), day(6), day(11), day(12)]
    assert [(i.player.id, i.points) for i in history[0].items] == [(1, 100)]
    assert [(i.player.id, i.points) for i in history[1].items] == [(1, 300), (2, 100)]
    last = history[2]
    assert [(i.player.id, i.points, i.rank) for i in last.items] == [(1, 297, 1), (3, 100, 2), (2, 97, 3)]
    assert last.items[0].latest_time == day(2)
    assert history[3].to_dict()["items"] == last.to_dict()["items"]
    with pytest.raises(InvalidInput):
        service.compute_leaderboard_history(Stage.DAM, 0)
