from datetime import datetime, timezone

import pytest

from ratings.domain import ContestOutcome, Participant, Period, RatingScope
from ratings.errors import DateParseError
from ratings.glicko import DRAW, LOSS, WIN, RatingState
from ratings.periods import (
    aggregate_period,
    as_utc,
    iter_periods,
    months_between,
    pairwise_score,
    period_window,
)

DEFAULT = RatingState(1500.0, 350.0, 0.06)


def _contest(contest_id, start, placements, game_id=None):
    return ContestOutcome(
        contest_id=contest_id,
        start=start,
        game_id=game_id,
        participants=tuple(Participant(p, place) for p, place in placements.items()),
    )


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


# --- period arithmetic ---


def test_period_window_is_half_open_calendar_month():
    start, end = period_window(Period(2024, 2))
    assert start == _utc(2024, 2, 1)
    assert end == _utc(2024, 3, 1)


def test_december_window_rolls_into_next_year():
    start, end = period_window(Period(2023, 12))
    assert end == _utc(2024, 1, 1)


def test_period_parse_and_format():
    assert Period.parse("2024-03") == Period(2024, 3)
    assert str(Period(2024, 3)) == "2024-03"
    assert Period(2024, 1).previous() == Period(2023, 12)


@pytest.mark.parametrize("value", ["2024", "2024-13", "March 2024", "2024-xx", ""])
def test_period_parse_rejects_malformed_values(value):
    with pytest.raises(DateParseError):
        Period.parse(value)


def test_iter_periods_is_inclusive_and_ordered():
    periods = list(iter_periods(Period(2023, 11), Period(2024, 2)))
    assert [str(p) for p in periods] == ["2023-11", "2023-12", "2024-01", "2024-02"]


def test_months_between():
    assert months_between(_utc(2024, 2, 1), _utc(2024, 3, 1)) == 1
    assert months_between(_utc(2023, 11, 1), _utc(2024, 3, 1)) == 4


def test_as_utc_handles_naive_and_string_values():
    assert as_utc(datetime(2024, 1, 5, 10)) == _utc(2024, 1, 5, 10)
    assert as_utc("2024-01-05T10:00:00Z") == _utc(2024, 1, 5, 10)
    with pytest.raises(DateParseError):
        as_utc("yesterday-ish")


def test_contest_window_uses_utc_month():
    late_january_elsewhere = datetime.fromisoformat("2024-01-31T23:30:00-05:00")
    contest = _contest("c1", late_january_elsewhere, {"a": 1, "b": 2})

    assert aggregate_period([contest], RatingScope.overall(), Period(2024, 1), {}, DEFAULT) == {}
    february = aggregate_period([contest], RatingScope.overall(), Period(2024, 2), {}, DEFAULT)
    assert set(february) == {"a", "b"}


# --- pairwise conversion ---


def test_pairwise_score_by_placement():
    assert pairwise_score(1, 2) == WIN
    assert pairwise_score(3, 2) == LOSS
    assert pairwise_score(2, 2) == DRAW
    assert pairwise_score(None, 1) == DRAW


def test_multiplayer_contest_becomes_round_robin():
    contest = _contest("c1", _utc(2024, 1, 10), {"a": 1, "b": 2, "c": 3})
    activity = aggregate_period([contest], RatingScope.overall(), Period(2024, 1), {}, DEFAULT)

    assert sorted(r.score for r in activity["a"].results) == [WIN, WIN]
    assert sorted(r.score for r in activity["b"].results) == [LOSS, WIN]
    assert sorted(r.score for r in activity["c"].results) == [LOSS, LOSS]
    assert activity["a"].wins == 1 and activity["a"].losses == 0
    assert activity["c"].wins == 0 and activity["c"].losses == 1
    assert all(p.games == 1 for p in activity.values())


def test_equal_placement_is_a_tie():
    contest = _contest("c1", _utc(2024, 1, 10), {"a": 1, "b": 1})
    activity = aggregate_period([contest], RatingScope.overall(), Period(2024, 1), {}, DEFAULT)
    assert [r.score for r in activity["a"].results] == [DRAW]
    assert [r.score for r in activity["b"].results] == [DRAW]


def test_opponent_values_come_from_start_of_period_states():
    contest = _contest("c1", _utc(2024, 1, 10), {"a": 1, "b": 2})
    states = {"b": RatingState(1710.0, 90.0, 0.06)}
    activity = aggregate_period([contest], RatingScope.overall(), Period(2024, 1), states, DEFAULT)

    (vs_b,) = activity["a"].results
    assert (vs_b.opp_rating, vs_b.opp_rd) == (1710.0, 90.0)
    (vs_a,) = activity["b"].results
    assert (vs_a.opp_rating, vs_a.opp_rd) == (DEFAULT.rating, DEFAULT.rd)


def test_game_scope_only_includes_that_game():
    contests = [
        _contest("chess-1", _utc(2024, 1, 2), {"a": 1, "b": 2}, game_id="chess"),
        _contest("catan-1", _utc(2024, 1, 3), {"a": 2, "c": 1}, game_id="catan"),
    ]
    chess = aggregate_period(contests, RatingScope.game("chess"), Period(2024, 1), {}, DEFAULT)
    overall = aggregate_period(contests, RatingScope.overall(), Period(2024, 1), {}, DEFAULT)

    assert set(chess) == {"a", "b"}
    assert set(overall) == {"a", "b", "c"}
    assert overall["a"].games == 2


def test_contests_outside_window_or_solo_are_ignored():
    contests = [
        _contest("feb", _utc(2024, 2, 1), {"a": 1, "b": 2}),
        _contest("solo", _utc(2024, 1, 20), {"a": 1}),
    ]
    activity = aggregate_period(contests, RatingScope.overall(), Period(2024, 1), {}, DEFAULT)
    assert activity == {}
