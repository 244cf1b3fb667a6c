"""
tests/test_aggregator_ranker.py

Purpose:
    Summary arithmetic, payment mapping and leaderboard ordering, on plain
    objects without a database.
"""

from types import SimpleNamespace

import pytest

from ats_pickem.services.aggregator import (
    PickSummary,
    fold_season,
    is_verified,
    map_payment_status,
    summarize_picks,
)
from ats_pickem.services.precedence import PickSetChoice, ResolvedPickSet
from ats_pickem.services.ranker import rank_best_finish, rank_rows


def _pick(result, points, is_lock=False):
    return SimpleNamespace(result=result, points=points, is_lock=is_lock)


def _resolved(picks, source="authenticated", overridden=False):
    return ResolvedPickSet(1, 2024, 1, PickSetChoice(source, overridden), picks)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Paid", "Paid"),
        (" paid ", "Paid"),
        ("PENDING", "Pending"),
        ("Unknown", "NotPaid"),
        ("", "NotPaid"),
        (None, "NotPaid"),
        ("refunded", "NotPaid"),
    ],
)
def test_payment_status_mapping(raw, expected):
    assert map_payment_status(raw) == expected


def test_verified_requires_paid_and_ledger_match():
    assert is_verified("Paid", True) is True
    assert is_verified("Paid", False) is False
    assert is_verified("Pending", True) is False


def test_summary_counts_graded_picks_only():
    summary = summarize_picks(
        _resolved(
            [
                _pick("win", 26, is_lock=True),
                _pick("loss", 0),
                _pick("push", 10),
                _pick("win", 20),
                _pick(None, None),
            ]
        )
    )

    assert summary.picks_counted == 4
    assert (summary.wins, summary.losses, summary.pushes) == (2, 1, 1)
    assert (summary.lock_wins, summary.lock_losses) == (1, 0)
    assert summary.total_points == 56
    assert summary.pick_source_used == "authenticated"


def test_lock_loss_is_counted():
    summary = summarize_picks(_resolved([_pick("loss", 0, is_lock=True)]))
    assert (summary.losses, summary.lock_losses) == (1, 1)


def test_nothing_graded_is_empty_without_source():
    summary = summarize_picks(_resolved([_pick(None, None)]))
    assert summary.is_empty
    assert summary.pick_source_used is None


def test_season_fold_reports_mixed_sources():
    week1 = summarize_picks(_resolved([_pick("win", 21)]))
    week2 = summarize_picks(_resolved([_pick("loss", 0)], source="anonymous", overridden=True))

    season = fold_season([week1, week2])

    assert season.total_points == 21
    assert (season.wins, season.losses) == (1, 1)
    assert season.pick_source_used == "mixed"
    assert season.as_dict()["source_overridden"] is True


def test_season_fold_of_one_source_keeps_it():
    weeks = [summarize_picks(_resolved([_pick("win", 20)])) for _ in range(3)]
    assert fold_season(weeks).pick_source_used == "authenticated"
    assert fold_season([]) == PickSummary()


def _row(user_id, name, points, wins):
    return SimpleNamespace(
        user_id=user_id, display_name=name, total_points=points, wins=wins, rank=None
    )


def test_rank_orders_by_points_then_wins_then_name_then_id():
    rows = [
        _row(4, "dana", 60, 3),
        _row(1, "Bob", 60, 3),
        _row(2, "alice", 60, 2),
        _row(3, "zed", 90, 4),
        _row(5, "bob", 60, 3),
    ]

    ordered = rank_rows(rows)

    assert [row.user_id for row in ordered] == [3, 1, 5, 4, 2]
    assert [row.rank for row in ordered] == [1, 2, 3, 4, 5]


def test_ranks_are_sequential_without_ties():
    rows = [_row(i, "same", 40, 2) for i in range(1, 6)]
    assert sorted(row.rank for row in rank_rows(rows)) == [1, 2, 3, 4, 5]


def test_best_finish_breaks_ties_on_win_percentage_then_lock_percentage():
    entries = [
        {"user_id": 1, "display_name": "a", "total_points": 100, "wins": 4, "losses": 2,
         "lock_wins": 1, "lock_losses": 1},
        {"user_id": 2, "display_name": "b", "total_points": 100, "wins": 4, "losses": 1,
         "lock_wins": 0, "lock_losses": 1},
        {"user_id": 3, "display_name": "c", "total_points": 100, "wins": 4, "losses": 2,
         "lock_wins": 2, "lock_losses": 0},
        {"user_id": 4, "display_name": "d", "total_points": 120, "wins": 5, "losses": 3,
         "lock_wins": 0, "lock_losses": 0},
    ]

    ordered = rank_best_finish(entries)

    assert [e["user_id"] for e in ordered] == [4, 2, 3, 1]
    assert [e["rank"] for e in ordered] == [1, 2, 3, 4]
