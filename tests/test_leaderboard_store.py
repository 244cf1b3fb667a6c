"""
tests/test_leaderboard_store.py

Purpose:
    Leaderboard reads: payment filters on the stored boards and the Best
    Finish totals summed over a season's week window.
"""

import pytest

from ats_pickem.services import admin, leaderboard_store, recompute


@pytest.fixture
def three_weeks(make_user, make_season, make_game, make_pick, complete_game):
    """
    Weeks 1-3, one game each, home covering by 22 every week.

    alice: win, loss, win   bob: loss, win, win
    """
    make_season(2024, best_finish_weeks=(2, 3))
    alice = make_user("alice", display_name="Alice")
    bob = make_user("bob", display_name="Bob")

    for week, (alice_side, bob_side) in enumerate(
        [("home", "away"), ("away", "home"), ("home", "home")], start=1
    ):
        game = make_game(week=week, spread=-3)
        make_pick(alice, game, side=alice_side)
        make_pick(bob, game, side=bob_side)
        complete_game(game, 35, 10)

    recompute.drain()
    return alice, bob


def test_season_board_totals_every_week(three_weeks):
    alice, bob = three_weeks

    board = leaderboard_store.get_season_leaderboard(2024)

    # level on points and wins: name decides
    assert [(row["user_id"], row["total_points"]) for row in board] == [(alice.id, 46), (bob.id, 46)]
    assert [row["rank"] for row in board] == [1, 2]


def test_best_finish_sums_only_the_window(three_weeks):
    alice, bob = three_weeks

    board = leaderboard_store.get_best_finish_leaderboard(2024)

    assert [entry["user_id"] for entry in board] == [bob.id, alice.id]
    bob_entry, alice_entry = board
    assert (bob_entry["total_points"], bob_entry["wins"], bob_entry["rank"]) == (46, 2, 1)
    assert (alice_entry["total_points"], alice_entry["losses"], alice_entry["rank"]) == (23, 1, 2)
    assert alice_entry["weeks_played"] == 2


def test_best_finish_without_window_is_empty(make_season):
    make_season(2025)
    assert leaderboard_store.get_best_finish_leaderboard(2025) == []
    assert leaderboard_store.get_best_finish_leaderboard(1999) == []


def test_verified_only_filter(three_weeks):
    alice, bob = three_weeks
    admin.record_payment(bob.id, 2024, "Paid", ledger_matched=True)
    admin.record_payment(alice.id, 2024, "pending")
    recompute.drain()

    verified = leaderboard_store.get_weekly_leaderboard(2024, 3, verified_only=True)
    pending = leaderboard_store.get_weekly_leaderboard(2024, 3, payment_status="Pending")

    assert [row["user_id"] for row in verified] == [bob.id]
    assert [row["user_id"] for row in pending] == [alice.id]


def test_filters_do_not_change_stored_ranks(three_weeks):
    alice, bob = three_weeks
    admin.record_payment(bob.id, 2024, "Paid", ledger_matched=True)
    recompute.drain()

    verified = leaderboard_store.get_season_leaderboard(2024, verified_only=True)

    assert [(row["user_id"], row["rank"]) for row in verified] == [(bob.id, 2)]
