"""
tests/test_scoring.py

Purpose:
    Spread resolution and pick grading rules.
"""

import pytest

from ats_pickem.utils.scoring import grade_pick, margin_bonus_for, resolve_spread


def test_away_covers_without_bonus():
    # home 20, away 17, home gives 6.5
    assert resolve_spread(20, 17, -6.5) == ("away", 0)


def test_home_covers_with_margin_bonus():
    # adjusted = 35 - 3 - 10 = 22
    assert resolve_spread(35, 10, -3) == ("home", 3)


def test_exact_line_is_push():
    assert resolve_spread(20, 17, -3) == ("push", 0)


def test_adjusted_margin_below_half_point_is_push():
    assert resolve_spread(20, 17, -2.75) == ("push", 0)


def test_underdog_getting_points_covers():
    # away favoured: home +7 loses by 3 -> home covers by 4
    assert resolve_spread(14, 17, 7) == ("home", 0)


@pytest.mark.parametrize(
    "home_score, away_score, spread",
    [(None, 10, -3), (20, None, -3), (20, 10, None)],
)
def test_missing_inputs_are_not_gradable(home_score, away_score, spread):
    assert resolve_spread(home_score, away_score, spread) == (None, None)


@pytest.mark.parametrize(
    "margin, bonus",
    [(10.5, 0), (11, 1), (19.5, 1), (20, 3), (28.5, 3), (29, 5), (45, 5)],
)
def test_margin_bonus_tiers(margin, bonus):
    assert margin_bonus_for(margin) == bonus


def test_resolver_is_deterministic():
    assert resolve_spread(41, 3, -7.5) == resolve_spread(41, 3, -7.5) == ("home", 5)


def test_winning_pick_earns_base_plus_bonus():
    assert grade_pick("home", False, "home", 3) == ("win", 23)


def test_winning_lock_doubles_the_bonus_only():
    assert grade_pick("home", True, "home", 3) == ("win", 26)
    assert grade_pick("away", True, "away", 0) == ("win", 20)


def test_losing_pick_scores_zero():
    assert grade_pick("away", True, "home", 5) == ("loss", 0)


def test_push_scores_ten_even_on_lock():
    assert grade_pick("home", False, "push", 0) == ("push", 10)
    assert grade_pick("home", True, "push", 0) == ("push", 10)


def test_ungradable_game_leaves_pick_pending():
    assert grade_pick("home", True, None, None) == (None, None)


def test_custom_point_values():
    assert grade_pick("home", False, "home", 1, base_points=30) == ("win", 31)
    assert grade_pick("home", False, "push", 0, push_points=15) == ("push", 15)
