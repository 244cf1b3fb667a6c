"""
Scoring Engine for the ATS Pick'em contest

This module holds the two pure scoring rules: resolving a completed game
against the spread, and grading a single pick against that outcome.
Aggregation and ranking live in ats_pickem.services.
"""

ATS_SIDES = ("home", "away")
ATS_PUSH = "push"

PICK_RESULTS = ("win", "loss", "push")

DEFAULT_BASE_POINTS = 20
DEFAULT_PUSH_POINTS = 10

PUSH_TOLERANCE = 0.5

# (minimum cover margin, bonus), checked top-down
MARGIN_BONUS_TIERS = ((29, 5), (20, 3), (11, 1))


def margin_bonus_for(cover_margin):
    """Bonus points for covering by ``cover_margin`` (inclusive lower bounds)"""
    for threshold, bonus in MARGIN_BONUS_TIERS:
        if cover_margin >= threshold:
            return bonus
    return 0


def resolve_spread(home_score, away_score, spread):
    """
    Resolve a completed game against the spread.

    The spread is the number of points added to the home score:
    ``adjusted = home_score + spread - away_score``.

    Returns:
        (ats_winner, margin_bonus) where ats_winner is 'home', 'away' or
        'push', or (None, None) when a score or the spread is missing.
    """
    if home_score is None or away_score is None or spread is None:
        return None, None

    adjusted = home_score + spread - away_score

    if abs(adjusted) < PUSH_TOLERANCE:
        return ATS_PUSH, 0

    winner = "home" if adjusted > 0 else "away"
    return winner, margin_bonus_for(abs(adjusted))


def grade_pick(
    selected_side,
    is_lock,
    ats_winner,
    margin_bonus,
    base_points=DEFAULT_BASE_POINTS,
    push_points=DEFAULT_PUSH_POINTS,
):
    """
    Grade one pick against its game's ATS outcome.

    Works the same for authenticated and anonymous picks.

    Returns:
        (result, points): ('win', base + bonus, doubled bonus on a lock),
        ('push', push_points), ('loss', 0), or (None, None) while the game
        is not gradable.
    """
    if ats_winner is None:
        return None, None

    if ats_winner == ATS_PUSH:
        return "push", push_points

    if selected_side == ats_winner:
        bonus = margin_bonus or 0
        points = base_points + bonus + (bonus if is_lock else 0)
        return "win", points

    return "loss", 0
