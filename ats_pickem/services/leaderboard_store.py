"""
Leaderboard Store

Writes weekly and season summary rows and keeps each period's ranks
sequential. Writes are upserts on the natural key so that concurrent
recomputes for the same user converge on a single row. This module only
writes rows; it never triggers further recomputation.
"""

import logging

from ats_pickem import db
from ats_pickem.models import Season, SeasonLeaderboard, User, WeeklyLeaderboard
from ats_pickem.services.ranker import rank_best_finish, rank_rows
from ats_pickem.utils.cache_utils import cached_query, invalidate_model_cache
from ats_pickem.utils.upsert import upsert

logger = logging.getLogger(__name__)

CACHE_NAME = "leaderboard"


def _row_values(summary, display_name, payment_status, verified):
    values = {
        "display_name": display_name,
        "payment_status": payment_status,
        "verified": verified,
    }
    values.update(summary.as_dict())
    return values


def store_weekly_row(user_id, season, week, summary, display_name, payment_status, verified):
    """
    Upsert the user's weekly row, or delete it when nothing was counted.

    Returns:
        'upserted' or 'deleted'
    """
    if summary.is_empty:
        WeeklyLeaderboard.query.filter_by(user_id=user_id, season=season, week=week).delete()
        return "deleted"

    values = _row_values(summary, display_name, payment_status, verified)
    values.update({"user_id": user_id, "season": season, "week": week})
    upsert(WeeklyLeaderboard, values, ["user_id", "season", "week"])
    return "upserted"


def store_season_row(user_id, season, summary, display_name, payment_status, verified):
    """Season counterpart of store_weekly_row"""
    if summary.is_empty:
        SeasonLeaderboard.query.filter_by(user_id=user_id, season=season).delete()
        return "deleted"

    values = _row_values(summary, display_name, payment_status, verified)
    values.update({"user_id": user_id, "season": season})
    upsert(SeasonLeaderboard, values, ["user_id", "season"])
    return "upserted"


def rerank_week(season, week):
    """Re-rank every row of one week; returns the rows in rank order"""
    rows = (
        WeeklyLeaderboard.query.filter_by(season=season, week=week)
        .populate_existing()
        .all()
    )
    return rank_rows(rows)


def rerank_season(season):
    """Re-rank every row of one season; returns the rows in rank order"""
    rows = SeasonLeaderboard.query.filter_by(season=season).populate_existing().all()
    return rank_rows(rows)


def invalidate_leaderboards():
    """Drop cached boards; call after the recompute transaction commits"""
    invalidate_model_cache(CACHE_NAME)


def _filtered(query, model, verified_only, payment_status):
    if verified_only:
        query = query.filter(model.verified.is_(True))
    if payment_status:
        query = query.filter(model.payment_status == payment_status)
    return query


@cached_query(CACHE_NAME)
def get_weekly_leaderboard(season, week, verified_only=False, payment_status=None):
    """Weekly board for (season, week), sorted by rank"""
    query = WeeklyLeaderboard.query.filter_by(season=season, week=week)
    query = _filtered(query, WeeklyLeaderboard, verified_only, payment_status)
    return [row.to_dict() for row in query.order_by(WeeklyLeaderboard.rank).all()]


@cached_query(CACHE_NAME)
def get_season_leaderboard(season, verified_only=False, payment_status=None):
    """Season board, sorted by rank"""
    query = SeasonLeaderboard.query.filter_by(season=season)
    query = _filtered(query, SeasonLeaderboard, verified_only, payment_status)
    return [row.to_dict() for row in query.order_by(SeasonLeaderboard.rank).all()]


@cached_query(CACHE_NAME)
def get_best_finish_leaderboard(season):
    """
    Totals over the season's Best Finish week window.

    Summed from weekly rows on demand; nothing is stored. Returns an empty
    list when the season has no window configured.
    """
    season_row = Season.get_by_year(season)
    weeks = season_row.best_finish_weeks if season_row else []
    if not weeks:
        return []

    totals = (
        db.session.query(
            WeeklyLeaderboard.user_id,
            db.func.sum(WeeklyLeaderboard.total_points),
            db.func.sum(WeeklyLeaderboard.wins),
            db.func.sum(WeeklyLeaderboard.losses),
            db.func.sum(WeeklyLeaderboard.pushes),
            db.func.sum(WeeklyLeaderboard.lock_wins),
            db.func.sum(WeeklyLeaderboard.lock_losses),
            db.func.count(WeeklyLeaderboard.id),
        )
        .filter(
            WeeklyLeaderboard.season == season,
            WeeklyLeaderboard.week.between(weeks[0], weeks[-1]),
        )
        .group_by(WeeklyLeaderboard.user_id)
        .all()
    )

    names = User.get_display_names(row[0] for row in totals)
    entries = [
        {
            "user_id": user_id,
            "display_name": names[user_id],
            "total_points": int(points or 0),
            "wins": int(wins or 0),
            "losses": int(losses or 0),
            "pushes": int(pushes or 0),
            "lock_wins": int(lock_wins or 0),
            "lock_losses": int(lock_losses or 0),
            "weeks_played": weeks_played,
        }
        for user_id, points, wins, losses, pushes, lock_wins, lock_losses, weeks_played in totals
    ]

    logger.debug(
        f"Best Finish for {season} weeks {weeks[0]}-{weeks[-1]}: {len(entries)} players"
    )
    return rank_best_finish(entries)
