"""
Recompute queue and worker

Writes that affect scoring (game results, pick changes, visibility and
override changes, payment updates) enqueue a RecomputeJob in the same
transaction as the write. The worker drains the queue in dependency
order: games are graded first, then periods are rebuilt, then each
affected (user, week) is re-aggregated and both of its periods are
re-ranked.

Each job runs in its own transaction. A failure is rolled back and
recorded on the job without affecting any other job.
"""

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ats_pickem import db
from ats_pickem.models import (
    AnonymousPick,
    Game,
    PaymentRecord,
    Pick,
    RecomputeJob,
    SeasonLeaderboard,
    User,
    WeeklyLeaderboard,
)
from ats_pickem.models.recompute_job import JOB_PRIORITY
from ats_pickem.services import leaderboard_store
from ats_pickem.services.aggregator import (
    fold_season,
    is_verified,
    map_payment_status,
    summarize_picks,
)
from ats_pickem.services.precedence import resolve_pick_set, weeks_with_picks
from ats_pickem.services.ranker import leaderboard_sort_key
from ats_pickem.utils.logging_config import ContextualLogger, get_logger
from ats_pickem.utils.performance import PerformanceMonitor, timer
from ats_pickem.utils.scoring import grade_pick
from ats_pickem.utils.upsert import upsert

logger = get_logger(__name__)


# --------------------------------------------------------------------------
# Queue
# --------------------------------------------------------------------------


def enqueue(job_type, game_id=None, user_id=None, season=None, week=None):
    """
    Add a unit of work, or bump the generation of the pending one.

    Does not commit: the job becomes visible together with the write that
    caused it.
    """
    job_key = RecomputeJob.key_for(job_type, game_id, user_id, season, week)
    values = {
        "job_key": job_key,
        "job_type": job_type,
        "game_id": game_id,
        "user_id": user_id,
        "season": season,
        "week": week,
        "status": "pending",
        "attempts": 0,
        "last_error": None,
    }
    upsert(
        RecomputeJob,
        values,
        ["job_key"],
        update_columns=["status", "attempts", "last_error", "updated_at"],
        extra_set={"generation": RecomputeJob.__table__.c.generation + 1},
    )
    logger.debug(f"Enqueued {job_key}")
    return job_key


def enqueue_grade_game(game_id):
    return enqueue("grade_game", game_id=game_id)


def enqueue_user_week(user_id, season, week):
    return enqueue("user_week", user_id=user_id, season=season, week=week)


def enqueue_rebuild_week(season, week):
    return enqueue("rebuild_week", season=season, week=week)


def commit_and_invalidate():
    """Commit the current unit and drop cached leaderboards"""
    db.session.commit()
    leaderboard_store.invalidate_leaderboards()


# --------------------------------------------------------------------------
# Units of work (callers own the transaction)
# --------------------------------------------------------------------------


def _regrade(game):
    """Re-grade every pick on a game; returns the affected (user, season, week) scopes"""
    push_points = current_app.config.get("PUSH_POINTS")
    scopes = set()
    changed = 0

    for pick in game.picks:
        if pick.update_result(push_points=push_points):
            changed += 1
        scopes.add((pick.user_id, pick.season, pick.week))

    for anonymous_pick in game.anonymous_picks:
        if anonymous_pick.update_result(push_points=push_points):
            changed += 1
        if anonymous_pick.assigned_user_id is not None:
            scopes.add((anonymous_pick.assigned_user_id, anonymous_pick.season, anonymous_pick.week))

    if changed:
        logger.info(f"Graded {changed} picks for game {game.id} (ATS winner: {game.ats_winner})")
    return scopes


def grade_game(game_id):
    """
    Grade every pick on a game and enqueue the affected user weeks.

    Returns:
        Number of (user, week) scopes enqueued
    """
    game = db.session.get(Game, game_id)
    if game is None:
        logger.warning(f"Grade requested for unknown game {game_id}")
        return 0

    scopes = _regrade(game)
    for user_id, season, week in sorted(scopes):
        enqueue_user_week(user_id, season, week)
    return len(scopes)


def _payment_for(user_id, season):
    record = PaymentRecord.get_for(user_id, season)
    if record is None:
        return "NotPaid", False
    payment_status = map_payment_status(record.raw_status)
    return payment_status, is_verified(payment_status, record.ledger_matched)


def _display_name(user_id):
    return User.get_display_names([user_id])[user_id]


def summarize_season(user_id, season, known_weeks=None, mark_active=True):
    """Fold every week's resolved pick set for the season, recomputed from picks"""
    pick_limit = current_app.config.get("PICK_LIMIT")
    known_weeks = known_weeks or {}
    summaries = []

    for week in weeks_with_picks(user_id, season):
        if week in known_weeks:
            summaries.append(known_weeks[week])
        else:
            resolved = resolve_pick_set(
                user_id, season, week, pick_limit=pick_limit, mark_active=mark_active
            )
            summaries.append(summarize_picks(resolved))

    return fold_season(summaries)


def recompute_user_season(user_id, season, known_weeks=None):
    """Rewrite the user's season row and re-rank the season"""
    summary = summarize_season(user_id, season, known_weeks)
    payment_status, verified = _payment_for(user_id, season)

    leaderboard_store.store_season_row(
        user_id, season, summary, _display_name(user_id), payment_status, verified
    )
    leaderboard_store.rerank_season(season)
    return summary


def recompute_user_week(user_id, season, week):
    """
    Precedence, aggregation and storage for one user and week, followed by
    a full re-rank of that week and of the season.

    Returns:
        The weekly PickSummary
    """
    resolved = resolve_pick_set(
        user_id, season, week, pick_limit=current_app.config.get("PICK_LIMIT")
    )
    weekly = summarize_picks(resolved)
    payment_status, verified = _payment_for(user_id, season)

    action = leaderboard_store.store_weekly_row(
        user_id, season, week, weekly, _display_name(user_id), payment_status, verified
    )
    leaderboard_store.rerank_week(season, week)

    recompute_user_season(user_id, season, known_weeks={week: weekly})

    logger.debug(
        f"Recomputed user {user_id} {season} week {week}: {action} "
        f"({weekly.total_points} pts, source {resolved.choice.label})"
    )
    return weekly


def _users_for_week(season, week):
    user_ids = {
        user_id
        for (user_id,) in Pick.query.with_entities(Pick.user_id)
        .filter_by(season=season, week=week)
        .distinct()
    }
    user_ids.update(
        user_id
        for (user_id,) in AnonymousPick.query.with_entities(AnonymousPick.assigned_user_id)
        .filter(
            AnonymousPick.season == season,
            AnonymousPick.week == week,
            AnonymousPick.assigned_user_id.isnot(None),
        )
        .distinct()
    )
    user_ids.update(
        user_id
        for (user_id,) in WeeklyLeaderboard.query.with_entities(WeeklyLeaderboard.user_id)
        .filter_by(season=season, week=week)
    )
    return sorted(user_ids)


def rebuild_week(season, week):
    """
    Re-grade every game of the week and recompute every user with picks or
    rows in it.

    Returns:
        Number of users recomputed
    """
    with PerformanceMonitor(f"rebuild week {week} of {season}"):
        for game in Game.get_games_for_week(season, week):
            game.resolve_ats()
            _regrade(game)

        user_ids = _users_for_week(season, week)
        for user_id in user_ids:
            recompute_user_week(user_id, season, week)

    logger.info(f"Rebuilt {season} week {week}: {len(user_ids)} users")
    return len(user_ids)


def weeks_for_season(season):
    weeks = {week for (week,) in Game.query.with_entities(Game.week).filter_by(season=season).distinct()}
    weeks.update(
        week for (week,) in Pick.query.with_entities(Pick.week).filter_by(season=season).distinct()
    )
    weeks.update(
        week
        for (week,) in WeeklyLeaderboard.query.with_entities(WeeklyLeaderboard.week)
        .filter_by(season=season)
        .distinct()
    )
    return sorted(weeks)


def rebuild_season(season):
    """
    Rebuild every week of a season, then recompute season rows left without
    any weekly data.

    Returns:
        Number of weeks rebuilt
    """
    weeks = weeks_for_season(season)
    for week in weeks:
        rebuild_week(season, week)

    orphaned = {
        user_id
        for (user_id,) in SeasonLeaderboard.query.with_entities(SeasonLeaderboard.user_id).filter_by(
            season=season
        )
    }
    for user_id in sorted(orphaned):
        recompute_user_season(user_id, season)

    return len(weeks)


# --------------------------------------------------------------------------
# Verification
# --------------------------------------------------------------------------

COMPARED_FIELDS = (
    "picks_counted",
    "wins",
    "losses",
    "pushes",
    "lock_wins",
    "lock_losses",
    "total_points",
    "pick_source_used",
    "source_overridden",
    "payment_status",
    "verified",
)


def verify_week(season, week):
    """
    Compare stored weekly rows with a fresh computation. Writes nothing.

    Returns:
        dict with 'ok' plus lists of stale picks, missing, extra and
        mismatched rows, and whether ranks are out of order
    """
    push_points = current_app.config.get("PUSH_POINTS")
    pick_limit = current_app.config.get("PICK_LIMIT")

    stale_picks = []
    for game in Game.get_games_for_week(season, week):
        for pick in list(game.picks) + list(game.anonymous_picks):
            expected = grade_pick(
                pick.selected_side,
                pick.is_lock,
                game.ats_winner,
                game.margin_bonus,
                base_points=game.base_points,
                push_points=push_points,
            )
            if expected != (pick.result, pick.points):
                stale_picks.append(
                    {"pick": repr(pick), "stored": (pick.result, pick.points), "expected": expected}
                )

    stored = {
        row.user_id: row
        for row in WeeklyLeaderboard.query.filter_by(season=season, week=week).all()
    }

    missing, extra, mismatched = [], [], []
    for user_id in _users_for_week(season, week):
        resolved = resolve_pick_set(user_id, season, week, pick_limit=pick_limit, mark_active=False)
        summary = summarize_picks(resolved)
        row = stored.get(user_id)

        if summary.is_empty:
            if row is not None:
                extra.append(user_id)
            continue
        if row is None:
            missing.append(user_id)
            continue

        expected = summary.as_dict()
        payment_status, verified = _payment_for(user_id, season)
        expected.update({"payment_status": payment_status, "verified": verified})

        diffs = {
            field: {"stored": getattr(row, field), "expected": expected[field]}
            for field in COMPARED_FIELDS
            if getattr(row, field) != expected[field]
        }
        if diffs:
            mismatched.append({"user_id": user_id, "fields": diffs})

    ordered = sorted(stored.values(), key=leaderboard_sort_key)
    rank_errors = [row.rank for row in ordered] != list(range(1, len(ordered) + 1))

    report = {
        "season": season,
        "week": week,
        "stale_picks": stale_picks,
        "missing_rows": missing,
        "extra_rows": extra,
        "mismatched_rows": mismatched,
        "rank_errors": rank_errors,
    }
    report["ok"] = not (stale_picks or missing or extra or mismatched or rank_errors)
    return report


def check_season_consistency(season):
    """Verify every week of the season and enqueue rebuilds where it drifted"""
    inconsistent = []
    for week in weeks_for_season(season):
        report = verify_week(season, week)
        if not report["ok"]:
            inconsistent.append(week)
            logger.warning(
                f"Leaderboard drift in {season} week {week}: "
                f"{len(report['stale_picks'])} stale picks, "
                f"{len(report['missing_rows'])} missing, {len(report['extra_rows'])} extra, "
                f"{len(report['mismatched_rows'])} mismatched rows"
            )
            enqueue_rebuild_week(season, week)

    if inconsistent:
        db.session.commit()
    return inconsistent


# --------------------------------------------------------------------------
# Worker
# --------------------------------------------------------------------------


def _dispatch(job):
    if job.job_type == "grade_game":
        grade_game(job.game_id)
    elif job.job_type == "rebuild_week":
        rebuild_week(job.season, job.week)
    elif job.job_type == "user_week":
        recompute_user_week(job.user_id, job.season, job.week)
    else:
        raise ValueError(f"Unknown job type: {job.job_type}")


def _record_failure(job_id, error, max_attempts, log):
    try:
        job = db.session.get(RecomputeJob, job_id)
        if job is None:
            return
        job.attempts += 1
        job.last_error = str(error)[:1000]
        if job.attempts >= max_attempts:
            job.status = "failed"
            log.error(f"Job parked as failed after {job.attempts} attempts")
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        log.error(f"Could not record job failure: {e}", exc_info=True)


def process_job(job_id, max_attempts=None):
    """
    Run one job in its own transaction.

    The job row is deleted only if no one re-enqueued it meanwhile; a newer
    generation stays pending for the next pass.

    Returns:
        True on success, False on failure, None if the job is gone or no
        longer pending
    """
    max_attempts = max_attempts or current_app.config.get("RECOMPUTE_MAX_ATTEMPTS", 5)
    job = db.session.get(RecomputeJob, job_id, populate_existing=True)
    if job is None or job.status != "pending":
        return None

    generation = job.generation
    log = ContextualLogger(__name__, job.context)

    try:
        _dispatch(job)
        RecomputeJob.query.filter_by(id=job_id, generation=generation).delete(
            synchronize_session=False
        )
        commit_and_invalidate()
        log.debug("Job completed")
        return True
    except Exception as e:
        db.session.rollback()
        log.error(f"Recompute job failed: {e}", exc_info=True)
        _record_failure(job_id, e, max_attempts, log)
        return False


def _next_batch(job_type, exclude_ids, batch_size):
    query = RecomputeJob.query.with_entities(RecomputeJob.id).filter_by(
        status="pending", job_type=job_type
    )
    if exclude_ids:
        query = query.filter(RecomputeJob.id.notin_(exclude_ids))
    return [job_id for (job_id,) in query.order_by(RecomputeJob.id).limit(batch_size)]


@timer
def drain(batch_size=None, max_attempts=None):
    """
    Process pending jobs in dependency order.

    Jobs created while draining (user weeks from grading) are picked up in
    the same call. A job is attempted at most once per call.

    Returns:
        dict with processed, failed and remaining counts
    """
    batch_size = batch_size or current_app.config.get("RECOMPUTE_BATCH_SIZE", 200)
    attempted = set()
    processed = failed = 0

    for job_type in sorted(JOB_PRIORITY, key=JOB_PRIORITY.get):
        while True:
            job_ids = _next_batch(job_type, attempted, batch_size)
            if not job_ids:
                break
            for job_id in job_ids:
                attempted.add(job_id)
                outcome = process_job(job_id, max_attempts=max_attempts)
                if outcome:
                    processed += 1
                elif outcome is False:
                    failed += 1

    remaining = RecomputeJob.query.filter_by(status="pending").count()
    if processed or failed:
        logger.info(f"Drained recompute queue: {processed} done, {failed} failed, {remaining} pending")
    return {"processed": processed, "failed": failed, "remaining": remaining}


def queue_status():
    """Job counts by status and type"""
    counts = (
        db.session.query(RecomputeJob.status, RecomputeJob.job_type, db.func.count(RecomputeJob.id))
        .group_by(RecomputeJob.status, RecomputeJob.job_type)
        .all()
    )
    status = {}
    for job_status, job_type, count in counts:
        status.setdefault(job_status, {})[job_type] = count
    return status


def retry_failed_jobs(job_key=None):
    """Move failed jobs back to pending; returns how many were reset"""
    query = RecomputeJob.query.filter_by(status="failed")
    if job_key:
        query = query.filter_by(job_key=job_key)

    jobs = query.all()
    for job in jobs:
        job.status = "pending"
        job.attempts = 0
        job.last_error = None
    db.session.commit()
    return len(jobs)
