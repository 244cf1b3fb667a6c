"""
Admin control surface

Visibility toggles, pick-set overrides, payment sync and rebuild
requests. Each call records an AdminAction and enqueues the affected
user weeks; the leaderboards follow once the worker drains the queue.

Misuse (unknown ids, bad source names, an override naming a source with
no picks) raises ValueError before anything is written.
"""

import logging

from ats_pickem import db
from ats_pickem.models import AdminAction, AnonymousPick, PaymentRecord, Pick, PickSetOverride
from ats_pickem.services.precedence import (
    ANONYMOUS,
    AUTHENTICATED,
    SOURCES,
    resolve_pick_set,
    weeks_with_picks,
)
from ats_pickem.services.recompute import (
    enqueue_rebuild_week,
    enqueue_user_week,
    weeks_for_season,
)

logger = logging.getLogger(__name__)


def _check_source(source):
    if source not in SOURCES:
        raise ValueError(f"Unknown pick source {source!r}; expected one of {', '.join(SOURCES)}")


def _source_rows(user_id, season, week, source):
    """Every pick of one source for a scope; week None means the whole season"""
    if source == AUTHENTICATED:
        query = Pick.query.filter_by(user_id=user_id, season=season)
        model = Pick
    else:
        query = AnonymousPick.query.filter_by(assigned_user_id=user_id, season=season)
        model = AnonymousPick
    if week is not None:
        query = query.filter(model.week == week)
    return query.all()


def _enqueue_scope(user_id, season, week):
    weeks = [week] if week is not None else weeks_with_picks(user_id, season)
    for scope_week in weeks:
        enqueue_user_week(user_id, season, scope_week)
    return weeks


def set_pick_visibility(admin_user_id, pick_id, visible, reason=None):
    """Show or hide a single authenticated pick"""
    pick = db.session.get(Pick, pick_id)
    if pick is None:
        raise ValueError(f"Pick {pick_id} not found")

    pick.visible = bool(visible)
    AdminAction.log_pick_visibility(admin_user_id, pick, pick.visible, reason)
    enqueue_user_week(pick.user_id, pick.season, pick.week)
    db.session.commit()

    logger.info(f"Admin {admin_user_id} set pick {pick_id} visible={pick.visible}")
    return pick


def set_pick_set_visibility(admin_user_id, user_id, season, week, source, visible, reason=None):
    """
    Show or hide every pick of one source for a user and week.

    Returns:
        Number of picks changed
    """
    _check_source(source)
    picks = _source_rows(user_id, season, week, source)
    if not picks:
        raise ValueError(f"User {user_id} has no {source} picks for week {week} of {season}")

    for pick in picks:
        pick.visible = bool(visible)

    AdminAction.log_action(
        admin_user_id=admin_user_id,
        action_type="pick_set_visibility",
        description=(
            f"{'Showed' if visible else 'Hid'} {len(picks)} {source} picks for user "
            f"{user_id} (Week {week}, {season})"
        ),
        target_user_id=user_id,
        season=season,
        week=week,
        action_metadata={"source": source, "visible": bool(visible), "reason": reason},
    )
    enqueue_user_week(user_id, season, week)
    db.session.commit()
    return len(picks)


def set_pick_set_override(admin_user_id, user_id, season, week, preferred_source, reasoning=None):
    """
    Choose which pick source counts for a user (one week, or the whole
    season when ``week`` is None). Setting the same override again only
    refreshes who set it and why.
    """
    _check_source(preferred_source)
    if not _source_rows(user_id, season, week, preferred_source):
        scope = f"week {week}" if week is not None else "the season"
        raise ValueError(f"User {user_id} has no {preferred_source} picks in {season} {scope}")

    override = PickSetOverride.get_exact(user_id, season, week)
    previous_source = override.preferred_source if override else None
    if override is None:
        override = PickSetOverride(user_id=user_id, season=season, week=week)
        db.session.add(override)

    override.preferred_source = preferred_source
    override.set_by_user_id = admin_user_id
    override.reasoning = reasoning

    AdminAction.log_override(admin_user_id, override, previous_source)
    _enqueue_scope(user_id, season, week)
    db.session.commit()

    logger.info(
        f"Admin {admin_user_id} set {preferred_source} picks for user {user_id} "
        f"({season}, week {week if week is not None else 'all'})"
    )
    return override


def clear_pick_set_override(admin_user_id, user_id, season, week=None):
    """Remove an override; returns False if there was none"""
    override = PickSetOverride.get_exact(user_id, season, week)
    if override is None:
        return False

    AdminAction.log_action(
        admin_user_id=admin_user_id,
        action_type="clear_override",
        description=f"Cleared {override.preferred_source} override for user {user_id}",
        target_user_id=user_id,
        season=season,
        week=week,
        action_metadata={"previous_source": override.preferred_source},
    )
    db.session.delete(override)
    _enqueue_scope(user_id, season, week)
    db.session.commit()
    return True


def request_rebuild(admin_user_id, season, week=None):
    """
    Queue a rebuild of one week, or of every week of the season.

    Returns:
        The weeks queued
    """
    if week is not None:
        weeks = [week]
    else:
        weeks = weeks_for_season(season)

    for scope_week in weeks:
        enqueue_rebuild_week(season, scope_week)

    AdminAction.log_action(
        admin_user_id=admin_user_id,
        action_type="rebuild",
        description=f"Requested rebuild of {season} {'week ' + str(week) if week else 'season'}",
        season=season,
        week=week,
        action_metadata={"weeks": weeks},
    )
    db.session.commit()
    return weeks


def detect_pick_set_conflicts(season, user_id=None):
    """
    Find user weeks holding both authenticated and assigned anonymous picks.

    Read-only: reports which source currently counts without changing the
    anonymous picks' active flags.
    """
    query = (
        db.session.query(AnonymousPick.assigned_user_id, AnonymousPick.week)
        .filter(AnonymousPick.season == season, AnonymousPick.assigned_user_id.isnot(None))
        .distinct()
    )
    if user_id is not None:
        query = query.filter(AnonymousPick.assigned_user_id == user_id)

    conflicts = []
    for conflict_user_id, week in sorted(query.all()):
        authenticated_count = Pick.query.filter_by(
            user_id=conflict_user_id, season=season, week=week
        ).count()
        if not authenticated_count:
            continue

        anonymous = _source_rows(conflict_user_id, season, week, ANONYMOUS)
        resolved = resolve_pick_set(conflict_user_id, season, week, mark_active=False)
        override = resolved.override

        conflicts.append(
            {
                "user_id": conflict_user_id,
                "season": season,
                "week": week,
                "authenticated_picks": authenticated_count,
                "anonymous_picks": len(anonymous),
                "anonymous_active": any(p.active for p in anonymous),
                "counted_source": resolved.choice.label,
                "override_source": override.preferred_source if override else None,
            }
        )
    return conflicts


def record_payment(user_id, season, raw_status, ledger_matched=False, admin_user_id=None):
    """
    Store the latest ledger entry for a user and season and refresh every
    week that carries the payment status.
    """
    record = PaymentRecord.get_for(user_id, season)
    if record is None:
        record = PaymentRecord(user_id=user_id, season=season)
        db.session.add(record)

    record.raw_status = raw_status
    record.ledger_matched = bool(ledger_matched)

    AdminAction.log_action(
        admin_user_id=admin_user_id,
        action_type="payment",
        description=f"Recorded payment status {raw_status!r} for user {user_id} ({season})",
        target_user_id=user_id,
        season=season,
        action_metadata={"raw_status": raw_status, "ledger_matched": bool(ledger_matched)},
    )
    weeks = _enqueue_scope(user_id, season, None)
    db.session.commit()

    logger.info(f"Payment for user {user_id} ({season}) set to {raw_status!r}; {len(weeks)} weeks queued")
    return record
