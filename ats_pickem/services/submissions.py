"""
Pick submission

Enforces the weekly pick cap and lock limit at submission time, so a
stored pick set never exceeds them. Every accepted change enqueues a
recompute of the affected user week in the same transaction.
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ats_pickem import db
from ats_pickem.models import AdminAction, AnonymousPick, Game, Pick, User
from ats_pickem.models.anonymous_pick import VALIDATED_STATUSES, VALIDATION_STATUSES
from ats_pickem.services.recompute import enqueue_user_week
from ats_pickem.utils.scoring import ATS_SIDES

logger = logging.getLogger(__name__)

MANUAL_STATUSES = ("manually_validated", "conflicting")


def _normalize_side(game, selected_side):
    """Accept 'home'/'away' or a team name"""
    if not selected_side:
        return None
    side = str(selected_side).strip().lower()
    if side in ATS_SIDES:
        return side
    return game.side_for_team(selected_side)


def _normalize_email(email):
    return email.strip().lower() if email else None


def _check_limits(existing, game_id, is_lock):
    """
    Reason the pick would break the weekly limits, or None.

    Args:
        existing: Every pick already held for the week (any result)
        game_id: Game being picked; a pick already on it is replaced
        is_lock: Whether the new pick is the lock
    """
    pick_limit = current_app.config.get("PICK_LIMIT", 6)
    lock_limit = current_app.config.get("LOCK_LIMIT", 1)

    others = [pick for pick in existing if pick.game_id != game_id]
    if len(others) >= pick_limit:
        return f"You already have {len(others)} picks this week (limit {pick_limit})"
    if is_lock and sum(1 for pick in others if pick.is_lock) >= lock_limit:
        return f"Only {lock_limit} lock pick allowed per week"
    return None


def _check_joining(held, game_id, is_lock):
    """
    Reason an anonymous pick cannot join the user's validated set, or None.

    Args:
        held: Validated anonymous picks already assigned to the user for
            the week being joined
        game_id: Game of the pick about to count for the user
        is_lock: Whether that pick is a lock
    """
    pick_limit = current_app.config.get("PICK_LIMIT", 6)
    lock_limit = current_app.config.get("LOCK_LIMIT", 1)

    if any(pick.game_id == game_id for pick in held):
        return f"Game {game_id} already has a validated anonymous pick for this user"
    if len(held) >= pick_limit:
        return f"User already has {len(held)} validated anonymous picks this week (limit {pick_limit})"
    if is_lock and sum(1 for pick in held if pick.is_lock) >= lock_limit:
        return f"Only {lock_limit} lock pick allowed per week"
    return None


def _validated_for_user_week(user_id, season, week, exclude_ids=()):
    query = AnonymousPick.query.filter(
        AnonymousPick.assigned_user_id == user_id,
        AnonymousPick.season == season,
        AnonymousPick.week == week,
        AnonymousPick.validation_status.in_(VALIDATED_STATUSES),
    )
    if exclude_ids:
        query = query.filter(AnonymousPick.id.not_in(list(exclude_ids)))
    return query.order_by(AnonymousPick.id).all()


def _lock_user(user_id):
    """Serialize pick changes for one user (row lock on PostgreSQL)"""
    return User.query.filter_by(id=user_id).with_for_update().one_or_none()


def _recount_reason(user_id, season, week):
    """Limits re-checked against the flushed week, catching a concurrent writer"""
    pick_limit = current_app.config.get("PICK_LIMIT", 6)
    lock_limit = current_app.config.get("LOCK_LIMIT", 1)

    query = Pick.query.filter_by(user_id=user_id, season=season, week=week)
    count = query.count()
    if count > pick_limit:
        return f"You already have {count - 1} picks this week (limit {pick_limit})"
    if query.filter_by(is_lock=True).count() > lock_limit:
        return f"Only {lock_limit} lock pick allowed per week"
    return None


def _validate_game(game_id, selected_side):
    """Returns (game, side, None) or (None, None, reason)"""
    game = db.session.get(Game, game_id)
    if game is None:
        return None, None, "Game not found"
    if not game.is_pickable():
        return None, None, "This game has already started"

    side = _normalize_side(game, selected_side)
    if side is None:
        return None, None, f"Invalid selection: {selected_side!r}"
    return game, side, None


def _commit(success_message):
    try:
        db.session.commit()
        return success_message
    except IntegrityError:
        db.session.rollback()
        logger.warning("Concurrent pick change detected, rolled back")
        return None
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Database error saving pick: {e}", exc_info=True)
        raise


def submit_pick(user_id, game_id, selected_side, is_lock=False, submitted=True):
    """
    Create or update a user's pick for one game.

    Returns:
        (pick, message), or (None, reason) when the pick is rejected
    """
    game, side, reason = _validate_game(game_id, selected_side)
    if reason:
        return None, reason

    if _lock_user(user_id) is None:
        return None, "User not found"

    existing = Pick.get_for_user_week(user_id, game.season, game.week)
    reason = _check_limits(existing, game.id, is_lock)
    if reason:
        db.session.rollback()
        logger.info(f"Rejected pick for user {user_id} game {game.id}: {reason}")
        return None, reason

    pick = next((p for p in existing if p.game_id == game.id), None)
    created = pick is None
    if created:
        pick = Pick(user_id=user_id, game_id=game.id, season=game.season, week=game.week)
        db.session.add(pick)

    pick.selected_side = side
    pick.is_lock = bool(is_lock)
    pick.submitted = bool(submitted)
    pick.submitted_at = datetime.now(timezone.utc) if submitted else None

    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        logger.warning(f"Concurrent pick change for user {user_id} game {game.id}, rolled back")
        return None, "Your picks changed in another session, please try again"

    reason = _recount_reason(user_id, game.season, game.week)
    if reason:
        db.session.rollback()
        logger.warning(f"Rejected pick for user {user_id} game {game.id} after recount: {reason}")
        return None, reason

    enqueue_user_week(user_id, game.season, game.week)

    message = _commit(
        f"{'Pick saved' if created else 'Pick updated'}: {game.team_for_side(side)}"
        f"{' (lock)' if pick.is_lock else ''}"
    )
    if message is None:
        return None, "Your picks changed in another session, please try again"

    logger.info(f"User {user_id} picked {side} in game {game.id}{' as lock' if is_lock else ''}")
    return pick, message


def remove_pick(user_id, game_id):
    """
    Delete a pick whose game has not started.

    Returns:
        (True, message) or (False, reason)
    """
    pick = Pick.query.filter_by(user_id=user_id, game_id=game_id).first()
    if pick is None:
        return False, "Pick not found"
    if not pick.game.is_pickable():
        return False, "This game has already started"

    season, week = pick.season, pick.week
    db.session.delete(pick)
    enqueue_user_week(user_id, season, week)

    if _commit("Pick removed") is None:
        return False, "Your picks changed in another session, please try again"
    return True, "Pick removed"


def submit_anonymous_pick(email, name, game_id, selected_side, is_lock=False):
    """
    Record a pick from a player without an account.

    The pick starts pending and hidden; it counts only after assignment
    and validation.

    Returns:
        (anonymous_pick, message), or (None, reason)
    """
    email = _normalize_email(email)
    if not email:
        return None, "Email is required"

    game, side, reason = _validate_game(game_id, selected_side)
    if reason:
        return None, reason

    existing = AnonymousPick.get_for_email_week(email, game.season, game.week)
    reason = _check_limits(existing, game.id, is_lock)
    if reason:
        return None, reason

    anonymous_pick = next((p for p in existing if p.game_id == game.id), None)
    if anonymous_pick is None:
        anonymous_pick = AnonymousPick(
            email=email, game_id=game.id, season=game.season, week=game.week
        )
        db.session.add(anonymous_pick)
    elif anonymous_pick.assigned_user_id is not None and anonymous_pick.is_validated:
        # Already counted for a user, whose other emails share the limits
        held = _validated_for_user_week(
            anonymous_pick.assigned_user_id, game.season, game.week, exclude_ids=[anonymous_pick.id]
        )
        reason = _check_joining(held, game.id, bool(is_lock))
        if reason:
            return None, reason

    anonymous_pick.name = name.strip() if name else anonymous_pick.name
    anonymous_pick.selected_side = side
    anonymous_pick.is_lock = bool(is_lock)
    anonymous_pick.submitted_at = datetime.now(timezone.utc)

    if anonymous_pick.assigned_user_id is not None:
        enqueue_user_week(anonymous_pick.assigned_user_id, game.season, game.week)

    if _commit("Pick saved") is None:
        return None, "Your picks changed in another session, please try again"
    return anonymous_pick, f"Pick saved: {game.team_for_side(side)}"


def assign_anonymous_picks(email, user_id, admin_user_id=None):
    """
    Link unassigned anonymous picks for an email to a user.

    When the email is the user's own, the picks are auto-validated and made
    visible; otherwise they wait for manual validation. A pick that would
    push the user's validated set past the weekly limits, or duplicate a
    game already counted, is assigned but marked conflicting instead.

    Returns:
        Number of picks assigned
    """
    email = _normalize_email(email)
    user = _lock_user(user_id)
    if user is None:
        raise ValueError(f"User {user_id} not found")

    picks = (
        AnonymousPick.query.filter(
            db.func.lower(AnonymousPick.email) == email,
            AnonymousPick.assigned_user_id.is_(None),
        )
        .order_by(AnonymousPick.id)
        .all()
    )
    if not picks:
        db.session.rollback()
        return 0

    auto_validate = _normalize_email(user.email) == email
    held = {}
    conflicts = {}
    for anonymous_pick in picks:
        scope = (anonymous_pick.season, anonymous_pick.week)
        anonymous_pick.assigned_user_id = user_id
        if not auto_validate:
            continue

        if scope not in held:
            held[scope] = _validated_for_user_week(user_id, *scope)
        reason = _check_joining(held[scope], anonymous_pick.game_id, anonymous_pick.is_lock)
        if reason:
            anonymous_pick.validation_status = "conflicting"
            anonymous_pick.visible = False
            conflicts[anonymous_pick.id] = reason
            logger.warning(f"Anonymous pick {anonymous_pick.id} marked conflicting: {reason}")
        else:
            anonymous_pick.validation_status = "auto_validated"
            anonymous_pick.visible = True
            held[scope].append(anonymous_pick)

    weeks = {(p.season, p.week) for p in picks}
    for season, week in sorted(weeks):
        enqueue_user_week(user_id, season, week)

    AdminAction.log_action(
        admin_user_id=admin_user_id,
        action_type="assign_anonymous",
        description=f"Assigned {len(picks)} anonymous picks from {email} to user {user_id}",
        target_user_id=user_id,
        action_metadata={
            "email": email,
            "auto_validated": auto_validate,
            "count": len(picks),
            "conflicting": conflicts,
        },
    )
    db.session.commit()

    logger.info(
        f"Assigned {len(picks)} anonymous picks from {email} to user {user_id}"
        f"{' (auto-validated)' if auto_validate else ''}"
    )
    return len(picks)


def validate_anonymous_picks(admin_user_id, pick_ids, status="manually_validated", reason=None):
    """
    Manually validate assigned anonymous picks, or mark them conflicting.

    Validated picks are made visible; conflicting ones are hidden. The
    whole batch is rejected when validating it would break a user's weekly
    limits or count one game twice.

    Returns:
        Number of picks updated

    Raises:
        ValueError: unknown or unassigned picks, a bad status, or limits
    """
    if status not in MANUAL_STATUSES:
        raise ValueError(
            f"Status must be one of {', '.join(MANUAL_STATUSES)} "
            f"(known statuses: {', '.join(VALIDATION_STATUSES)})"
        )

    picks = AnonymousPick.query.filter(AnonymousPick.id.in_(pick_ids)).order_by(AnonymousPick.id).all()
    missing = set(pick_ids) - {p.id for p in picks}
    if missing:
        raise ValueError(f"Anonymous picks not found: {sorted(missing)}")
    unassigned = [p.id for p in picks if p.assigned_user_id is None]
    if unassigned:
        raise ValueError(f"Anonymous picks must be assigned before validation: {unassigned}")

    if status == "manually_validated":
        batch_ids = [p.id for p in picks]
        held = {}
        for anonymous_pick in picks:
            scope = (anonymous_pick.assigned_user_id, anonymous_pick.season, anonymous_pick.week)
            if scope not in held:
                _lock_user(anonymous_pick.assigned_user_id)
                held[scope] = _validated_for_user_week(*scope, exclude_ids=batch_ids)
            problem = _check_joining(held[scope], anonymous_pick.game_id, anonymous_pick.is_lock)
            if problem:
                db.session.rollback()
                raise ValueError(f"Cannot validate anonymous pick {anonymous_pick.id}: {problem}")
            held[scope].append(anonymous_pick)

    scopes = set()
    for anonymous_pick in picks:
        anonymous_pick.validation_status = status
        anonymous_pick.visible = status == "manually_validated"
        scopes.add((anonymous_pick.assigned_user_id, anonymous_pick.season, anonymous_pick.week))

    for user_id, season, week in sorted(scopes):
        enqueue_user_week(user_id, season, week)
        AdminAction.log_action(
            admin_user_id=admin_user_id,
            action_type="validate_anonymous",
            description=f"Marked anonymous picks {status} for user {user_id} (Week {week}, {season})",
            target_user_id=user_id,
            season=season,
            week=week,
            action_metadata={"pick_ids": sorted(pick_ids), "status": status, "reason": reason},
        )

    db.session.commit()
    return len(picks)
