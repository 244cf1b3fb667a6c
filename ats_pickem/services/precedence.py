"""
Pick-set precedence

For every (user, season, week) exactly one pick source counts:

* an admin override names the preferred source and wins when that source
  has eligible picks;
* otherwise authenticated picks win whenever there are any;
* otherwise validated, visible anonymous picks assigned to the user count.

The decision is made once here and carried through aggregation as a
``PickSetChoice`` instead of being re-derived in each query.
"""

import logging
from collections import namedtuple

from ats_pickem.models import AnonymousPick, Pick, PickSetOverride
from ats_pickem.models.anonymous_pick import VALIDATED_STATUSES

logger = logging.getLogger(__name__)

AUTHENTICATED = "authenticated"
ANONYMOUS = "anonymous"
SOURCES = (AUTHENTICATED, ANONYMOUS)


class PickSetChoice(namedtuple("PickSetChoice", ["source", "overridden"])):
    """Which source counts for a period, and whether an admin decided it.

    ``source`` is None when the user has nothing countable.
    """

    __slots__ = ()

    @property
    def label(self):
        return self.source or "none"


NO_PICKS = PickSetChoice(None, False)


class ResolvedPickSet:
    """Outcome of precedence resolution for one (user, season, week)"""

    def __init__(self, user_id, season, week, choice, picks, override=None):
        self.user_id = user_id
        self.season = season
        self.week = week
        self.choice = choice
        self.picks = picks
        self.override = override

    @property
    def source(self):
        return self.choice.source

    def __repr__(self):
        return (
            f"<ResolvedPickSet user={self.user_id} {self.season} W{self.week} "
            f"source={self.choice.label} picks={len(self.picks)}>"
        )


def authenticated_candidates(user_id, season, week):
    """Submitted, visible authenticated picks"""
    return (
        Pick.query.filter_by(
            user_id=user_id, season=season, week=week, submitted=True, visible=True
        )
        .order_by(Pick.id)
        .all()
    )


def anonymous_rows(user_id, season, week):
    """All anonymous picks assigned to the user for the week, eligible or not"""
    return (
        AnonymousPick.query.filter_by(assigned_user_id=user_id, season=season, week=week)
        .order_by(AnonymousPick.id)
        .all()
    )


def _one_per_game(anonymous_picks, user_id):
    """Keep the earliest eligible anonymous pick for each game"""
    kept = {}
    for anonymous_pick in anonymous_picks:
        if anonymous_pick.game_id in kept:
            logger.error(
                f"User {user_id} has several eligible anonymous picks on game "
                f"{anonymous_pick.game_id}; counting only pick {kept[anonymous_pick.game_id].id}"
            )
            continue
        kept[anonymous_pick.game_id] = anonymous_pick
    return list(kept.values())


def choose_source(has_authenticated, has_anonymous, preferred_source=None):
    """
    Pure precedence rule.

    Args:
        has_authenticated: The user has countable authenticated picks
        has_anonymous: The user has countable anonymous picks
        preferred_source: Admin override, if any

    Returns:
        PickSetChoice
    """
    available = {AUTHENTICATED: has_authenticated, ANONYMOUS: has_anonymous}

    if preferred_source in SOURCES and available[preferred_source]:
        return PickSetChoice(preferred_source, True)

    if has_authenticated:
        return PickSetChoice(AUTHENTICATED, False)
    if has_anonymous:
        return PickSetChoice(ANONYMOUS, False)
    return NO_PICKS


def resolve_pick_set(user_id, season, week, pick_limit=None, mark_active=True):
    """
    Decide the counted pick set for one user and week.

    Marks the user's anonymous picks for the week active or inactive to
    match the decision (rows are kept for audit) unless ``mark_active`` is
    False. The caller owns the transaction.

    Returns:
        ResolvedPickSet
    """
    authenticated = authenticated_candidates(user_id, season, week)
    anonymous_all = anonymous_rows(user_id, season, week)
    anonymous = _one_per_game(
        [ap for ap in anonymous_all if ap.visible and ap.validation_status in VALIDATED_STATUSES],
        user_id,
    )

    override = PickSetOverride.get_effective(user_id, season, week)
    preferred = override.preferred_source if override else None

    choice = choose_source(bool(authenticated), bool(anonymous), preferred)

    if preferred and not choice.overridden:
        logger.warning(
            f"Override for user {user_id} (season {season}, week {week}) prefers "
            f"{preferred} picks but none are eligible; using {choice.label}"
        )

    if mark_active:
        for anonymous_pick in anonymous_all:
            active = choice.source == ANONYMOUS and anonymous_pick in anonymous
            if anonymous_pick.active != active:
                anonymous_pick.active = active

    if choice.source == AUTHENTICATED:
        picks = authenticated
    elif choice.source == ANONYMOUS:
        picks = anonymous
    else:
        picks = []

    if pick_limit is not None and len(picks) > pick_limit:
        # Submission enforces the cap; reaching this means legacy or hand-edited data
        logger.error(
            f"Counted pick set for user {user_id} (season {season}, week {week}) has "
            f"{len(picks)} picks, over the limit of {pick_limit}"
        )

    return ResolvedPickSet(user_id, season, week, choice, picks, override)


def weeks_with_picks(user_id, season):
    """Weeks in which the user has any authenticated or assigned anonymous pick"""
    weeks = {
        week
        for (week,) in Pick.query.with_entities(Pick.week)
        .filter_by(user_id=user_id, season=season)
        .distinct()
    }
    weeks.update(
        week
        for (week,) in AnonymousPick.query.with_entities(AnonymousPick.week)
        .filter_by(assigned_user_id=user_id, season=season)
        .distinct()
    )
    return sorted(weeks)
