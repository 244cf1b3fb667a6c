"""
tests/test_precedence.py

Purpose:
    Pick-set precedence between authenticated and anonymous picks,
    including admin overrides and the anonymous 'active' flag.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from ats_pickem import db
from ats_pickem.models import PickSetOverride
from ats_pickem.services.precedence import (
    ANONYMOUS,
    AUTHENTICATED,
    NO_PICKS,
    PickSetChoice,
    choose_source,
    resolve_pick_set,
)


def test_choose_source_defaults():
    assert choose_source(True, True) == PickSetChoice(AUTHENTICATED, False)
    assert choose_source(False, True) == PickSetChoice(ANONYMOUS, False)
    assert choose_source(False, False) == NO_PICKS


def test_choose_source_override_wins_when_available():
    assert choose_source(True, True, ANONYMOUS) == PickSetChoice(ANONYMOUS, True)
    assert choose_source(True, False, AUTHENTICATED) == PickSetChoice(AUTHENTICATED, True)


def test_choose_source_override_falls_back_when_empty():
    assert choose_source(True, False, ANONYMOUS) == PickSetChoice(AUTHENTICATED, False)


def _week_with_both_sources(make_user, make_game, make_pick, make_anonymous_pick):
    user = make_user("alice")
    games = [make_game() for _ in range(4)]
    for game in games:
        make_pick(user, game)
    anonymous = [
        make_anonymous_pick(
            "alice@example.com",
            game,
            user=user,
            validation_status="auto_validated",
            visible=True,
        )
        for game in games[:3]
    ]
    return user, anonymous


def test_authenticated_picks_win_by_default(make_user, make_game, make_pick, make_anonymous_pick):
    user, anonymous = _week_with_both_sources(make_user, make_game, make_pick, make_anonymous_pick)

    resolved = resolve_pick_set(user.id, 2024, 1)

    assert resolved.choice == PickSetChoice(AUTHENTICATED, False)
    assert len(resolved.picks) == 4
    assert not any(ap.active for ap in anonymous)


def test_override_switches_to_anonymous(make_user, make_game, make_pick, make_anonymous_pick):
    user, anonymous = _week_with_both_sources(make_user, make_game, make_pick, make_anonymous_pick)
    db.session.add(
        PickSetOverride(user_id=user.id, season=2024, week=1, preferred_source=ANONYMOUS)
    )
    db.session.commit()

    resolved = resolve_pick_set(user.id, 2024, 1)

    assert resolved.choice == PickSetChoice(ANONYMOUS, True)
    assert len(resolved.picks) == 3
    assert all(ap.active for ap in anonymous)


def test_season_wide_override_applies_to_every_week(
    make_user, make_game, make_pick, make_anonymous_pick
):
    user, _ = _week_with_both_sources(make_user, make_game, make_pick, make_anonymous_pick)
    db.session.add(
        PickSetOverride(user_id=user.id, season=2024, week=None, preferred_source=ANONYMOUS)
    )
    db.session.commit()

    assert resolve_pick_set(user.id, 2024, 1).source == ANONYMOUS


def test_week_override_beats_season_override(make_user, make_game, make_pick, make_anonymous_pick):
    user, _ = _week_with_both_sources(make_user, make_game, make_pick, make_anonymous_pick)
    db.session.add_all(
        [
            PickSetOverride(user_id=user.id, season=2024, week=None, preferred_source=ANONYMOUS),
            PickSetOverride(user_id=user.id, season=2024, week=1, preferred_source=AUTHENTICATED),
        ]
    )
    db.session.commit()

    assert resolve_pick_set(user.id, 2024, 1).choice == PickSetChoice(AUTHENTICATED, True)


def test_hidden_authenticated_picks_fall_back_to_anonymous(
    make_user, make_game, make_pick, make_anonymous_pick
):
    user = make_user("bob")
    game = make_game()
    make_pick(user, game, visible=False)
    anonymous_pick = make_anonymous_pick(
        "bob@example.com", game, user=user, validation_status="manually_validated", visible=True
    )

    resolved = resolve_pick_set(user.id, 2024, 1)

    assert resolved.source == ANONYMOUS
    assert anonymous_pick.active is True


def test_drafts_are_not_candidates(make_user, make_game, make_pick):
    user = make_user("carol")
    make_pick(user, make_game(), submitted=False)

    assert resolve_pick_set(user.id, 2024, 1).choice == NO_PICKS


def test_unvalidated_or_hidden_anonymous_picks_never_count(
    make_user, make_game, make_anonymous_pick
):
    user = make_user("dave")
    pending = make_anonymous_pick("dave@example.com", make_game(), user=user, visible=True)
    hidden = make_anonymous_pick(
        "dave@example.com", make_game(), user=user, validation_status="auto_validated"
    )

    resolved = resolve_pick_set(user.id, 2024, 1)

    assert resolved.choice == NO_PICKS
    assert pending.active is False
    assert hidden.active is False


def test_anonymous_rows_are_kept_when_inactive(
    make_user, make_game, make_pick, make_anonymous_pick
):
    user, anonymous = _week_with_both_sources(make_user, make_game, make_pick, make_anonymous_pick)

    resolve_pick_set(user.id, 2024, 1)
    db.session.commit()

    assert all(db.session.get(type(ap), ap.id) is not None for ap in anonymous)


def test_read_only_resolution_leaves_flags_alone(
    make_user, make_game, make_pick, make_anonymous_pick
):
    user = make_user("erin")
    anonymous_pick = make_anonymous_pick(
        "erin@example.com", make_game(), user=user, validation_status="auto_validated", visible=True
    )

    resolved = resolve_pick_set(user.id, 2024, 1, mark_active=False)

    assert resolved.source == ANONYMOUS
    assert anonymous_pick.active is False


def test_one_anonymous_pick_counts_per_game(make_user, make_game, make_anonymous_pick):
    user = make_user("frank")
    game = make_game()
    first = make_anonymous_pick(
        "frank@example.com", game, user=user, validation_status="auto_validated", visible=True
    )
    second = make_anonymous_pick(
        "frankie@home.net", game, side="away", user=user,
        validation_status="manually_validated", visible=True,
    )

    resolved = resolve_pick_set(user.id, 2024, 1)

    assert resolved.picks == [first]
    assert (first.active, second.active) == (True, False)


def test_only_one_season_wide_override_per_user(make_user):
    user = make_user("gina")
    db.session.add(PickSetOverride(user_id=user.id, season=2024, week=None, preferred_source=ANONYMOUS))
    db.session.commit()

    db.session.add(
        PickSetOverride(user_id=user.id, season=2024, week=None, preferred_source=AUTHENTICATED)
    )
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()

    db.session.add(PickSetOverride(user_id=user.id, season=2024, week=3, preferred_source=ANONYMOUS))
    db.session.add(PickSetOverride(user_id=user.id, season=2025, week=None, preferred_source=ANONYMOUS))
    db.session.commit()

    assert PickSetOverride.get_exact(user.id, 2024, None).preferred_source == ANONYMOUS
    assert PickSetOverride.query.count() == 3
