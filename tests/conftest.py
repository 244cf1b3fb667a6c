"""
tests/conftest.py

Purpose:
    Application, database and factory fixtures shared by the test modules.
    Every test gets a fresh in-memory SQLite database.
"""

from datetime import datetime, timedelta, timezone

import pytest

from ats_pickem import create_app, db
from ats_pickem.models import AnonymousPick, Game, Pick, Season, User
from ats_pickem.services.recompute import enqueue_grade_game


@pytest.fixture
def app():
    app = create_app("testing")
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def make_user(app):
    def _make_user(username, email=None, display_name=None):
        user = User(
            username=username,
            email=email or f"{username}@example.com",
            display_name=display_name,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make_user


@pytest.fixture
def make_season(app):
    def _make_season(year=2024, best_finish_weeks=None):
        season = Season.create_season(year, best_finish_weeks=best_finish_weeks)
        season.activate()
        db.session.commit()
        return season

    return _make_season


@pytest.fixture
def make_game(app):
    counter = {"n": 0}

    def _make_game(season=2024, week=1, home=None, away=None, spread=-3.0, kickoff_in_hours=24):
        counter["n"] += 1
        n = counter["n"]
        game = Game(
            external_id=f"g{n}",
            season=season,
            week=week,
            home_team=home or f"Home {n}",
            away_team=away or f"Away {n}",
            spread=spread,
            status="scheduled",
            kickoff_at=datetime.now(timezone.utc) + timedelta(hours=kickoff_in_hours),
        )
        db.session.add(game)
        db.session.commit()
        return game

    return _make_game


@pytest.fixture
def make_pick(app):
    """Insert a pick directly, bypassing submission rules"""

    def _make_pick(user, game, side="home", is_lock=False, submitted=True, visible=True):
        pick = Pick(
            user_id=user.id,
            game_id=game.id,
            season=game.season,
            week=game.week,
            selected_side=side,
            is_lock=is_lock,
            submitted=submitted,
            visible=visible,
        )
        db.session.add(pick)
        db.session.commit()
        return pick

    return _make_pick


@pytest.fixture
def make_anonymous_pick(app):
    def _make_anonymous_pick(
        email,
        game,
        side="home",
        is_lock=False,
        user=None,
        validation_status="pending",
        visible=False,
    ):
        anonymous_pick = AnonymousPick(
            email=email,
            name=email.split("@")[0],
            game_id=game.id,
            season=game.season,
            week=game.week,
            selected_side=side,
            is_lock=is_lock,
            assigned_user_id=user.id if user else None,
            validation_status=validation_status,
            visible=visible,
        )
        db.session.add(anonymous_pick)
        db.session.commit()
        return anonymous_pick

    return _make_anonymous_pick


@pytest.fixture
def complete_game(app):
    """Record a final score and queue grading, as the feed would"""

    def _complete_game(game, home_score, away_score, spread=None):
        game.record_result(
            home_score=home_score, away_score=away_score, spread=spread, status="completed"
        )
        enqueue_grade_game(game.id)
        db.session.commit()
        return game

    return _complete_game
