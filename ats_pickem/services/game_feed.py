"""
Game data ingestion

Applies feed records to Game rows and polls the configured JSON feed.
A game's transition to completed resolves its ATS outcome and enqueues
grading in the same transaction as the status write.
"""

import logging
import time
from datetime import datetime, timezone
from functools import wraps

import requests
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ats_pickem import db
from ats_pickem.models import Game
from ats_pickem.models.game import GAME_STATUSES
from ats_pickem.services.recompute import enqueue_grade_game

logger = logging.getLogger(__name__)

# Feed spellings accepted for each status
STATUS_ALIASES = {
    "scheduled": "scheduled",
    "pre": "scheduled",
    "pregame": "scheduled",
    "in_progress": "in_progress",
    "in progress": "in_progress",
    "live": "in_progress",
    "halftime": "in_progress",
    "completed": "completed",
    "final": "completed",
    "post": "completed",
}


class GameFeedError(Exception):
    """The game feed could not be fetched or parsed"""


def parse_int(value, field=None):
    """Integer or None; malformed values are logged and dropped"""
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed {field or 'integer'} value: {value!r}")
        return None


def parse_float(value, field=None):
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed {field or 'number'} value: {value!r}")
        return None


def parse_team(value, field=None):
    """Stripped team name or None; non-string values are logged and dropped"""
    if value is None:
        return None
    if not isinstance(value, str):
        logger.warning(f"Ignoring malformed {field or 'team'} value: {value!r}")
        return None
    return value.strip() or None


def parse_status(value):
    if value is None:
        return None
    status = STATUS_ALIASES.get(str(value).strip().lower())
    if status not in GAME_STATUSES:
        logger.warning(f"Ignoring unknown game status: {value!r}")
        return None
    return status


def parse_kickoff(value):
    if not value:
        return None
    try:
        kickoff = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Ignoring malformed kickoff time: {value!r}")
        return None
    if kickoff.tzinfo is not None:
        kickoff = kickoff.astimezone(timezone.utc).replace(tzinfo=None)
    return kickoff


def apply_game_update(record, commit=True):
    """
    Create or update a game from one feed record.

    Args:
        record: dict with game_id, season, week, home_team, away_team,
            spread, home_score, away_score, status (and optional kickoff)
        commit: Commit the game write together with any grading job

    Returns:
        (game, grading_enqueued)

    Raises:
        ValueError: the record lacks an id, or a new game lacks its
            season, week or teams
    """
    if not isinstance(record, dict):
        raise ValueError(f"Feed record is not an object: {record!r}")

    external_id = record.get("game_id")
    if external_id in (None, ""):
        raise ValueError("Feed record has no game_id")

    game = Game.get_by_external_id(external_id)

    if game is None:
        season = parse_int(record.get("season"), "season")
        week = parse_int(record.get("week"), "week")
        home_team = parse_team(record.get("home_team"), "home_team")
        away_team = parse_team(record.get("away_team"), "away_team")
        if season is None or week is None or not home_team or not away_team:
            raise ValueError(f"Cannot create game {external_id}: season, week and teams are required")

        game = Game(
            external_id=str(external_id),
            season=season,
            week=week,
            home_team=home_team,
            away_team=away_team,
            status="scheduled",
            base_points=current_app.config.get("BASE_POINTS", 20),
        )
        db.session.add(game)
        logger.info(f"Created game {external_id}: {away_team} @ {home_team} (week {week})")

    kickoff = parse_kickoff(record.get("kickoff"))
    if kickoff is not None:
        game.kickoff_at = kickoff

    just_completed, outcome_changed = game.record_result(
        home_score=parse_int(record.get("home_score"), "home_score"),
        away_score=parse_int(record.get("away_score"), "away_score"),
        spread=parse_float(record.get("spread"), "spread"),
        status=parse_status(record.get("status")),
    )

    grading_enqueued = False
    if game.is_completed and (just_completed or outcome_changed):
        db.session.flush()
        enqueue_grade_game(game.id)
        grading_enqueued = True
        logger.info(
            f"Game {game.external_id} {'completed' if just_completed else 'corrected'}: "
            f"ATS winner {game.ats_winner or 'pending'}, bonus {game.margin_bonus}"
        )

    if commit:
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

    return game, grading_enqueued


def rate_limit_decorator(max_retries=3, base_delay=1.0, backoff_factor=2.0):
    """
    Decorator to handle feed rate limiting with exponential backoff
    """

    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            for attempt in range(max_retries):
                delay = base_delay * (backoff_factor**attempt)
                try:
                    response = func(self, *args, **kwargs)
                except requests.exceptions.RequestException as e:
                    logger.warning(
                        f"Request failed: {e}. Waiting {delay}s before retry {attempt + 1}/{max_retries}"
                    )
                    if attempt < max_retries - 1:
                        time.sleep(delay)
                        continue
                    raise GameFeedError(f"Feed request failed: {e}") from e

                if response.status_code == 429:  # Too Many Requests
                    retry_after = parse_float(response.headers.get("Retry-After")) or delay
                    logger.warning(
                        f"Rate limited. Waiting {retry_after}s before retry {attempt + 1}/{max_retries}"
                    )
                    time.sleep(retry_after)
                    continue
                if response.status_code >= 500:  # Server errors
                    logger.warning(
                        f"Server error {response.status_code}. Waiting {delay}s before retry {attempt + 1}/{max_retries}"
                    )
                    time.sleep(delay)
                    continue

                return response

            raise GameFeedError(f"Max retries ({max_retries}) exceeded")

        return wrapper

    return decorator


class GameFeedClient:
    """
    Polls the game data feed with rate limiting and retries
    """

    def __init__(self, feed_url=None, timeout=30):
        self.feed_url = feed_url or current_app.config.get("GAME_FEED_URL")
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": "ATS-Pickem-Scoring/1.0"})

        # Rate limiting configuration
        self.request_count = 0
        self.last_request_time = 0
        self.min_request_interval = 0.5  # Minimum 500ms between requests

    def _enforce_rate_limit(self):
        """Enforce a minimum interval between requests"""
        time_since_last = time.time() - self.last_request_time
        if time_since_last < self.min_request_interval:
            time.sleep(self.min_request_interval - time_since_last)

        self.last_request_time = time.time()
        self.request_count += 1

    @rate_limit_decorator(max_retries=3, base_delay=2.0)
    def _make_api_request(self, params=None):
        """Make a feed request with rate limiting and retry logic"""
        self._enforce_rate_limit()
        return self.session.get(self.feed_url, params=params, timeout=self.timeout)

    def fetch_games(self, season=None, week=None):
        """
        Fetch game records from the feed.

        The feed returns either a list of records or {"games": [...]}.
        """
        if not self.feed_url:
            raise GameFeedError("GAME_FEED_URL is not configured")

        params = {}
        if season is not None:
            params["season"] = season
        if week is not None:
            params["week"] = week

        response = self._make_api_request(params=params or None)
        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            raise GameFeedError(f"Feed returned HTTP {response.status_code}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise GameFeedError("Feed returned invalid JSON") from e

        games = data.get("games", []) if isinstance(data, dict) else data
        if not isinstance(games, list):
            raise GameFeedError("Feed payload has no game list")
        return games

    def sync(self, season=None, week=None):
        """
        Fetch and apply every record; one bad record never stops the rest.

        Returns:
            dict with applied, graded and failed counts
        """
        records = self.fetch_games(season=season, week=week)
        stats = {"applied": 0, "graded": 0, "failed": 0}

        for record in records:
            try:
                _, graded = apply_game_update(record)
                stats["applied"] += 1
                if graded:
                    stats["graded"] += 1
            except (TypeError, ValueError, SQLAlchemyError) as e:
                db.session.rollback()
                stats["failed"] += 1
                logger.error(f"Failed to apply feed record: {e}")

        logger.info(
            f"Game feed sync: {stats['applied']} applied, {stats['graded']} sent to grading, "
            f"{stats['failed']} failed"
        )
        return stats

    def get_rate_limit_status(self):
        return {
            "total_requests": self.request_count,
            "time_since_last_request": (
                time.time() - self.last_request_time if self.last_request_time else 0
            ),
            "min_request_interval": self.min_request_interval,
        }
