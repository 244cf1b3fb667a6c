import logging
from datetime import datetime, timezone

from ats_pickem import db
from ats_pickem.utils.scoring import ATS_SIDES, resolve_spread

logger = logging.getLogger(__name__)

GAME_STATUSES = ("scheduled", "in_progress", "completed")


class Game(db.Model):
    __tablename__ = "games"

    id = db.Column(db.Integer, primary_key=True)

    # External ID from the game data feed
    external_id = db.Column(db.String(64), unique=True, index=True)

    # Game identification
    season = db.Column(db.Integer, nullable=False)
    week = db.Column(db.Integer, nullable=False)

    # Teams
    home_team = db.Column(db.String(100), nullable=False)
    away_team = db.Column(db.String(100), nullable=False)

    # Game timing
    kickoff_at = db.Column(db.DateTime)

    # Line and scores
    spread = db.Column(db.Float)  # Points added to the home score
    home_score = db.Column(db.Integer)
    away_score = db.Column(db.Integer)

    # Game status
    status = db.Column(db.String(20), nullable=False, default="scheduled")
    completed_at = db.Column(db.DateTime)

    # ATS outcome (set only once the game is completed and gradable)
    ats_winner = db.Column(db.String(10))  # home / away / push
    margin_bonus = db.Column(db.Integer)
    base_points = db.Column(db.Integer, nullable=False, default=20)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    picks = db.relationship(
        "Pick", backref="game", lazy="dynamic", cascade="all, delete-orphan"
    )
    anonymous_picks = db.relationship(
        "AnonymousPick", backref="game", lazy="dynamic", cascade="all, delete-orphan"
    )

    # Indexes
    __table_args__ = (
        db.Index("idx_game_season_week", "season", "week"),
        db.Index("idx_game_status", "status"),
        db.CheckConstraint("home_team != away_team", name="different_teams"),
    )

    def __repr__(self):
        return f"<Game {self.away_team} @ {self.home_team} Week {self.week} {self.season}>"

    @property
    def is_completed(self):
        return self.status == "completed"

    @property
    def is_gradable(self):
        """A game is gradable once the ATS outcome has been resolved"""
        return self.ats_winner is not None

    def team_for_side(self, side):
        """Get the team name for 'home' or 'away'"""
        if side == "home":
            return self.home_team
        if side == "away":
            return self.away_team
        return None

    def side_for_team(self, team):
        """Get 'home' or 'away' for a team name (case-insensitive)"""
        if not team:
            return None
        normalized = team.strip().lower()
        if normalized == self.home_team.lower():
            return "home"
        if normalized == self.away_team.lower():
            return "away"
        return None

    def has_started(self):
        """Check if game has kicked off"""
        if self.status != "scheduled":
            return True
        if not self.kickoff_at:
            return False

        # If kickoff_at is timezone-naive, assume it's in UTC
        kickoff_at = self.kickoff_at
        if kickoff_at.tzinfo is None:
            kickoff_at = kickoff_at.replace(tzinfo=timezone.utc)

        return datetime.now(timezone.utc) >= kickoff_at

    def is_pickable(self):
        """Check if game is open for picks"""
        return not self.has_started()

    def resolve_ats(self):
        """Derive ats_winner/margin_bonus from the current scores and spread.

        Only a completed game carries an ATS outcome; anything else clears it.
        Missing scores or spread leave the outcome null, deferring grading.

        Returns:
            True if the stored outcome changed
        """
        if self.is_completed:
            winner, bonus = resolve_spread(self.home_score, self.away_score, self.spread)
        else:
            winner, bonus = None, None

        changed = (winner, bonus) != (self.ats_winner, self.margin_bonus)
        self.ats_winner = winner
        self.margin_bonus = bonus

        if self.is_completed and winner is None:
            logger.info(
                f"Game {self.id} completed without scores/spread - grading deferred"
            )
        return changed

    def record_result(self, home_score=None, away_score=None, spread=None, status=None):
        """Record feed data for this game (the 'record a fact' step).

        Status is monotonic: a completed game never moves back. Returns a tuple
        (just_completed, outcome_changed) so the caller can enqueue grading.
        """
        was_completed = self.is_completed

        if home_score is not None:
            self.home_score = home_score
        if away_score is not None:
            self.away_score = away_score
        if spread is not None:
            self.spread = spread

        if status in GAME_STATUSES:
            if was_completed and status != "completed":
                logger.warning(
                    f"Ignoring status regression for game {self.id}: completed -> {status}"
                )
            else:
                self.status = status

        just_completed = self.is_completed and not was_completed
        if just_completed:
            self.completed_at = datetime.now(timezone.utc)

        outcome_changed = self.resolve_ats()
        return just_completed, outcome_changed

    def get_picks_count(self):
        """Get count of authenticated picks for each side"""
        from .pick import Pick

        home_picks = self.picks.filter(Pick.selected_side == "home").count()
        away_picks = self.picks.filter(Pick.selected_side == "away").count()

        return {"home": home_picks, "away": away_picks, "total": home_picks + away_picks}

    @staticmethod
    def get_games_for_week(season, week):
        """Get all games for a specific week"""
        return (
            Game.query.filter_by(season=season, week=week)
            .order_by(Game.kickoff_at, Game.id)
            .all()
        )

    @staticmethod
    def get_by_external_id(external_id):
        return Game.query.filter_by(external_id=str(external_id)).first()

    def to_dict(self):
        """Convert game to dictionary"""
        return {
            "id": self.id,
            "external_id": self.external_id,
            "season": self.season,
            "week": self.week,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "kickoff_at": self.kickoff_at.isoformat() if self.kickoff_at else None,
            "spread": self.spread,
            "home_score": self.home_score,
            "away_score": self.away_score,
            "status": self.status,
            "ats_winner": self.ats_winner,
            "ats_winning_team": (
                self.team_for_side(self.ats_winner)
                if self.ats_winner in ATS_SIDES
                else None
            ),
            "margin_bonus": self.margin_bonus,
            "is_pickable": self.is_pickable(),
        }
