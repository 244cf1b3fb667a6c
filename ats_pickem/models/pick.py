from datetime import datetime, timezone

from ats_pickem import db
from ats_pickem.utils.scoring import grade_pick


class Pick(db.Model):
    __tablename__ = "picks"

    id = db.Column(db.Integer, primary_key=True)

    # Pick identification
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    game_id = db.Column(db.Integer, db.ForeignKey("games.id"), nullable=False)
    season = db.Column(db.Integer, nullable=False)
    week = db.Column(db.Integer, nullable=False)

    # Pick details
    selected_side = db.Column(db.String(10), nullable=False)  # home / away
    is_lock = db.Column(db.Boolean, nullable=False, default=False)

    # Submission and leaderboard visibility
    submitted = db.Column(db.Boolean, nullable=False, default=True)
    submitted_at = db.Column(db.DateTime)
    visible = db.Column(db.Boolean, nullable=False, default=True)

    # Results (calculated after the game's ATS outcome is resolved)
    result = db.Column(db.String(10))
    points = db.Column(db.Integer)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Constraints and indexes
    __table_args__ = (
        db.UniqueConstraint("user_id", "game_id", name="unique_user_game_pick"),
        db.Index("idx_pick_user_period", "user_id", "season", "week"),
        db.Index("idx_pick_game", "game_id"),
    )

    def __repr__(self):
        return f"<Pick user_id={self.user_id} game_id={self.game_id} side={self.selected_side}{' LOCK' if self.is_lock else ''}>"

    @property
    def is_pending(self):
        """A pick shows as pending until its game is gradable"""
        return self.result is None

    @property
    def selected_team(self):
        return self.game.team_for_side(self.selected_side) if self.game else None

    def update_result(self, base_points=None, push_points=None):
        """Re-grade this pick from its game's ATS outcome

        Returns:
            True if result or points changed
        """
        if not self.game:
            return False

        kwargs = {"base_points": base_points or self.game.base_points}
        if push_points is not None:
            kwargs["push_points"] = push_points

        result, points = grade_pick(
            self.selected_side,
            self.is_lock,
            self.game.ats_winner,
            self.game.margin_bonus,
            **kwargs,
        )

        changed = (result, points) != (self.result, self.points)
        self.result = result
        self.points = points
        return changed

    @staticmethod
    def get_for_user_week(user_id, season, week):
        """All picks (drafts included) for a user in one week"""
        return (
            Pick.query.filter_by(user_id=user_id, season=season, week=week)
            .order_by(Pick.id)
            .all()
        )

    def to_dict(self):
        """Convert pick to dictionary"""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "game_id": self.game_id,
            "season": self.season,
            "week": self.week,
            "selected_side": self.selected_side,
            "selected_team": self.selected_team,
            "is_lock": self.is_lock,
            "submitted": self.submitted,
            "visible": self.visible,
            "result": self.result or "pending",
            "points": self.points,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
        }
