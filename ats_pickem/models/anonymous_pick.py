from datetime import datetime, timezone

from ats_pickem import db
from ats_pickem.utils.scoring import grade_pick

VALIDATION_STATUSES = ("pending", "auto_validated", "manually_validated", "conflicting")
VALIDATED_STATUSES = ("auto_validated", "manually_validated")


class AnonymousPick(db.Model):
    """A pick submitted before the player had an account.

    Counts toward a leaderboard only after it has been assigned to a user,
    validated, and explicitly made visible.
    """

    __tablename__ = "anonymous_picks"

    id = db.Column(db.Integer, primary_key=True)

    # Submitter identity (pre-registration)
    email = db.Column(db.String(120), nullable=False, index=True)
    name = db.Column(db.String(100))

    game_id = db.Column(db.Integer, db.ForeignKey("games.id"), nullable=False)
    season = db.Column(db.Integer, nullable=False)
    week = db.Column(db.Integer, nullable=False)

    # Pick details
    selected_side = db.Column(db.String(10), nullable=False)
    is_lock = db.Column(db.Boolean, nullable=False, default=False)

    # Assignment / validation
    assigned_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    validation_status = db.Column(db.String(20), nullable=False, default="pending")
    visible = db.Column(db.Boolean, nullable=False, default=False)
    active = db.Column(db.Boolean, nullable=False, default=False)

    # Results
    result = db.Column(db.String(10))
    points = db.Column(db.Integer)

    # Timestamps
    submitted_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    assigned_user = db.relationship("User", foreign_keys=[assigned_user_id])

    __table_args__ = (
        db.UniqueConstraint("email", "game_id", name="unique_anonymous_email_game"),
        db.Index("idx_anonymous_email_period", "email", "season", "week"),
        db.Index("idx_anonymous_assigned_period", "assigned_user_id", "season", "week"),
        db.Index("idx_anonymous_game", "game_id"),
    )

    def __repr__(self):
        return f"<AnonymousPick {self.email} game_id={self.game_id} status={self.validation_status}>"

    @property
    def is_validated(self):
        return self.validation_status in VALIDATED_STATUSES

    @property
    def is_eligible(self):
        """Assigned, validated and visible - the only state that can count"""
        return (
            self.assigned_user_id is not None and self.is_validated and self.visible
        )

    def update_result(self, base_points=None, push_points=None):
        """Re-grade from the game's ATS outcome (same rule as Pick)"""
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
    def get_for_email_week(email, season, week):
        return (
            AnonymousPick.query.filter_by(email=email, season=season, week=week)
            .order_by(AnonymousPick.id)
            .all()
        )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "game_id": self.game_id,
            "season": self.season,
            "week": self.week,
            "selected_side": self.selected_side,
            "is_lock": self.is_lock,
            "assigned_user_id": self.assigned_user_id,
            "validation_status": self.validation_status,
            "visible": self.visible,
            "active": self.active,
            "result": self.result or "pending",
            "points": self.points,
        }
