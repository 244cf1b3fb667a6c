from datetime import datetime, timezone

from ats_pickem import db

PAYMENT_STATUSES = ("Paid", "Pending", "NotPaid")
PICK_SOURCES = ("authenticated", "anonymous")


class LeaderboardRowMixin:
    """Columns shared by the weekly and season summary tables.

    Rows are fully derived from picks; they are written only by the
    leaderboard store and never edited by hand.
    """

    id = db.Column(db.Integer, primary_key=True)
    season = db.Column(db.Integer, nullable=False)
    display_name = db.Column(db.String(100), nullable=False)

    picks_counted = db.Column(db.Integer, nullable=False, default=0)
    wins = db.Column(db.Integer, nullable=False, default=0)
    losses = db.Column(db.Integer, nullable=False, default=0)
    pushes = db.Column(db.Integer, nullable=False, default=0)
    lock_wins = db.Column(db.Integer, nullable=False, default=0)
    lock_losses = db.Column(db.Integer, nullable=False, default=0)
    total_points = db.Column(db.Integer, nullable=False, default=0)
    rank = db.Column(db.Integer)

    payment_status = db.Column(db.String(10), nullable=False, default="NotPaid")
    verified = db.Column(db.Boolean, nullable=False, default=False)

    pick_source_used = db.Column(db.String(20), nullable=False)
    source_overridden = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def record(self):
        """W-L-P string"""
        return f"{self.wins}-{self.losses}-{self.pushes}"

    def summary_dict(self):
        return {
            "user_id": self.user_id,
            "display_name": self.display_name,
            "season": self.season,
            "picks_counted": self.picks_counted,
            "wins": self.wins,
            "losses": self.losses,
            "pushes": self.pushes,
            "lock_wins": self.lock_wins,
            "lock_losses": self.lock_losses,
            "total_points": self.total_points,
            "rank": self.rank,
            "payment_status": self.payment_status,
            "verified": self.verified,
            "pick_source_used": self.pick_source_used,
            "source_overridden": self.source_overridden,
            "record": self.record,
        }


class WeeklyLeaderboard(LeaderboardRowMixin, db.Model):
    __tablename__ = "weekly_leaderboard"

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    week = db.Column(db.Integer, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("user_id", "season", "week", name="unique_weekly_user_period"),
        db.Index("idx_weekly_period_rank", "season", "week", "rank"),
    )

    def __repr__(self):
        return f"<WeeklyLeaderboard user={self.user_id} {self.season} W{self.week} rank={self.rank}>"

    def to_dict(self):
        data = self.summary_dict()
        data["week"] = self.week
        return data


class SeasonLeaderboard(LeaderboardRowMixin, db.Model):
    __tablename__ = "season_leaderboard"

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    __table_args__ = (
        db.UniqueConstraint("user_id", "season", name="unique_season_user_period"),
        db.Index("idx_season_period_rank", "season", "rank"),
    )

    def __repr__(self):
        return f"<SeasonLeaderboard user={self.user_id} {self.season} rank={self.rank}>"

    def to_dict(self):
        return self.summary_dict()
