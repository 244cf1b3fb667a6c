from datetime import datetime, timezone

from ats_pickem import db


class PickSetOverride(db.Model):
    """Admin choice of which pick source counts for a user.

    ``week`` NULL means the preference applies to the whole season; a
    week-specific row wins over the season-wide one.
    """

    __tablename__ = "pick_set_overrides"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    season = db.Column(db.Integer, nullable=False)
    week = db.Column(db.Integer)

    preferred_source = db.Column(db.String(20), nullable=False)  # authenticated / anonymous
    set_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    reasoning = db.Column(db.String(500))

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    set_by = db.relationship("User", foreign_keys=[set_by_user_id])

    __table_args__ = (
        db.UniqueConstraint("user_id", "season", "week", name="unique_override_scope"),
        # NULL weeks never collide in the constraint above
        db.Index(
            "unique_season_override",
            "user_id",
            "season",
            unique=True,
            postgresql_where=db.text("week IS NULL"),
            sqlite_where=db.text("week IS NULL"),
        ),
        db.Index("idx_override_user_season", "user_id", "season"),
    )

    def __repr__(self):
        scope = f"W{self.week}" if self.week is not None else "season"
        return f"<PickSetOverride user={self.user_id} {self.season} {scope} -> {self.preferred_source}>"

    @staticmethod
    def get_exact(user_id, season, week):
        query = PickSetOverride.query.filter_by(user_id=user_id, season=season)
        if week is None:
            query = query.filter(PickSetOverride.week.is_(None))
        else:
            query = query.filter_by(week=week)
        return query.first()

    @staticmethod
    def get_effective(user_id, season, week):
        """Week-specific override if present, else the season-wide one"""
        return PickSetOverride.get_exact(user_id, season, week) or PickSetOverride.get_exact(
            user_id, season, None
        )

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "season": self.season,
            "week": self.week,
            "preferred_source": self.preferred_source,
            "set_by_user_id": self.set_by_user_id,
            "reasoning": self.reasoning,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
