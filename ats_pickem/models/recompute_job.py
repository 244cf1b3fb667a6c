from datetime import datetime, timezone

from ats_pickem import db

JOB_TYPES = ("grade_game", "user_week", "rebuild_week")

# Drain order: grading must land before aggregation reads the picks
JOB_PRIORITY = {"grade_game": 0, "rebuild_week": 1, "user_week": 2}


class RecomputeJob(db.Model):
    """One pending unit of derived work, keyed by its natural identity.

    Enqueuing the same unit twice collapses into one row and bumps
    ``generation``; the worker only deletes the row if the generation it
    processed is still current.
    """

    __tablename__ = "recompute_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_key = db.Column(db.String(100), nullable=False, unique=True)
    job_type = db.Column(db.String(20), nullable=False)

    game_id = db.Column(db.Integer)
    user_id = db.Column(db.Integer)
    season = db.Column(db.Integer)
    week = db.Column(db.Integer)

    generation = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(db.String(10), nullable=False, default="pending")  # pending / failed
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Ids are never reused, so a drain can track which jobs it already attempted
    __table_args__ = (
        db.Index("idx_recompute_status_type", "status", "job_type"),
        {"sqlite_autoincrement": True},
    )

    def __repr__(self):
        return f"<RecomputeJob {self.job_key} gen={self.generation} {self.status}>"

    @staticmethod
    def key_for(job_type, game_id=None, user_id=None, season=None, week=None):
        if job_type == "grade_game":
            return f"grade_game:{game_id}"
        if job_type == "user_week":
            return f"user_week:{user_id}:{season}:{week}"
        if job_type == "rebuild_week":
            return f"rebuild_week:{season}:{week}"
        raise ValueError(f"Unknown job type: {job_type}")

    @property
    def context(self):
        """Ids needed to replay this unit"""
        return {
            key: value
            for key, value in (
                ("job", self.job_key),
                ("game_id", self.game_id),
                ("user_id", self.user_id),
                ("season", self.season),
                ("week", self.week),
            )
            if value is not None
        }

    def to_dict(self):
        return {
            "id": self.id,
            "job_key": self.job_key,
            "job_type": self.job_type,
            "generation": self.generation,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
