from datetime import datetime, timezone

from ats_pickem import db


class Season(db.Model):
    __tablename__ = "seasons"

    id = db.Column(db.Integer, primary_key=True)
    year = db.Column(db.Integer, nullable=False, unique=True, index=True)
    name = db.Column(db.String(50), nullable=False)  # e.g., "2025 Season"

    regular_season_weeks = db.Column(db.Integer, default=14)

    # Status
    is_active = db.Column(db.Boolean, default=False)
    current_week = db.Column(db.Integer, default=1)

    # Best Finish window (inclusive); unset means no Best Finish board
    best_finish_start_week = db.Column(db.Integer)
    best_finish_end_week = db.Column(db.Integer)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (db.Index("idx_season_active", "is_active"),)

    def __repr__(self):
        return f"<Season {self.year}>"

    @staticmethod
    def get_current_season():
        """Get the currently active season"""
        return Season.query.filter_by(is_active=True).first()

    @staticmethod
    def get_by_year(year):
        return Season.query.filter_by(year=year).first()

    @staticmethod
    def create_season(year, regular_season_weeks=14, best_finish_weeks=None):
        """Create a new season"""
        season = Season(
            year=year,
            name=f"{year} Season",
            regular_season_weeks=regular_season_weeks,
        )
        if best_finish_weeks:
            season.set_best_finish_weeks(*best_finish_weeks)
        db.session.add(season)
        return season

    def activate(self):
        """Activate this season (deactivates all others)"""
        Season.query.update({"is_active": False})
        self.is_active = True

    def set_best_finish_weeks(self, start_week, end_week):
        if start_week > end_week:
            raise ValueError("Best Finish start week must not be after end week")
        self.best_finish_start_week = start_week
        self.best_finish_end_week = end_week

    @property
    def best_finish_weeks(self):
        if self.best_finish_start_week is None or self.best_finish_end_week is None:
            return []
        return list(range(self.best_finish_start_week, self.best_finish_end_week + 1))

    def to_dict(self):
        return {
            "id": self.id,
            "year": self.year,
            "name": self.name,
            "is_active": self.is_active,
            "current_week": self.current_week,
            "regular_season_weeks": self.regular_season_weeks,
            "best_finish_weeks": self.best_finish_weeks,
        }
