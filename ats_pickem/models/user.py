from datetime import datetime, timezone

from ats_pickem import db


class User(db.Model):
    """Player record mirrored from the identity directory.

    Only what the leaderboards need is kept here: an id, a name to show,
    and the email used to match anonymous picks.
    """

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, index=True)
    email = db.Column(db.String(120), unique=True, index=True)
    display_name = db.Column(db.String(100))

    # Site-wide admin privileges
    is_admin = db.Column(db.Boolean, default=False)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    picks = db.relationship(
        "Pick", backref="user", lazy="dynamic", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<User {self.username or self.id}>"

    def set_display_name(self, display_name):
        """Set display name with whitespace trimmed"""
        self.display_name = display_name.strip() if display_name else None

    @property
    def full_name(self):
        """Return display name, username, or a synthetic name"""
        return synthetic_display_name(self.id, self.display_name or self.username)

    @staticmethod
    def get_display_names(user_ids):
        """Map user ids to leaderboard names, including ids with no user row"""
        user_ids = set(user_ids)
        names = {}
        if user_ids:
            for user in User.query.filter(User.id.in_(user_ids)).all():
                names[user.id] = user.full_name
        for user_id in user_ids - set(names):
            names[user_id] = synthetic_display_name(user_id)
        return names

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "display_name": self.full_name,
            "is_admin": self.is_admin,
        }


def synthetic_display_name(user_id, name=None):
    """Leaderboard name, never blank"""
    if name and name.strip():
        return name.strip()
    return f"Player #{user_id}"
