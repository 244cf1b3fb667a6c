from datetime import datetime, timezone

from ats_pickem import db


class AdminAction(db.Model):
    __tablename__ = "admin_actions"

    id = db.Column(db.Integer, primary_key=True)

    # Action details
    admin_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    target_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=True
    )  # User being acted upon

    # Action type and details
    action_type = db.Column(
        db.String(50), nullable=False
    )  # 'pick_visibility', 'pick_set_visibility', 'set_override', 'rebuild', etc.
    action_description = db.Column(db.String(500), nullable=False)

    # Related object IDs for context
    pick_id = db.Column(db.Integer, nullable=True)
    game_id = db.Column(db.Integer, nullable=True)
    season = db.Column(db.Integer, nullable=True)
    week = db.Column(db.Integer, nullable=True)

    # Additional context data (JSON)
    action_metadata = db.Column(db.JSON, nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    admin_user = db.relationship(
        "User", foreign_keys=[admin_user_id], backref="admin_actions_performed"
    )
    target_user = db.relationship(
        "User", foreign_keys=[target_user_id], backref="admin_actions_received"
    )

    # Indexes
    __table_args__ = (
        db.Index("idx_admin_action_admin", "admin_user_id"),
        db.Index("idx_admin_action_target", "target_user_id"),
        db.Index("idx_admin_action_type", "action_type"),
        db.Index("idx_admin_action_created", "created_at"),
    )

    def __repr__(self):
        return f"<AdminAction {self.action_type} by {self.admin_user_id}>"

    @staticmethod
    def log_action(
        admin_user_id,
        action_type,
        description,
        target_user_id=None,
        pick_id=None,
        game_id=None,
        season=None,
        week=None,
        action_metadata=None,
    ):
        """Log an admin action"""
        action = AdminAction(
            admin_user_id=admin_user_id,
            target_user_id=target_user_id,
            action_type=action_type,
            action_description=description,
            pick_id=pick_id,
            game_id=game_id,
            season=season,
            week=week,
            action_metadata=action_metadata or {},
        )

        db.session.add(action)
        return action

    @staticmethod
    def log_pick_visibility(admin_user_id, pick, visible, reason=None):
        """Convenience method for logging a single pick visibility toggle"""
        description = (
            f"{'Showed' if visible else 'Hid'} pick {pick.id} for user {pick.user_id} "
            f"(Week {pick.week}, {pick.season})"
        )

        return AdminAction.log_action(
            admin_user_id=admin_user_id,
            target_user_id=pick.user_id,
            action_type="pick_visibility",
            description=description,
            pick_id=pick.id,
            game_id=pick.game_id,
            season=pick.season,
            week=pick.week,
            action_metadata={"visible": visible, "reason": reason},
        )

    @staticmethod
    def log_override(admin_user_id, override, previous_source=None):
        """Convenience method for logging a pick-set precedence override"""
        scope = f"Week {override.week}" if override.week is not None else "whole season"
        description = (
            f"Set {override.preferred_source} picks as counted for user "
            f"{override.user_id} ({scope}, {override.season})"
        )

        return AdminAction.log_action(
            admin_user_id=admin_user_id,
            target_user_id=override.user_id,
            action_type="set_override",
            description=description,
            season=override.season,
            week=override.week,
            action_metadata={
                "preferred_source": override.preferred_source,
                "previous_source": previous_source,
                "reasoning": override.reasoning,
            },
        )

    @staticmethod
    def get_for_user(user_id, limit=50):
        return (
            AdminAction.query.filter_by(target_user_id=user_id)
            .order_by(AdminAction.created_at.desc(), AdminAction.id.desc())
            .limit(limit)
            .all()
        )

    def to_dict(self):
        """Convert action to dictionary"""
        return {
            "id": self.id,
            "admin_user_id": self.admin_user_id,
            "target_user_id": self.target_user_id,
            "action_type": self.action_type,
            "action_description": self.action_description,
            "season": self.season,
            "week": self.week,
            "action_metadata": self.action_metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
