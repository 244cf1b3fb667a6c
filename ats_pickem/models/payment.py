from datetime import datetime, timezone

from ats_pickem import db


class PaymentRecord(db.Model):
    """Latest payment-ledger entry for a user and season (raw, unmapped)"""

    __tablename__ = "payment_records"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    season = db.Column(db.Integer, nullable=False)

    raw_status = db.Column(db.String(50))
    ledger_matched = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("user_id", "season", name="unique_payment_user_season"),
    )

    def __repr__(self):
        return f"<PaymentRecord user={self.user_id} {self.season} {self.raw_status}>"

    @staticmethod
    def get_for(user_id, season):
        return PaymentRecord.query.filter_by(user_id=user_id, season=season).first()
