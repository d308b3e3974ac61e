from __future__ import annotations

from ..extensions import db
from tillpoint.time_utils import to_utc_z, utcnow


RETURN_REASONS = (
    "defective",
    "damaged",
    "wrong_item",
    "not_as_described",
    "customer_changed_mind",
    "expired",
    "quality_issue",
    "other",
)


class Return(db.Model):
    """
    Refund issued against a completed sale.

    The owning sale's refunded_cents/status are always re-derived from the
    full set of its returns, never adjusted incrementally.
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_returns_amount_positive"),
        db.Index("ix_returns_sale_created", "sale_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(32), nullable=True, index=True)
    processed_by = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    sale = db.relationship("Sale", backref=db.backref("returns", lazy=True, order_by="Return.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "processed_by": self.processed_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
