from __future__ import annotations

from ..extensions import db
from tillpoint.time_utils import to_utc_z


SALE_STATUS_PENDING = "PENDING"
SALE_STATUS_COMPLETED = "COMPLETED"
SALE_STATUS_PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"
SALE_STATUS_REFUNDED = "REFUNDED"
SALE_STATUS_CANCELLED = "CANCELLED"

PAYMENT_METHODS = ("CASH", "CARD", "MOBILE")


def derive_sale_status(refunded_cents: int, total_gross_cents: int) -> str:
    """Sale status as a pure function of cumulative refunds vs the gross total."""
    if refunded_cents <= 0:
        return SALE_STATUS_COMPLETED
    if refunded_cents >= total_gross_cents:
        return SALE_STATUS_REFUNDED
    return SALE_STATUS_PARTIALLY_REFUNDED


class Sale(db.Model):
    """
    Completed checkout (receipt).

    WHY: A sale, its lines, payments, stock movements and loyalty entries are
    written in one DB transaction; nothing partial is ever visible.

    INVARIANTS:
    - total_gross_cents = total_net_cents + total_tax_cents
    - refunded_cents <= total_gross_cents
    - once completed, status only changes through apply_refund_total()
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("receipt_number", name="uq_sales_receipt_number"),
        db.Index("ix_sales_branch_status_created", "branch_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    # Human-readable receipt number (e.g., "RCPT-20260101-093015-4F1A2B")
    receipt_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(24), nullable=False, default=SALE_STATUS_PENDING, index=True)

    # All amounts in cents
    total_net_cents = db.Column(db.Integer, nullable=False, default=0)
    total_tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_gross_cents = db.Column(db.Integer, nullable=False, default=0)
    refunded_cents = db.Column(db.Integer, nullable=False, default=0)

    loyalty_points_earned = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_used = db.Column(db.Integer, nullable=False, default=0)

    # Opaque discount/tax snapshot from the client ("metadata" is reserved on declarative models)
    sale_metadata = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    branch = db.relationship("Branch", backref=db.backref("sales", lazy=True))
    cashier = db.relationship("User")
    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def remaining_refundable_cents(self) -> int:
        return self.total_gross_cents - self.refunded_cents

    def apply_refund_total(self, refunded_cents: int) -> None:
        """
        Set the cumulative refunded amount and re-derive status from it.

        PENDING and CANCELLED are not refund states; they are kept as is.
        """
        self.refunded_cents = refunded_cents
        if self.status in (SALE_STATUS_PENDING, SALE_STATUS_CANCELLED):
            return
        self.status = derive_sale_status(refunded_cents, self.total_gross_cents)

    def to_dict(self, include_children: bool = False) -> dict:
        data = {
            "id": self.id,
            "branch_id": self.branch_id,
            "cashier_id": self.cashier_id,
            "customer_id": self.customer_id,
            "receipt_number": self.receipt_number,
            "status": self.status,
            "total_net_cents": self.total_net_cents,
            "total_tax_cents": self.total_tax_cents,
            "total_gross_cents": self.total_gross_cents,
            "refunded_cents": self.refunded_cents,
            "loyalty_points_earned": self.loyalty_points_earned,
            "loyalty_points_used": self.loyalty_points_used,
            "metadata": self.sale_metadata or {},
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "version_id": self.version_id,
        }
        if include_children:
            data["lines"] = [line.to_dict() for line in self.lines]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class SaleLine(db.Model):
    """Individual line items on a sale. Immutable once written."""
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_lines_quantity_positive"),
        db.CheckConstraint("discount_cents >= 0", name="ck_sale_lines_discount_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    promotion_id = db.Column(db.Integer, db.ForeignKey("promotions.id"), nullable=True)
    promotion_snapshot = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("lines", lazy=True, order_by="SaleLine.id"))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "line_total_cents": self.line_total_cents,
            "promotion_id": self.promotion_id,
            "promotion_snapshot": self.promotion_snapshot,
            "created_at": to_utc_z(self.created_at),
        }


class Payment(db.Model):
    """
    Tender recorded against a sale.

    METHODS: CASH, CARD, MOBILE. A sale may carry several payments (split tender).
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    method = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    sale = db.relationship("Sale", backref=db.backref("payments", lazy=True, order_by="Payment.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "created_at": to_utc_z(self.created_at),
        }
