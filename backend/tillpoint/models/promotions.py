from __future__ import annotations

from ..extensions import db
from tillpoint.time_utils import to_utc_z, utcnow


PROMO_PERCENTAGE = "PERCENTAGE"
PROMO_FIXED_AMOUNT = "FIXED_AMOUNT"
PROMO_BUY_X_GET_Y = "BUY_X_GET_Y"
PROMO_TYPES = (PROMO_PERCENTAGE, PROMO_FIXED_AMOUNT, PROMO_BUY_X_GET_Y)

SCOPE_PRODUCT = "PRODUCT"
SCOPE_CATEGORY = "CATEGORY"
PROMO_SCOPES = (SCOPE_PRODUCT, SCOPE_CATEGORY)


promotion_products = db.Table(
    "promotion_products",
    db.Column("promotion_id", db.Integer, db.ForeignKey("promotions.id"), primary_key=True),
    db.Column("product_id", db.Integer, db.ForeignKey("products.id"), primary_key=True),
)

promotion_categories = db.Table(
    "promotion_categories",
    db.Column("promotion_id", db.Integer, db.ForeignKey("promotions.id"), primary_key=True),
    db.Column("category_id", db.Integer, db.ForeignKey("categories.id"), primary_key=True),
)

promotion_branches = db.Table(
    "promotion_branches",
    db.Column("promotion_id", db.Integer, db.ForeignKey("promotions.id"), primary_key=True),
    db.Column("branch_id", db.Integer, db.ForeignKey("branches.id"), primary_key=True),
)


class Promotion(db.Model):
    """
    Promotions and discounts.

    Scoped to specific products or whole categories, optionally restricted to
    a set of branches (no branches = all branches).

    VALUE COLUMNS (exactly one set is populated, by promo_type):
    - PERCENTAGE: discount_bps (basis points, 2500 = 25%)
    - FIXED_AMOUNT: discount_amount_cents (per unit)
    - BUY_X_GET_Y: buy_qty + get_qty
    """
    __tablename__ = "promotions"
    __table_args__ = (
        db.Index("ix_promotions_active_priority", "is_active", "priority"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    promo_type = db.Column(db.String(32), nullable=False)  # PERCENTAGE, FIXED_AMOUNT, BUY_X_GET_Y
    scope = db.Column(db.String(16), nullable=False, default=SCOPE_PRODUCT)  # PRODUCT, CATEGORY

    priority = db.Column(db.Integer, nullable=False, default=0)

    discount_bps = db.Column(db.Integer, nullable=True)
    discount_amount_cents = db.Column(db.Integer, nullable=True)
    buy_qty = db.Column(db.Integer, nullable=True)
    get_qty = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    # Python-side default keeps sub-second precision for the recency tie-break
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    products = db.relationship("Product", secondary=promotion_products, lazy="selectin")
    categories = db.relationship("Category", secondary=promotion_categories, lazy="selectin")
    branches = db.relationship("Branch", secondary=promotion_branches, lazy="selectin")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Promotion id={self.id} name={self.name!r} type={self.promo_type} priority={self.priority}>"

    def is_available_in_branch(self, branch_id: int | None) -> bool:
        if branch_id is None or not self.branches:
            return True
        return any(b.id == branch_id for b in self.branches)

    def to_snapshot(self) -> dict:
        """Frozen copy of the pricing-relevant fields, stored on sale lines."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.promo_type,
            "scope": self.scope,
            "priority": self.priority,
            "discount_bps": self.discount_bps,
            "discount_amount_cents": self.discount_amount_cents,
            "buy_qty": self.buy_qty,
            "get_qty": self.get_qty,
            "applied_at": to_utc_z(utcnow()),
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "promo_type": self.promo_type,
            "scope": self.scope,
            "priority": self.priority,
            "discount_bps": self.discount_bps,
            "discount_amount_cents": self.discount_amount_cents,
            "buy_qty": self.buy_qty,
            "get_qty": self.get_qty,
            "is_active": self.is_active,
            "product_ids": [p.id for p in self.products],
            "category_ids": [c.id for c in self.categories],
            "branch_ids": [b.id for b in self.branches],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
