"""
Promotion Catalog & Resolver Service

WHY: Pricing needs to know which promotions can touch a product in a given
branch, in a stable precedence order. Catalog writes live here too so the
"exactly the fields required by type" rule is enforced at the only place
promotions are created or changed.

APPLICABILITY (resolve_promotions):
- promotion is active
- promotion has no branches, or includes the target branch
- scope=PRODUCT and the product is assigned, or
  scope=CATEGORY and the product's category is assigned

ORDER: priority desc, created_at desc (newest wins ties), id desc.
"""

from __future__ import annotations

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from ..extensions import get_session
from tillpoint.time_utils import utcnow
from ..models import Branch, Category, Product, Promotion
from ..models.promotions import (
    PROMO_TYPES,
    PROMO_SCOPES,
    PROMO_PERCENTAGE,
    PROMO_FIXED_AMOUNT,
    PROMO_BUY_X_GET_Y,
    SCOPE_PRODUCT,
    SCOPE_CATEGORY,
)
from ..validation import (
    BadRequestError,
    NotFoundError,
    coerce_int,
    coerce_positive_int,
    require_fields,
)
from .concurrency import run_with_retry


# Value columns each promotion type must populate (and the others must leave empty)
TYPE_VALUE_FIELDS = {
    PROMO_PERCENTAGE: ("discount_bps",),
    PROMO_FIXED_AMOUNT: ("discount_amount_cents",),
    PROMO_BUY_X_GET_Y: ("buy_qty", "get_qty"),
}
VALUE_FIELDS = ("discount_bps", "discount_amount_cents", "buy_qty", "get_qty")

UPDATABLE_FIELDS = ("name", "description", "promo_type", "scope", "priority", "is_active") + VALUE_FIELDS


# =============================================================================
# VALIDATION
# =============================================================================

def validate_promotion_config(values: dict) -> dict:
    """
    Normalize and validate a full promotion definition.

    Returns a cleaned dict. Raises BadRequestError when the type/scope are
    unknown or the populated value fields do not match the type exactly.
    """
    promo_type = str(values.get("promo_type") or "").upper()
    if promo_type not in PROMO_TYPES:
        raise BadRequestError(f"promo_type must be one of: {', '.join(PROMO_TYPES)}")

    scope = str(values.get("scope") or SCOPE_PRODUCT).upper()
    if scope not in PROMO_SCOPES:
        raise BadRequestError(f"scope must be one of: {', '.join(PROMO_SCOPES)}")

    name = (values.get("name") or "").strip()
    if len(name) < 2:
        raise BadRequestError("name must be at least 2 characters")

    cleaned = {
        "name": name,
        "description": values.get("description"),
        "promo_type": promo_type,
        "scope": scope,
        "priority": coerce_int(values.get("priority") or 0, "priority"),
        "is_active": bool(values.get("is_active", True)),
    }

    required = TYPE_VALUE_FIELDS[promo_type]
    for key in VALUE_FIELDS:
        raw = values.get(key)
        if key in required:
            cleaned[key] = coerce_positive_int(raw, key)
        elif raw is not None:
            raise BadRequestError(f"{key} is not allowed for {promo_type} promotions")
        else:
            cleaned[key] = None

    if cleaned.get("discount_bps") is not None and cleaned["discount_bps"] > 10_000:
        raise BadRequestError("discount_bps cannot exceed 10000 (100%)")

    return cleaned


def _ensure_product_scope_has_products(promo: Promotion) -> None:
    if promo.is_active and promo.scope == SCOPE_PRODUCT and not promo.products:
        raise BadRequestError("An active PRODUCT-scoped promotion needs at least one product")


def _load_all(session: Session, model, ids, label: str) -> list:
    ids = [coerce_int(i, f"{label}_id") for i in (ids or [])]
    if not ids:
        return []
    rows = session.query(model).filter(model.id.in_(ids)).all()
    found = {row.id for row in rows}
    missing = [i for i in ids if i not in found]
    if missing:
        raise NotFoundError(
            f"{label.capitalize()}s not found: {', '.join(str(i) for i in missing)}",
            details={"missing_ids": missing},
        )
    return rows


# =============================================================================
# CATALOG
# =============================================================================

def get_promotion(promotion_id: int, *, session: Session | None = None) -> Promotion:
    session = get_session(session)
    promo = session.get(Promotion, promotion_id)
    if promo is None:
        raise NotFoundError("Promotion not found")
    return promo


def list_promotions(
    *,
    active_only: bool = False,
    branch_id: int | None = None,
    promo_type: str | None = None,
    session: Session | None = None,
) -> list[Promotion]:
    session = get_session(session)
    q = session.query(Promotion)
    if active_only:
        q = q.filter(Promotion.is_active.is_(True))
    if branch_id:
        q = q.filter(or_(~Promotion.branches.any(), Promotion.branches.any(Branch.id == branch_id)))
    if promo_type:
        q = q.filter(Promotion.promo_type == promo_type.upper())
    return q.order_by(Promotion.priority.desc(), Promotion.created_at.desc(), Promotion.id.desc()).all()


def create_promotion(data: dict, *, session: Session | None = None) -> Promotion:
    """
    Create a promotion with its product/category/branch assignments.

    Request shape mirrors the model columns plus optional product_ids,
    category_ids and branch_ids lists.
    """
    session = get_session(session)
    data = require_fields(data, "name", "promo_type")

    def _op():
        cleaned = validate_promotion_config(data)
        promo = Promotion(**cleaned)
        promo.products = _load_all(session, Product, data.get("product_ids"), "product")
        promo.categories = _load_all(session, Category, data.get("category_ids"), "category")
        promo.branches = _load_all(session, Branch, data.get("branch_ids"), "branch")
        _ensure_product_scope_has_products(promo)

        session.add(promo)
        session.commit()
        return promo

    return run_with_retry(_op, session=session)


def update_promotion(promotion_id: int, data: dict, *, session: Session | None = None) -> Promotion:
    """Patch a promotion; the merged definition is re-validated as a whole."""
    session = get_session(session)
    if not isinstance(data, dict):
        raise BadRequestError("Invalid JSON payload")

    def _op():
        promo = get_promotion(promotion_id, session=session)
        merged = {key: getattr(promo, key) for key in UPDATABLE_FIELDS}
        for key in UPDATABLE_FIELDS:
            if key in data:
                merged[key] = data[key]

        # Switching type drops the stored values the new type does not use
        new_type = str(merged.get("promo_type") or "").upper()
        if new_type != promo.promo_type and new_type in TYPE_VALUE_FIELDS:
            for key in VALUE_FIELDS:
                if key not in TYPE_VALUE_FIELDS[new_type] and key not in data:
                    merged[key] = None

        cleaned = validate_promotion_config(merged)
        for key, value in cleaned.items():
            setattr(promo, key, value)
        _ensure_product_scope_has_products(promo)

        session.commit()
        return promo

    return run_with_retry(_op, session=session)


def set_promotion_targets(
    promotion_id: int,
    target: str,
    ids: list,
    *,
    session: Session | None = None,
) -> Promotion:
    """Replace the product, category or branch assignments of a promotion."""
    session = get_session(session)
    models = {"products": (Product, "product"), "categories": (Category, "category"), "branches": (Branch, "branch")}
    if target not in models:
        raise BadRequestError(f"target must be one of: {', '.join(models)}")
    if not isinstance(ids, list):
        raise BadRequestError(f"{target} must be a list of ids")

    model, label = models[target]

    def _op():
        promo = get_promotion(promotion_id, session=session)
        setattr(promo, target, _load_all(session, model, ids, label))
        _ensure_product_scope_has_products(promo)
        # Association changes do not touch the row itself; bump the version explicitly
        promo.updated_at = utcnow()
        session.commit()
        return promo

    return run_with_retry(_op, session=session)


# =============================================================================
# RESOLVER
# =============================================================================

def resolve_promotions(
    product_id: int,
    branch_id: int | None = None,
    *,
    session: Session | None = None,
) -> list[Promotion]:
    """
    Return every active promotion applicable to a product in a branch.

    Args:
        product_id: Product being priced (must exist and be active)
        branch_id: Selling branch; defaults to the product's own branch

    Raises:
        NotFoundError: product does not exist
        BadRequestError: product is inactive
    """
    session = get_session(session)
    product = session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    if not product.is_active:
        raise BadRequestError(f"Product {product.name} is not active")

    target_branch_id = branch_id or product.branch_id

    scope_filters = [
        and_(Promotion.scope == SCOPE_PRODUCT, Promotion.products.any(Product.id == product.id)),
    ]
    if product.category_id is not None:
        scope_filters.append(
            and_(Promotion.scope == SCOPE_CATEGORY, Promotion.categories.any(Category.id == product.category_id))
        )

    return (
        session.query(Promotion)
        .filter(
            Promotion.is_active.is_(True),
            or_(~Promotion.branches.any(), Promotion.branches.any(Branch.id == target_branch_id)),
            or_(*scope_filters),
        )
        .order_by(Promotion.priority.desc(), Promotion.created_at.desc(), Promotion.id.desc())
        .all()
    )
