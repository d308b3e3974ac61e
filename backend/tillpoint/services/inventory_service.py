# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

# backend/tillpoint/services/inventory_service.py

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.orm import Session

from ..extensions import get_session
from ..models import Branch, Product, StockMovement
from ..validation import BadRequestError, NotFoundError, coerce_int, coerce_positive_int, normalize_choice
from .concurrency import lock_for_update, run_with_retry
"""
Stock Ledger Invariants (authoritative)

Stock model:
- StockMovement rows are the ledger; Product.stock is a cached aggregate.
- SUM(change) over a product's movements equals Product.stock.
- Every write touches both, inside one DB transaction.

Business invariants:
- Product.stock may never go negative. Decrements use a conditional UPDATE
  (stock >= qty) so two concurrent writers can not both pass a stale check.
- Corrections (update/delete of a movement) shift Product.stock by the same
  delta and are subject to the same non-negative rule.
"""


MOVEMENT_REASONS = (
    "sale",
    "purchase",
    "adjustment",
    "transfer",
    "spoilage",
    "return",
    "damaged",
    "reconciliation",
    "initial_stock",
)


def _get_product(session: Session, product_id: int, *, lock: bool = False) -> Product:
    query = session.query(Product).filter_by(id=product_id)
    if lock:
        # Re-read under the lock; identity-map values may be stale
        query = lock_for_update(query).populate_existing()
    product = query.first()
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def shift_stock(session: Session, product: Product, delta: int) -> None:
    """
    Apply delta to Product.stock with a guarded UPDATE.

    Does not write a movement; callers pair it with one (or with the edit of
    an existing one). Raises BadRequestError when the result would be negative.
    """
    if delta == 0:
        return

    stmt = update(Product).where(Product.id == product.id)
    if delta < 0:
        stmt = stmt.where(Product.stock >= -delta)
    stmt = stmt.values(
        stock=Product.stock + delta,
        version_id=Product.version_id + 1,
    ).execution_options(synchronize_session=False)

    result = session.execute(stmt)
    if result.rowcount != 1:
        session.refresh(product)
        raise BadRequestError(
            f"Insufficient stock for {product.name}. Available: {product.stock}, Required: {-delta}",
            details={
                "product_id": product.id,
                "current_stock": product.stock,
                "requested_quantity": -delta,
            },
        )

    # Row changed underneath the identity map; reload on next access
    session.expire(product, ["stock", "version_id", "updated_at"])


def apply_stock_change(
    session: Session,
    product: Product,
    *,
    branch_id: int,
    change: int,
    reason: str,
    note: str | None = None,
    sale_id: int | None = None,
) -> StockMovement:
    """
    Move stock and append the matching ledger row in the caller's transaction.

    WHY: Product.stock and StockMovement are two representations of the same
    fact. Writing them through one function means neither can exist without
    the other.
    """
    if change == 0:
        raise BadRequestError("change must be non-zero")

    shift_stock(session, product, change)

    movement = StockMovement(
        product_id=product.id,
        branch_id=branch_id,
        change=change,
        reason=reason,
        note=note,
        sale_id=sale_id,
    )
    session.add(movement)
    session.flush()
    return movement


# =============================================================================
# ADMINISTRATIVE MOVEMENTS
# =============================================================================

def record_stock_movement(
    product_id: int,
    branch_id: int,
    change,
    reason: str,
    *,
    note: str | None = None,
    sale_id: int | None = None,
    session: Session | None = None,
) -> StockMovement:
    """
    Record a manual stock movement (purchase, spoilage, initial stock, ...).

    Raises:
        BadRequestError: invalid reason, zero change, or stock would go negative
        NotFoundError: product or branch missing
    """
    session = get_session(session)
    reason = normalize_choice(reason, MOVEMENT_REASONS, "reason")
    change = coerce_int(change, "change")
    if change == 0:
        raise BadRequestError("change must be non-zero")

    def _op():
        if session.get(Branch, branch_id) is None:
            raise NotFoundError("Branch not found", details={"branch_id": branch_id})
        product = _get_product(session, product_id, lock=True)

        movement = apply_stock_change(
            session,
            product,
            branch_id=branch_id,
            change=change,
            reason=reason,
            note=note,
            sale_id=sale_id,
        )
        session.commit()
        return movement

    return run_with_retry(_op, session=session)


def update_stock_movement(
    movement_id: int,
    *,
    change=None,
    reason: str | None = None,
    session: Session | None = None,
) -> StockMovement:
    """
    Correct an existing movement. Product stock shifts by (new - old) change.
    """
    session = get_session(session)
    if reason is not None:
        reason = normalize_choice(reason, MOVEMENT_REASONS, "reason")
    if change is not None:
        change = coerce_int(change, "change")
        if change == 0:
            raise BadRequestError("change must be non-zero")

    def _op():
        movement = session.get(StockMovement, movement_id)
        if movement is None:
            raise NotFoundError("Stock movement not found")
        product = _get_product(session, movement.product_id, lock=True)

        if change is not None and change != movement.change:
            shift_stock(session, product, change - movement.change)
            movement.change = change
        if reason is not None:
            movement.reason = reason

        session.commit()
        current_app.logger.warning(
            "Stock movement %s corrected (product %s, change %s, reason %s)",
            movement.id, movement.product_id, movement.change, movement.reason,
        )
        return movement

    return run_with_retry(_op, session=session)


def delete_stock_movement(movement_id: int, *, session: Session | None = None) -> None:
    """Delete a movement and reverse its effect on product stock."""
    session = get_session(session)

    def _op():
        movement = session.get(StockMovement, movement_id)
        if movement is None:
            raise NotFoundError("Stock movement not found")
        product = _get_product(session, movement.product_id, lock=True)

        product_id, reversed_change = movement.product_id, movement.change
        shift_stock(session, product, -reversed_change)
        session.delete(movement)
        session.commit()
        current_app.logger.warning(
            "Stock movement %s deleted (product %s, reversed change %s)",
            movement_id, product_id, reversed_change,
        )

    run_with_retry(_op, session=session)


# =============================================================================
# PHYSICAL COUNTS AND TRANSFERS
# =============================================================================

def reconcile_stock(
    product_id: int,
    branch_id: int,
    actual_stock,
    *,
    note: str | None = None,
    session: Session | None = None,
) -> dict:
    """
    Set a product's stock to a physically counted value.

    The difference is written as one "reconciliation" movement, so the ledger
    explains the correction. A count that matches writes nothing.

    Returns:
        {"product_id", "previous_stock", "actual_stock", "adjustment", "movement"}
    """
    session = get_session(session)
    if actual_stock is None:
        raise BadRequestError("actual_stock is required")
    actual = coerce_int(actual_stock, "actual_stock")
    if actual < 0:
        raise BadRequestError("actual_stock must be >= 0")

    def _op():
        if session.get(Branch, branch_id) is None:
            raise NotFoundError("Branch not found", details={"branch_id": branch_id})
        product = _get_product(session, product_id, lock=True)

        previous = product.stock
        adjustment = actual - previous
        movement = None
        if adjustment != 0:
            movement = apply_stock_change(
                session,
                product,
                branch_id=branch_id,
                change=adjustment,
                reason="reconciliation",
                note=note,
            )
        session.commit()

        if movement is not None:
            current_app.logger.info(
                "Stock reconciled for product %s: %s -> %s (%+d)",
                product_id, previous, actual, adjustment,
            )
        return {
            "product_id": product_id,
            "previous_stock": previous,
            "actual_stock": actual,
            "adjustment": adjustment,
            "movement": movement.to_dict() if movement is not None else None,
        }

    return run_with_retry(_op, session=session)


def transfer_stock(
    product_id: int,
    to_branch_id: int,
    quantity,
    *,
    note: str | None = None,
    session: Session | None = None,
) -> dict:
    """
    Move stock of a product to another branch in one transaction.

    The destination product is the one with the same SKU in the target
    branch; it is created with zero stock when the branch does not carry it
    yet. Both rows are locked in id order, then a -quantity and a +quantity
    "transfer" movement are written.

    Raises:
        BadRequestError: bad quantity, same branch, or insufficient source stock
        NotFoundError: product or destination branch missing
    """
    session = get_session(session)
    quantity = coerce_positive_int(quantity, "quantity")

    def _op():
        source = session.get(Product, product_id)
        if source is None:
            raise NotFoundError("Product not found", details={"product_id": product_id})
        if source.branch_id == to_branch_id:
            raise BadRequestError("Cannot transfer to the same branch")
        if session.get(Branch, to_branch_id) is None:
            raise NotFoundError("Destination branch not found", details={"branch_id": to_branch_id})

        destination = session.query(Product).filter_by(branch_id=to_branch_id, sku=source.sku).first()
        if destination is None:
            destination = Product(
                branch_id=to_branch_id,
                category_id=source.category_id,
                sku=source.sku,
                name=source.name,
                price_cents=source.price_cents,
                is_active=source.is_active,
                stock=0,
            )
            session.add(destination)
            session.flush()

        locked = {
            pid: _get_product(session, pid, lock=True)
            for pid in sorted((source.id, destination.id))
        }
        source, destination = locked[source.id], locked[destination.id]
        from_branch_id = source.branch_id

        outbound = apply_stock_change(
            session, source, branch_id=from_branch_id, change=-quantity, reason="transfer", note=note
        )
        inbound = apply_stock_change(
            session, destination, branch_id=to_branch_id, change=quantity, reason="transfer", note=note
        )
        session.commit()

        current_app.logger.info(
            "Transferred %s x %s from branch %s to branch %s",
            quantity, source.sku, from_branch_id, to_branch_id,
        )
        return {
            "quantity": quantity,
            "from_branch_id": from_branch_id,
            "to_branch_id": to_branch_id,
            "source_product_id": source.id,
            "destination_product_id": destination.id,
            "outbound": outbound.to_dict(),
            "inbound": inbound.to_dict(),
        }

    return run_with_retry(_op, session=session)


# =============================================================================
# RECONCILIATION
# =============================================================================

def get_movement_total(product_id: int, *, session: Session | None = None) -> int:
    session = get_session(session)
    q = session.query(func.coalesce(func.sum(StockMovement.change), 0)).filter(
        StockMovement.product_id == product_id
    )
    return int(q.scalar() or 0)


def get_stock_reconciliation(product_id: int, *, session: Session | None = None) -> dict:
    """Compare the cached stock of a product with its ledger sum."""
    session = get_session(session)
    product = _get_product(session, product_id)
    movement_total = get_movement_total(product_id, session=session)
    return {
        "product_id": product.id,
        "stock": product.stock,
        "movement_total": movement_total,
        "in_sync": movement_total == product.stock,
    }


def find_unreconciled_products(*, session: Session | None = None) -> list[dict]:
    """Every product whose cached stock disagrees with its movements."""
    session = get_session(session)
    totals = (
        session.query(
            StockMovement.product_id,
            func.sum(StockMovement.change).label("movement_total"),
        )
        .group_by(StockMovement.product_id)
        .subquery()
    )
    rows = (
        session.query(Product, func.coalesce(totals.c.movement_total, 0))
        .outerjoin(totals, totals.c.product_id == Product.id)
        .order_by(Product.id)
        .all()
    )
    return [
        {
            "product_id": product.id,
            "sku": product.sku,
            "stock": product.stock,
            "movement_total": int(total),
        }
        for product, total in rows
        if int(total) != product.stock
    ]
