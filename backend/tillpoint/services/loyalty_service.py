# Overview: Service-layer operations for loyalty points; balance changes always go through the ledger.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..extensions import get_session
from ..models import Customer, LoyaltyTransaction, Sale
from ..models.customers import LOYALTY_ADJUSTED, LOYALTY_EARNED, LOYALTY_REDEEMED
from ..validation import BadRequestError, NotFoundError, coerce_int
from .concurrency import lock_for_update, run_with_retry


def _append(session: Session, customer: Customer, transaction_type: str, points: int,
            *, sale_id: int | None = None, reason: str | None = None) -> LoyaltyTransaction:
    entry = LoyaltyTransaction(
        customer_id=customer.id,
        sale_id=sale_id,
        transaction_type=transaction_type,
        points=points,
        reason=reason,
    )
    customer.loyalty_points = (customer.loyalty_points or 0) + points
    session.add(entry)
    return entry


def apply_loyalty(
    customer: Customer | None,
    sale: Sale,
    earned: int,
    used: int,
    *,
    session: Session | None = None,
) -> list[LoyaltyTransaction]:
    """
    Post earned/redeemed points for a sale in the caller's transaction.

    Redemption is checked against the balance before anything is written.
    Does not commit.
    """
    session = get_session(session)
    if not earned and not used:
        return []
    if customer is None:
        raise BadRequestError("Loyalty points require a customer")
    if used > (customer.loyalty_points or 0):
        raise BadRequestError(
            "Insufficient loyalty points",
            details={
                "customer_id": customer.id,
                "available_points": customer.loyalty_points or 0,
                "requested_points": used,
            },
        )

    entries = []
    if used:
        entries.append(_append(session, customer, LOYALTY_REDEEMED, -used,
                               sale_id=sale.id, reason=f"Redeemed on {sale.receipt_number}"))
    if earned:
        entries.append(_append(session, customer, LOYALTY_EARNED, earned,
                               sale_id=sale.id, reason=f"Earned on {sale.receipt_number}"))
    return entries


def adjust_points(customer_id: int, points, reason: str | None = None,
                  *, session: Session | None = None) -> LoyaltyTransaction:
    """Manual correction of a balance. The balance can never go below zero."""
    session = get_session(session)
    points = coerce_int(points, "points")
    if points == 0:
        raise BadRequestError("points must be non-zero")

    def _op():
        customer = lock_for_update(session.query(Customer).filter_by(id=customer_id)).first()
        if customer is None:
            raise NotFoundError("Customer not found")
        if (customer.loyalty_points or 0) + points < 0:
            raise BadRequestError(
                "Adjustment would make loyalty balance negative",
                details={"customer_id": customer.id, "available_points": customer.loyalty_points},
            )

        entry = _append(session, customer, LOYALTY_ADJUSTED, points, reason=reason)
        session.commit()
        current_app.logger.info("Loyalty balance of customer %s adjusted by %s", customer_id, points)
        return entry

    return run_with_retry(_op, session=session)


def get_loyalty_reconciliation(customer_id: int, *, session: Session | None = None) -> dict:
    session = get_session(session)
    customer = session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer not found")
    ledger_total = (
        session.query(func.coalesce(func.sum(LoyaltyTransaction.points), 0))
        .filter(LoyaltyTransaction.customer_id == customer_id)
        .scalar()
    )
    return {
        "customer_id": customer.id,
        "loyalty_points": customer.loyalty_points,
        "ledger_total": int(ledger_total or 0),
        "in_sync": int(ledger_total or 0) == customer.loyalty_points,
    }
