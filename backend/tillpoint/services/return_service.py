"""
Return Processing Service

WHY: Refunds are money leaving the till. The one thing that must never happen
is refunding more than the sale was worth, including when two cashiers
refund the same receipt at the same moment.

DESIGN PRINCIPLES:
- The sale row is locked (and version-checked) for the whole unit of work
- Already-returned amounts are read inside that transaction, never trusted
  from the caller or from a cached field
- Sale.refunded_cents and Sale.status are re-derived from the full set of
  returns after every create/update/delete, never adjusted incrementally
- Corrections (update/delete) are administrative and logged at WARNING

STATUS FLOW (driven by cumulative refunds only):
COMPLETED -> PARTIALLY_REFUNDED -> REFUNDED
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..extensions import get_session
from ..models import Return, Sale
from ..models.documents import RETURN_REASONS
from ..models.sales import (
    SALE_STATUS_CANCELLED,
    SALE_STATUS_PENDING,
    SALE_STATUS_REFUNDED,
)
from tillpoint.time_utils import days_since
from ..validation import BadRequestError, NotFoundError, PosError, coerce_positive_int, normalize_choice
from .concurrency import lock_for_update, run_with_retry


# Sales older than this still accept returns, but validation warns about them
RETURN_WARNING_AGE_DAYS = 30

_UNSET = object()


def _normalize_reason(reason):
    if reason is None or reason == "":
        return None
    return normalize_choice(reason, RETURN_REASONS, "return reason")


def _lock_sale(session: Session, sale_id: int) -> Sale:
    sale = lock_for_update(session.query(Sale).filter_by(id=sale_id)).first()
    if sale is None:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id})
    return sale


def _returned_total(session: Session, sale_id: int, exclude_return_id: int | None = None) -> int:
    q = session.query(func.coalesce(func.sum(Return.amount_cents), 0)).filter(Return.sale_id == sale_id)
    if exclude_return_id is not None:
        q = q.filter(Return.id != exclude_return_id)
    return int(q.scalar() or 0)


def _ensure_refundable(sale: Sale) -> None:
    if sale.status == SALE_STATUS_REFUNDED:
        raise BadRequestError("Sale has already been fully refunded", details={"sale_id": sale.id})
    if sale.status in (SALE_STATUS_PENDING, SALE_STATUS_CANCELLED):
        raise BadRequestError(
            f"Cannot refund a sale with status {sale.status}",
            details={"sale_id": sale.id, "status": sale.status},
        )


def _ensure_within_remaining(sale: Sale, already_returned: int, amount_cents: int) -> None:
    remaining = sale.total_gross_cents - already_returned
    if amount_cents > remaining:
        raise BadRequestError(
            "Return amount exceeds remaining refundable amount",
            details={
                "transaction_total_cents": sale.total_gross_cents,
                "already_returned_cents": already_returned,
                "remaining_refundable_cents": remaining,
            },
        )


def _recompute(session: Session, sale: Sale) -> Sale:
    session.flush()
    sale.apply_refund_total(_returned_total(session, sale.id))
    return sale


# =============================================================================
# RETURN CREATION
# =============================================================================

def create_return(
    sale_id: int,
    amount_cents,
    reason: str | None = None,
    processed_by: str | None = None,
    *,
    session: Session | None = None,
) -> Return:
    """
    Refund part or all of a completed sale.

    Args:
        sale_id: Sale being refunded
        amount_cents: Refund amount (> 0)
        reason: One of RETURN_REASONS, case-insensitive
        processed_by: Free-form actor identity

    Raises:
        NotFoundError: sale missing
        BadRequestError: invalid amount/reason, sale not refundable, or
            amount above the remaining refundable amount
    """
    session = get_session(session)
    amount_cents = coerce_positive_int(amount_cents, "amount_cents")
    reason = _normalize_reason(reason)

    def _op():
        sale = _lock_sale(session, sale_id)
        _ensure_refundable(sale)
        _ensure_within_remaining(sale, _returned_total(session, sale.id), amount_cents)

        return_doc = Return(
            sale_id=sale.id,
            amount_cents=amount_cents,
            reason=reason,
            processed_by=processed_by,
        )
        session.add(return_doc)
        _recompute(session, sale)
        session.commit()

        current_app.logger.info(
            "Return %s created for sale %s: %s cents (sale now %s)",
            return_doc.id, sale.id, amount_cents, sale.status,
        )
        return return_doc

    return run_with_retry(_op, session=session)


# =============================================================================
# ADMINISTRATIVE CORRECTIONS
# =============================================================================

def update_return(
    return_id: int,
    *,
    amount_cents=None,
    reason=_UNSET,
    processed_by=_UNSET,
    session: Session | None = None,
) -> Return:
    """Correct a return; the new amount is checked against the sale's other returns."""
    session = get_session(session)
    if amount_cents is not None:
        amount_cents = coerce_positive_int(amount_cents, "amount_cents")
    if reason is not _UNSET:
        reason = _normalize_reason(reason)

    def _op():
        return_doc = session.get(Return, return_id)
        if return_doc is None:
            raise NotFoundError("Return not found")
        sale = _lock_sale(session, return_doc.sale_id)

        if amount_cents is not None:
            others = _returned_total(session, sale.id, exclude_return_id=return_doc.id)
            _ensure_within_remaining(sale, others, amount_cents)
            return_doc.amount_cents = amount_cents
        if reason is not _UNSET:
            return_doc.reason = reason
        if processed_by is not _UNSET:
            return_doc.processed_by = processed_by

        _recompute(session, sale)
        session.commit()

        current_app.logger.warning(
            "Return %s corrected: amount=%s (sale %s now %s)",
            return_doc.id, return_doc.amount_cents, sale.id, sale.status,
        )
        return return_doc

    return run_with_retry(_op, session=session)


def delete_return(return_id: int, *, session: Session | None = None) -> Sale:
    """Delete a return and re-derive the sale refund state from the survivors."""
    session = get_session(session)

    def _op():
        return_doc = session.get(Return, return_id)
        if return_doc is None:
            raise NotFoundError("Return not found")
        sale = _lock_sale(session, return_doc.sale_id)

        session.delete(return_doc)
        _recompute(session, sale)
        session.commit()

        current_app.logger.warning(
            "Return %s deleted (sale %s now refunded %s cents, %s)",
            return_id, sale.id, sale.refunded_cents, sale.status,
        )
        return sale

    return run_with_retry(_op, session=session)


def recompute_sale_refunds(sale_id: int, *, session: Session | None = None) -> Sale:
    """Re-derive refunded_cents and status from the sale's returns. Idempotent."""
    session = get_session(session)

    def _op():
        sale = _lock_sale(session, sale_id)
        _recompute(session, sale)
        session.commit()
        return sale

    return run_with_retry(_op, session=session)


# =============================================================================
# QUERIES
# =============================================================================

def validate_return(
    sale_id: int,
    amount_cents,
    reason: str | None = None,
    *,
    session: Session | None = None,
) -> dict:
    """
    Dry-run of create_return. Collects errors and warnings instead of raising.

    Warnings: the return would fully refund the sale, or the sale is older
    than RETURN_WARNING_AGE_DAYS.
    """
    session = get_session(session)
    errors: list[str] = []
    warnings: list[str] = []
    result = {"valid": False, "errors": errors, "warnings": warnings}

    sale = session.get(Sale, sale_id)
    if sale is None:
        errors.append("Sale not found")
        return result

    already = _returned_total(session, sale.id)
    remaining = sale.total_gross_cents - already
    result.update({
        "transaction_total_cents": sale.total_gross_cents,
        "already_returned_cents": already,
        "remaining_refundable_cents": remaining,
    })

    try:
        _ensure_refundable(sale)
    except PosError as exc:
        errors.append(exc.message)
    try:
        _normalize_reason(reason)
    except PosError as exc:
        errors.append(exc.message)

    amount = None
    try:
        amount = coerce_positive_int(amount_cents, "amount_cents")
    except PosError as exc:
        errors.append(exc.message)

    if amount is not None:
        if amount > remaining:
            errors.append(
                f"Return amount exceeds remaining refundable amount ({remaining} cents)"
            )
        elif amount == remaining:
            warnings.append("This return fully refunds the sale")

    age_days = days_since(sale.completed_at or sale.created_at)
    if age_days > RETURN_WARNING_AGE_DAYS:
        warnings.append(f"Sale is {age_days} days old (more than {RETURN_WARNING_AGE_DAYS} days)")

    result["valid"] = not errors
    return result


def get_return(return_id: int, *, session: Session | None = None) -> Return:
    session = get_session(session)
    return_doc = session.get(Return, return_id)
    if return_doc is None:
        raise NotFoundError("Return not found")
    return return_doc


def get_sale_returns(sale_id: int, *, session: Session | None = None) -> list[Return]:
    session = get_session(session)
    if session.get(Sale, sale_id) is None:
        raise NotFoundError("Sale not found")
    return session.query(Return).filter_by(sale_id=sale_id).order_by(Return.id).all()
