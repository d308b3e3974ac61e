"""
Sales Service - Atomic checkout

WHY: A sale touches five tables (sales, sale_lines, payments, products via
stock_movements, customers via loyalty_transactions). Either all of them
change or none do; a receipt with no stock movement, or a stock decrement
with no receipt, is the failure this module exists to prevent.

CHECKOUT ORDER:
1. Existence checks (branch, cashier, customer)
2. Line validation, product row locks, per-product stock check
3. Promotion re-validation against live data
4. Totals and payment validation
5. Sale (PENDING) -> lines -> guarded stock decrements + movements
   -> payments -> loyalty -> COMPLETED -> commit

Any exception rolls the whole unit back (run_with_retry).
"""

from __future__ import annotations

import secrets

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..extensions import get_session
from ..models import Branch, Customer, Payment, Product, Promotion, Sale, SaleLine, User
from ..models.sales import PAYMENT_METHODS, SALE_STATUS_COMPLETED, SALE_STATUS_PENDING
from tillpoint.time_utils import utcnow
from ..validation import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    coerce_int,
    coerce_non_negative_int,
    coerce_positive_int,
    coerce_price_cents,
)
from .concurrency import lock_for_update, run_with_retry
from .inventory_service import apply_stock_change
from .loyalty_service import apply_loyalty
from .pricing_service import line_quantity, validate_promotion_at_checkout


def generate_receipt_number(prefix: str | None = None) -> str:
    """RCPT-YYYYMMDD-HHMMSS-XXXXXX; the unique constraint is the real guarantee."""
    if prefix is None:
        prefix = current_app.config.get("RECEIPT_PREFIX", "RCPT")
    now = utcnow()
    return f"{prefix}-{now:%Y%m%d}-{now:%H%M%S}-{secrets.token_hex(3).upper()}"


def _parse_line(line, index: int) -> dict:
    if not isinstance(line, dict):
        raise BadRequestError(f"Line {index + 1} must be an object")

    product_id = coerce_positive_int(line.get("product_id"), f"lines[{index}].product_id")
    quantity = coerce_positive_int(line_quantity(line), f"lines[{index}].quantity")
    unit_price = coerce_price_cents(line.get("unit_price_cents"), f"lines[{index}].unit_price_cents")
    discount = coerce_non_negative_int(line.get("discount_cents"), f"lines[{index}].discount_cents")
    tax = coerce_non_negative_int(line.get("tax_cents"), f"lines[{index}].tax_cents")

    subtotal = unit_price * quantity
    if discount > subtotal:
        raise BadRequestError(
            f"Line {index + 1}: discount cannot exceed line subtotal",
            details={"subtotal_cents": subtotal, "discount_cents": discount},
        )

    promotion_id = line.get("promotion_id")
    if promotion_id is not None:
        promotion_id = coerce_int(promotion_id, f"lines[{index}].promotion_id")

    return {
        "product_id": product_id,
        "quantity": quantity,
        "unit_price_cents": unit_price,
        "discount_cents": discount,
        "tax_cents": tax,
        "line_total_cents": subtotal - discount,
        "promotion_id": promotion_id,
    }


def validate_payments(payments, total_gross_cents: int) -> list[dict]:
    """
    Normalize payments and check them against the sale total.

    When ENFORCE_PAYMENT_TOTAL is on the tendered sum must cover the gross
    total; overpayment (cash change) is allowed.
    """
    if payments is None:
        payments = []
    if not isinstance(payments, list):
        raise BadRequestError("payments must be a list")

    parsed = []
    for index, payment in enumerate(payments):
        if not isinstance(payment, dict):
            raise BadRequestError(f"Payment {index + 1} must be an object")
        method = str(payment.get("method") or "").strip().upper()
        if method not in PAYMENT_METHODS:
            raise BadRequestError(
                f"Invalid payment method. Must be one of: {', '.join(PAYMENT_METHODS)}",
                details={"allowed": list(PAYMENT_METHODS)},
            )
        amount = coerce_positive_int(payment.get("amount_cents"), f"payments[{index}].amount_cents")
        parsed.append({"method": method, "amount_cents": amount})

    tendered = sum(p["amount_cents"] for p in parsed)
    if current_app.config.get("ENFORCE_PAYMENT_TOTAL", True) and tendered < total_gross_cents:
        raise BadRequestError(
            "Payments do not cover the sale total",
            details={"total_gross_cents": total_gross_cents, "tendered_cents": tendered},
        )
    return parsed


def checkout(
    branch_id: int,
    lines,
    *,
    cashier_id: int | None = None,
    customer_id: int | None = None,
    payments=None,
    loyalty_points_earned=0,
    loyalty_points_used=0,
    metadata: dict | None = None,
    session: Session | None = None,
) -> Sale:
    """
    Complete a sale atomically.

    Raises:
        NotFoundError: branch, cashier, customer or product missing
        BadRequestError: invalid line/payment, inactive product, insufficient
            stock, stale promotion, insufficient loyalty balance
        ConflictError: receipt number collision
    """
    session = get_session(session)

    if not isinstance(lines, list) or not lines:
        raise BadRequestError("Sale must have at least one line")
    if metadata is not None and not isinstance(metadata, dict):
        raise BadRequestError("metadata must be an object")
    earned = coerce_non_negative_int(loyalty_points_earned, "loyalty_points_earned")
    used = coerce_non_negative_int(loyalty_points_used, "loyalty_points_used")

    def _op():
        if session.get(Branch, branch_id) is None:
            raise NotFoundError("Branch not found", details={"branch_id": branch_id})
        if cashier_id is not None and session.get(User, cashier_id) is None:
            raise NotFoundError("Cashier not found", details={"cashier_id": cashier_id})

        customer = None
        if customer_id is not None:
            customer = lock_for_update(session.query(Customer).filter_by(id=customer_id)).first()
            if customer is None:
                raise NotFoundError("Customer not found", details={"customer_id": customer_id})

        parsed = [_parse_line(line, i) for i, line in enumerate(lines)]

        requested: dict[int, int] = {}
        for line in parsed:
            requested[line["product_id"]] = requested.get(line["product_id"], 0) + line["quantity"]

        # Lock in id order so concurrent checkouts never deadlock on each other
        products: dict[int, Product] = {}
        for product_id in sorted(requested):
            product = lock_for_update(session.query(Product).filter_by(id=product_id)).first()
            if product is None:
                raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
            if not product.is_active:
                raise BadRequestError(f"Product {product.name} is not active", details={"product_id": product_id})
            if product.branch_id != branch_id:
                raise BadRequestError(
                    f"Product {product.name} does not belong to this branch",
                    details={"product_id": product_id, "branch_id": branch_id},
                )
            if product.stock < requested[product_id]:
                raise BadRequestError(
                    f"Insufficient stock for {product.name}. "
                    f"Available: {product.stock}, Required: {requested[product_id]}",
                    details={
                        "product_id": product_id,
                        "current_stock": product.stock,
                        "requested_quantity": requested[product_id],
                    },
                )
            products[product_id] = product

        snapshots: dict[int, dict] = {}
        for raw in lines:
            if raw.get("promotion_id") is None:
                continue
            validate_promotion_at_checkout(raw, branch_id, session=session)
        for line in parsed:
            promotion_id = line["promotion_id"]
            if promotion_id is not None and promotion_id not in snapshots:
                snapshots[promotion_id] = session.get(Promotion, promotion_id).to_snapshot()

        total_net = sum(line["line_total_cents"] for line in parsed)
        total_tax = sum(line["tax_cents"] for line in parsed)
        total_gross = total_net + total_tax

        parsed_payments = validate_payments(payments, total_gross)

        try:
            sale = Sale(
                branch_id=branch_id,
                cashier_id=cashier_id,
                customer_id=customer_id,
                receipt_number=generate_receipt_number(),
                status=SALE_STATUS_PENDING,
                total_net_cents=total_net,
                total_tax_cents=total_tax,
                total_gross_cents=total_gross,
                refunded_cents=0,
                loyalty_points_earned=earned,
                loyalty_points_used=used,
                sale_metadata=metadata or {},
            )
            session.add(sale)
            session.flush()

            for line in parsed:
                session.add(SaleLine(
                    sale_id=sale.id,
                    product_id=line["product_id"],
                    quantity=line["quantity"],
                    unit_price_cents=line["unit_price_cents"],
                    discount_cents=line["discount_cents"],
                    tax_cents=line["tax_cents"],
                    line_total_cents=line["line_total_cents"],
                    promotion_id=line["promotion_id"],
                    promotion_snapshot=snapshots.get(line["promotion_id"]),
                ))

            for product_id in sorted(requested):
                apply_stock_change(
                    session,
                    products[product_id],
                    branch_id=branch_id,
                    change=-requested[product_id],
                    reason="sale",
                    note=f"Sale {sale.receipt_number}",
                    sale_id=sale.id,
                )

            for payment in parsed_payments:
                session.add(Payment(sale_id=sale.id, **payment))

            apply_loyalty(customer, sale, earned, used, session=session)

            sale.status = SALE_STATUS_COMPLETED
            sale.completed_at = utcnow()
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError("Sale conflicts with an existing record (receipt number)") from exc

        current_app.logger.info(
            "Sale %s completed: branch=%s lines=%s gross=%s",
            sale.receipt_number, branch_id, len(parsed), total_gross,
        )
        return sale

    return run_with_retry(_op, session=session)


def get_sale(sale_id: int, *, session: Session | None = None) -> Sale:
    session = get_session(session)
    sale = session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError("Sale not found")
    return sale


def get_sale_by_receipt(receipt_number: str, *, session: Session | None = None) -> Sale:
    session = get_session(session)
    sale = session.query(Sale).filter_by(receipt_number=receipt_number).first()
    if sale is None:
        raise NotFoundError("Sale not found")
    return sale
