# Overview: Service-layer operations for payment; reconciles payments against sale totals.

"""
Payment Reconciler

DESIGN PRINCIPLES:
- Payments are separate from sales (many-to-one relationship)
- Split and partial payments are allowed; overpayment is not
- Payments are append-only; a sale's status is derived from their sum:
  PAID once the sum reaches the sale total, PENDING before that
- The payment insert and the status update are one atomic batch. The status
  update only applies while the sale is still PENDING and its payment sum is
  the one this request read, so a payment cannot land on a sale that another
  request has just settled or paid into.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select, update

from ..exceptions import ConcurrencyConflict, PaymentExceedsBalance, ValidationFailed
from ..extensions import db
from ..models import Payment, PaymentMethod, Sale, SaleStatus
from .concurrency import Guarded, atomic_batch
from .tenant_service import require_sale

logger = logging.getLogger(__name__)


def coerce_method(method) -> PaymentMethod:
    try:
        return PaymentMethod(method)
    except ValueError:
        raise ValidationFailed(
            f"Invalid payment method: {method}. Must be one of {[m.value for m in PaymentMethod]}",
            method=method,
        )


def validate_amount(amount_cents) -> int:
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
        raise ValidationFailed("Payment amount must be a positive integer (cents)", amount_cents=amount_cents)
    return amount_cents


def status_for(total_cents: int, paid_cents: int) -> SaleStatus:
    return SaleStatus.PAID if paid_cents >= total_cents else SaleStatus.PENDING


def paid_cents(sale_id: int) -> int:
    """Sum of payments recorded against a sale."""
    total = (
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(Payment.sale_id == sale_id)
        .scalar()
    )
    return int(total or 0)


def get_sale_balance(sale_id: int, *, org_id: int) -> dict:
    sale = require_sale(sale_id, org_id)
    paid = paid_cents(sale.id)
    return {
        "sale_id": sale.id,
        "total_cents": sale.total_cents,
        "paid_cents": paid,
        "remaining_cents": sale.total_cents - paid,
        "status": sale.status,
    }


def add_payment(
    sale_id: int,
    amount_cents: int,
    method,
    *,
    org_id: int,
    reference: str | None = None,
    actor_user_id: int | None = None,
) -> Payment:
    """
    Record a payment against a sale and update its settlement status.

    Raises:
        NotFound: sale missing or outside org_id
        ValidationFailed: bad amount or method
        PaymentExceedsBalance: amount greater than what is still owed
        ConcurrencyConflict: the sale was paid into or settled between read and write
    """
    method = coerce_method(method)
    amount_cents = validate_amount(amount_cents)

    sale = require_sale(sale_id, org_id)
    already_paid = paid_cents(sale.id)
    remaining = sale.total_cents - already_paid

    if amount_cents > remaining:
        raise PaymentExceedsBalance(
            sale_id=sale.id,
            amount_cents=amount_cents,
            remaining_cents=remaining,
        )

    new_status = status_for(sale.total_cents, already_paid + amount_cents)

    payment = Payment(
        sale_id=sale.id,
        amount_cents=amount_cents,
        method=method.value,
        reference=reference,
        user_id=actor_user_id,
    )
    sales = Sale.__table__
    payments = Payment.__table__
    paid_now = (
        select(func.coalesce(func.sum(payments.c.amount_cents), 0))
        .where(payments.c.sale_id == sale.id)
        .scalar_subquery()
    )
    atomic_batch(
        Guarded(
            update(sales)
            .where(
                sales.c.id == sale.id,
                sales.c.status == SaleStatus.PENDING.value,
                paid_now == already_paid,
            )
            .values(status=new_status.value),
            error=ConcurrencyConflict(
                "Sale was paid or settled concurrently",
                sale_id=sale.id,
                expected_paid_cents=already_paid,
            ),
        ),
        payment,
    )

    logger.info(
        "Payment %s of %d (%s) on sale %s; status %s",
        payment.id, amount_cents, method.value, sale.folio, new_status.value,
    )
    return payment


def get_sale_payments(sale_id: int, *, org_id: int) -> list[Payment]:
    sale = require_sale(sale_id, org_id)
    return (
        db.session.query(Payment)
        .filter_by(sale_id=sale.id)
        .order_by(Payment.created_at, Payment.id)
        .all()
    )
