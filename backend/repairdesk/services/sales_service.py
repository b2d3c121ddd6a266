"""
Sales Service - sale documents with optional up-front payment

Sale creation order:
1. validate lines/discount/payment and, when paid up front, stock on hand
2. draw the VTA folio (its own atomic upsert)
3. one batch: sale + lines + initial payment + ticket advance (cash only)
4. when paid up front, one SALE movement batch per stocked line, stamped
   with the sale folio
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import update

from ..exceptions import PaymentExceedsBalance, ValidationFailed
from ..extensions import db
from ..models import Branch, MovementType, Payment, PaymentMethod, Sale, SaleLine, SaleStatus, Ticket
from .concurrency import atomic_batch
from .folio_service import SALE_PREFIX, next_folio
from .payment_service import coerce_method, status_for, validate_amount
from .stock_service import apply_movement, require_on_hand
from .tenant_service import paginate, require_branch, require_sale, require_ticket, require_variant

logger = logging.getLogger(__name__)


def _non_negative_int(value, name: str) -> int:
    if value is None:
        return 0
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ValidationFailed(f"{name} must be a non-negative integer", field=name)
    return value


def _build_lines(lines: list[dict], org_id: int) -> tuple[list[SaleLine], int]:
    """Turn line dicts into SaleLine rows; returns (rows, subtotal_cents)."""
    if not lines:
        raise ValidationFailed("A sale needs at least one line")

    rows = []
    subtotal = 0
    for i, data in enumerate(lines, start=1):
        variant_id = data.get("variant_id")
        variant = require_variant(variant_id, org_id) if variant_id else None

        qty = data.get("qty")
        if not isinstance(qty, int) or isinstance(qty, bool) or qty < 1:
            raise ValidationFailed("Line qty must be an integer >= 1", line=i)

        unit_price = data.get("unit_price_cents")
        if unit_price is None and variant is not None:
            unit_price = variant.price_cents
        if unit_price is None:
            raise ValidationFailed("Line has no unit price", line=i)
        unit_price = _non_negative_int(unit_price, "unit_price_cents")
        discount = _non_negative_int(data.get("discount_cents"), "discount_cents")

        description = data.get("description") or (variant.name if variant else None)
        if not description:
            raise ValidationFailed("Line description is required", line=i)

        line_total = unit_price * qty - discount
        subtotal += line_total
        rows.append(SaleLine(
            variant_id=variant.id if variant else None,
            description=description,
            qty=qty,
            unit_price_cents=unit_price,
            discount_cents=discount,
            total_cents=line_total,
        ))
    return rows, subtotal


def _stock_demand(rows: list[SaleLine]) -> dict[int, int]:
    demand: dict[int, int] = {}
    for line in rows:
        if line.variant_id:
            demand[line.variant_id] = demand.get(line.variant_id, 0) + line.qty
    return demand


def create_sale(
    *,
    org_id: int,
    branch_id: int,
    lines: list[dict],
    actor_user_id: int | None = None,
    customer_id: int | None = None,
    ticket_id: int | None = None,
    discount_cents: int = 0,
    payment: dict | None = None,
) -> Sale:
    """
    Create a sale.

    Args:
        lines: dicts with description, qty, unit_price_cents, optional
            variant_id and discount_cents (price/description default from the variant)
        payment: optional {"amount_cents", "method", "reference"} recorded
            with the sale

    Raises:
        NotFound, ValidationFailed, PaymentExceedsBalance, InsufficientStock,
        ConcurrencyConflict (stock drawn down concurrently while posting lines)
    """
    branch = require_branch(branch_id, org_id)
    ticket = require_ticket(ticket_id, org_id) if ticket_id else None

    rows, subtotal = _build_lines(lines, org_id)
    discount_cents = _non_negative_int(discount_cents, "discount_cents")
    total = subtotal - discount_cents
    if total < 0:
        raise ValidationFailed("Discounts exceed the sale amount", subtotal_cents=subtotal, discount_cents=discount_cents)

    initial = None
    if payment:
        initial = {
            "amount_cents": validate_amount(payment.get("amount_cents")),
            "method": coerce_method(payment.get("method")),
            "reference": payment.get("reference"),
        }
        if initial["amount_cents"] > total:
            raise PaymentExceedsBalance(amount_cents=initial["amount_cents"], remaining_cents=total)

    demand = _stock_demand(rows) if initial else {}
    for variant_id, qty in demand.items():
        require_on_hand(branch.id, variant_id, qty)

    folio = next_folio(SALE_PREFIX, branch.id, org_id=org_id)

    paid = initial["amount_cents"] if initial else 0
    sale = Sale(
        branch_id=branch.id,
        folio=folio,
        customer_id=customer_id,
        ticket_id=ticket.id if ticket else None,
        status=status_for(total, paid).value,
        subtotal_cents=subtotal,
        discount_cents=discount_cents,
        total_cents=total,
        created_by_user_id=actor_user_id,
        lines=rows,
    )

    writes = [sale]
    if initial:
        sale.payments.append(Payment(
            amount_cents=initial["amount_cents"],
            method=initial["method"].value,
            reference=initial["reference"],
            user_id=actor_user_id,
        ))
        if ticket and initial["method"] == PaymentMethod.CASH:
            tickets = Ticket.__table__
            writes.append(
                update(tickets)
                .where(tickets.c.id == ticket.id)
                .values(advance_payment_cents=tickets.c.advance_payment_cents + initial["amount_cents"])
            )
    atomic_batch(*writes)
    logger.info("Sale %s created (total=%d, status=%s)", folio, total, sale.status)

    for line in rows:
        if initial and line.variant_id:
            apply_movement(
                org_id=org_id,
                branch_id=branch.id,
                variant_id=line.variant_id,
                movement_type=MovementType.SALE,
                quantity=line.qty,
                actor_user_id=actor_user_id,
                folio=folio,
                reason=f"Sale {folio}",
            )
    return sale


def get_sale(sale_id: int, *, org_id: int) -> Sale:
    return require_sale(sale_id, org_id)


def list_sales(
    *,
    org_id: int,
    branch_id: int | None = None,
    customer_id: int | None = None,
    ticket_id: int | None = None,
    status=None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int | None = None,
    page_size: int | None = None,
) -> dict:
    """Sales of the organization (optionally one branch), newest first."""
    query = db.session.query(Sale).join(Branch, Branch.id == Sale.branch_id).filter(Branch.org_id == org_id)
    if branch_id:
        require_branch(branch_id, org_id)
        query = query.filter(Sale.branch_id == branch_id)
    if customer_id:
        query = query.filter(Sale.customer_id == customer_id)
    if ticket_id:
        query = query.filter(Sale.ticket_id == ticket_id)
    if status:
        query = query.filter(Sale.status == SaleStatus(status).value)
    if start:
        query = query.filter(Sale.created_at >= start)
    if end:
        query = query.filter(Sale.created_at <= end)

    query = query.order_by(Sale.created_at.desc(), Sale.id.desc())
    return paginate(query, page, page_size)
