# Overview: Service-layer operations for cash registers and daily cash cuts.

"""
Cash cuts

WHY: Each register closes the day with an immutable snapshot of what came in,
chained to the previous day's closing balance.

- The day is [00:00:00.000, 23:59:59.999] in the branch's timezone.
- Only PAID sales of the branch created within the day are counted, with all
  of their payments, grouped by method.
- CASH on a ticket-linked sale is additionally counted as an advance.
- initial = explicit amount, else the final amount of the latest earlier cut
  of the same register, else 0.
- total_income = cash + card + transfer + advances + adjustments
- final = initial + total_income
- One cut per register and date; there is no update path.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.exc import IntegrityError

from ..exceptions import DuplicateCashCut, NotFound, ValidationFailed
from ..extensions import db
from ..models import Branch, CashCut, CashRegister, Payment, PaymentMethod, Sale, SaleStatus
from ..time_utils import local_day_bounds, parse_iso_date
from .concurrency import atomic_batch
from .tenant_service import paginate, require_branch, require_cash_register

logger = logging.getLogger(__name__)


# =============================================================================
# REGISTERS
# =============================================================================

def create_cash_register(*, org_id: int, branch_id: int, code: str, name: str) -> CashRegister:
    branch = require_branch(branch_id, org_id)
    if not code or not name:
        raise ValidationFailed("code and name are required")

    register = CashRegister(branch_id=branch.id, code=code.strip(), name=name.strip())
    try:
        atomic_batch(register)
    except IntegrityError as exc:
        raise ValidationFailed("Register code already used in this branch", code=code) from exc
    return register


def list_cash_registers(*, org_id: int, branch_id: int) -> list[dict]:
    """Registers of a branch, each with its most recent cut (or None)."""
    require_branch(branch_id, org_id)
    registers = (
        db.session.query(CashRegister)
        .filter_by(branch_id=branch_id)
        .order_by(CashRegister.code)
        .all()
    )

    result = []
    for register in registers:
        last_cut = (
            db.session.query(CashCut)
            .filter_by(cash_register_id=register.id)
            .order_by(CashCut.date.desc())
            .first()
        )
        data = register.to_dict()
        data["last_cut"] = last_cut.to_dict() if last_cut else None
        result.append(data)
    return result


# =============================================================================
# CUTS
# =============================================================================

def day_totals(branch: Branch, cut_date: date) -> dict:
    """Per-method sums of payments on the branch's PAID sales of `cut_date`."""
    start, end = local_day_bounds(cut_date, branch.timezone)

    rows = (
        db.session.query(Payment.method, Payment.amount_cents, Sale.ticket_id)
        .join(Sale, Sale.id == Payment.sale_id)
        .filter(
            Sale.branch_id == branch.id,
            Sale.status == SaleStatus.PAID.value,
            Sale.created_at >= start,
            Sale.created_at <= end,
        )
        .all()
    )

    totals = {
        "sales_cash_cents": 0,
        "sales_card_cents": 0,
        "sales_transfer_cents": 0,
        "advances_cents": 0,
    }
    for method, amount, ticket_id in rows:
        if method == PaymentMethod.CASH.value:
            totals["sales_cash_cents"] += amount
            if ticket_id:
                totals["advances_cents"] += amount
        elif method == PaymentMethod.CARD.value:
            totals["sales_card_cents"] += amount
        elif method == PaymentMethod.TRANSFER.value:
            totals["sales_transfer_cents"] += amount
    return totals


def _previous_final_amount(cash_register_id: int, cut_date: date) -> int:
    previous = (
        db.session.query(CashCut)
        .filter(CashCut.cash_register_id == cash_register_id, CashCut.date < cut_date)
        .order_by(CashCut.date.desc())
        .first()
    )
    return previous.final_amount_cents if previous else 0


def create_cash_cut(
    *,
    org_id: int,
    cash_register_id: int,
    branch_id: int,
    cut_date,
    initial_amount_cents: int | None = None,
    adjustments_cents: int = 0,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> CashCut:
    """
    Create the immutable cash cut of a register for one day.

    Args:
        cut_date: date or 'YYYY-MM-DD'
        initial_amount_cents: overrides the chained opening balance (0 included)
        adjustments_cents: signed manual adjustments (withdrawals are negative)

    Raises:
        NotFound, ValidationFailed, DuplicateCashCut
    """
    branch = require_branch(branch_id, org_id)
    register = require_cash_register(cash_register_id, org_id, branch.id)

    try:
        cut_date = parse_iso_date(cut_date)
    except ValueError as exc:
        raise ValidationFailed("Invalid cut date", cut_date=str(cut_date)) from exc

    for name, value in (("initial_amount_cents", initial_amount_cents), ("adjustments_cents", adjustments_cents)):
        if value is not None and (not isinstance(value, int) or isinstance(value, bool)):
            raise ValidationFailed(f"{name} must be an integer (cents)", field=name)

    if db.session.query(CashCut.id).filter_by(cash_register_id=register.id, date=cut_date).first():
        raise DuplicateCashCut(cash_register_id=register.id, date=cut_date.isoformat())

    totals = day_totals(branch, cut_date)
    if initial_amount_cents is None:
        initial_amount_cents = _previous_final_amount(register.id, cut_date)
    adjustments_cents = adjustments_cents or 0

    total_income = (
        totals["sales_cash_cents"]
        + totals["sales_card_cents"]
        + totals["sales_transfer_cents"]
        + totals["advances_cents"]
        + adjustments_cents
    )

    cut = CashCut(
        cash_register_id=register.id,
        branch_id=branch.id,
        date=cut_date,
        initial_amount_cents=initial_amount_cents,
        adjustments_cents=adjustments_cents,
        total_income_cents=total_income,
        final_amount_cents=initial_amount_cents + total_income,
        notes=notes,
        user_id=actor_user_id,
        **totals,
    )
    try:
        atomic_batch(cut)
    except IntegrityError as exc:
        raise DuplicateCashCut(cash_register_id=register.id, date=cut_date.isoformat()) from exc

    logger.info(
        "Cash cut %s for register %s on %s: final=%d",
        cut.id, register.code, cut_date.isoformat(), cut.final_amount_cents,
    )
    return cut


def get_cash_cut(cash_cut_id: int, *, org_id: int) -> CashCut:
    cut = (
        db.session.query(CashCut)
        .join(Branch, Branch.id == CashCut.branch_id)
        .filter(CashCut.id == cash_cut_id, Branch.org_id == org_id)
        .first()
    )
    if not cut:
        raise NotFound("Cash cut not found", cash_cut_id=cash_cut_id)
    return cut


def list_cash_cuts(
    *,
    org_id: int,
    branch_id: int,
    cash_register_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    page: int | None = None,
    page_size: int | None = None,
) -> dict:
    """Cuts of a branch, newest date first."""
    require_branch(branch_id, org_id)

    query = db.session.query(CashCut).filter(CashCut.branch_id == branch_id)
    if cash_register_id:
        query = query.filter(CashCut.cash_register_id == cash_register_id)
    if start_date:
        query = query.filter(CashCut.date >= start_date)
    if end_date:
        query = query.filter(CashCut.date <= end_date)

    query = query.order_by(CashCut.date.desc(), CashCut.id.desc())
    return paginate(query, page, page_size)
