# Overview: Service-layer operations for the stock ledger; movements and derived stock levels.

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import update

from ..exceptions import ConcurrencyConflict, InsufficientStock, ValidationFailed
from ..extensions import db
from ..models import Movement, MovementType, StockLevel
from ..time_utils import end_of_day
from .concurrency import Guarded, atomic_batch, upsert_increment
from .folio_service import next_folio, prefix_for_movement
from .tenant_service import paginate, require_branch, require_variant

"""
Stock ledger invariants (authoritative)

- Movement rows are append-only and are the audit trail behind StockLevel.qty.
- Every movement is written in the same atomic batch as its StockLevel change;
  there is never a Movement without its counter update or vice versa.
- Inbound (IN, TRANSFER_IN, ADJUST > 0): upsert-increment, the level row is
  created on first use.
- Outbound (OUT, SALE, TRANSFER_OUT, ADJUST < 0): the level is read first and
  InsufficientStock is raised (nothing written) when qty < requested. The
  decrement itself is conditional on qty >= requested, so a concurrent
  outbound that slipped in after the read surfaces as ConcurrencyConflict
  instead of driving qty negative.
"""

logger = logging.getLogger(__name__)

INBOUND_TYPES = frozenset({MovementType.IN, MovementType.TRANSFER_IN})
OUTBOUND_TYPES = frozenset({MovementType.OUT, MovementType.SALE, MovementType.TRANSFER_OUT})


def _coerce_type(movement_type) -> MovementType:
    try:
        return MovementType(movement_type)
    except ValueError:
        raise ValidationFailed(f"Invalid movement type: {movement_type}", movement_type=movement_type)


def signed_delta(movement_type: MovementType, quantity: int) -> int:
    """Translate (type, quantity) into the signed change applied to qty."""
    if not isinstance(quantity, int) or isinstance(quantity, bool):
        raise ValidationFailed("quantity must be an integer", quantity=quantity)

    if movement_type == MovementType.ADJUST:
        if quantity == 0:
            raise ValidationFailed("adjustment quantity cannot be zero")
        return quantity

    if quantity <= 0:
        raise ValidationFailed("quantity must be positive", quantity=quantity)
    return quantity if movement_type in INBOUND_TYPES else -quantity


def get_stock_level(*, org_id: int, branch_id: int, variant_id: int) -> StockLevel | None:
    require_branch(branch_id, org_id)
    return _read_level(branch_id, variant_id)


def _read_level(branch_id: int, variant_id: int) -> StockLevel | None:
    return (
        db.session.query(StockLevel)
        .filter_by(branch_id=branch_id, variant_id=variant_id)
        .populate_existing()
        .first()
    )


def require_on_hand(branch_id: int, variant_id: int, quantity: int) -> StockLevel:
    """Read-side check: raise InsufficientStock when qty < quantity."""
    level = _read_level(branch_id, variant_id)
    available = level.qty if level else 0
    if available < quantity:
        raise InsufficientStock(
            branch_id=branch_id,
            variant_id=variant_id,
            available=available,
            requested=quantity,
        )
    return level


def increment_qty(branch_id: int, variant_id: int, quantity: int):
    """Upsert-increment of StockLevel.qty (creates the row if needed)."""
    return upsert_increment(
        StockLevel.__table__,
        keys={"branch_id": branch_id, "variant_id": variant_id},
        increments={"qty": quantity},
    )


def guarded_decrement(branch_id: int, variant_id: int, quantity: int, *, reserved: int = 0, error=None) -> Guarded:
    """
    Conditional decrement of qty (and optionally reserved) that only applies
    while qty >= quantity and reserved >= `reserved`.
    """
    stock = StockLevel.__table__
    conditions = [
        stock.c.branch_id == branch_id,
        stock.c.variant_id == variant_id,
        stock.c.qty >= quantity,
    ]
    values = {"qty": stock.c.qty - quantity}
    if reserved:
        conditions.append(stock.c.reserved >= reserved)
        values["reserved"] = stock.c.reserved - reserved

    if error is None:
        error = ConcurrencyConflict(
            "Stock changed while the movement was being applied",
            branch_id=branch_id,
            variant_id=variant_id,
            requested=quantity,
        )
    return Guarded(update(stock).where(*conditions).values(**values), error=error)


def apply_movement(
    *,
    org_id: int,
    branch_id: int,
    variant_id: int,
    movement_type,
    quantity: int,
    actor_user_id: int | None = None,
    folio: str | None = None,
    ticket_id: int | None = None,
    reason: str | None = None,
    assign_folio: bool = True,
) -> Movement:
    """
    Record a stock movement and apply it to the branch/variant counters.

    Args:
        movement_type: MovementType or its string value
        quantity: positive units; signed non-zero delta for ADJUST
        folio: document number to stamp on the movement; drawn from the
            type's folio prefix when omitted and assign_folio is True

    Raises:
        NotFound, ValidationFailed, InsufficientStock, ConcurrencyConflict
    """
    movement_type = _coerce_type(movement_type)
    delta = signed_delta(movement_type, quantity)

    branch = require_branch(branch_id, org_id)
    require_variant(variant_id, org_id)

    if folio is None and assign_folio:
        folio = next_folio(prefix_for_movement(movement_type), branch.id, org_id=org_id)

    movement = Movement(
        branch_id=branch.id,
        variant_id=variant_id,
        type=movement_type.value,
        quantity=delta if movement_type == MovementType.ADJUST else abs(delta),
        folio=folio,
        ticket_id=ticket_id,
        reason=reason,
        user_id=actor_user_id,
    )

    if delta > 0:
        atomic_batch(movement, increment_qty(branch.id, variant_id, delta))
    else:
        require_on_hand(branch.id, variant_id, -delta)
        atomic_batch(guarded_decrement(branch.id, variant_id, -delta), movement)

    logger.info(
        "Movement %s %s x%d applied (branch=%s variant=%s folio=%s)",
        movement.id, movement_type.value, abs(delta), branch.id, variant_id, folio,
    )
    return movement


def transfer_stock(
    *,
    org_id: int,
    from_branch_id: int,
    to_branch_id: int,
    variant_id: int,
    quantity: int,
    actor_user_id: int | None = None,
    reason: str | None = None,
) -> tuple[Movement, Movement]:
    """
    Move units between two branches of the same organization.

    TRANSFER_OUT and TRANSFER_IN share the source branch's TRF_OUT folio and
    are written in one atomic batch with both counter changes.
    """
    delta = signed_delta(MovementType.TRANSFER_OUT, quantity)
    if from_branch_id == to_branch_id:
        raise ValidationFailed("source and destination branch must differ")

    source = require_branch(from_branch_id, org_id)
    destination = require_branch(to_branch_id, org_id)
    require_variant(variant_id, org_id)

    folio = next_folio(prefix_for_movement(MovementType.TRANSFER_OUT), source.id, org_id=org_id)

    outbound = Movement(
        branch_id=source.id,
        variant_id=variant_id,
        type=MovementType.TRANSFER_OUT.value,
        quantity=quantity,
        folio=folio,
        reason=reason or f"Transfer to {destination.code}",
        user_id=actor_user_id,
    )
    inbound = Movement(
        branch_id=destination.id,
        variant_id=variant_id,
        type=MovementType.TRANSFER_IN.value,
        quantity=quantity,
        folio=folio,
        reason=reason or f"Transfer from {source.code}",
        user_id=actor_user_id,
    )

    require_on_hand(source.id, variant_id, -delta)
    atomic_batch(
        guarded_decrement(source.id, variant_id, quantity),
        outbound,
        increment_qty(destination.id, variant_id, quantity),
        inbound,
    )
    return outbound, inbound


def list_stock_levels(*, org_id: int, branch_id: int, below_min: bool = False) -> list[StockLevel]:
    require_branch(branch_id, org_id)
    query = db.session.query(StockLevel).filter(StockLevel.branch_id == branch_id)
    if below_min:
        query = query.filter(StockLevel.qty < StockLevel.min_qty)
    return query.order_by(StockLevel.variant_id).all()


def list_movements(
    *,
    org_id: int,
    branch_id: int,
    movement_type=None,
    variant_id: int | None = None,
    user_id: int | None = None,
    ticket_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int | None = None,
    page_size: int | None = None,
) -> dict:
    """
    List movements of a branch, newest first.

    date_to covers the whole day it falls on.
    """
    require_branch(branch_id, org_id)

    query = db.session.query(Movement).filter(Movement.branch_id == branch_id)
    if movement_type:
        query = query.filter(Movement.type == _coerce_type(movement_type).value)
    if variant_id:
        query = query.filter(Movement.variant_id == variant_id)
    if user_id:
        query = query.filter(Movement.user_id == user_id)
    if ticket_id:
        query = query.filter(Movement.ticket_id == ticket_id)
    if date_from:
        query = query.filter(Movement.created_at >= date_from)
    if date_to:
        query = query.filter(Movement.created_at <= end_of_day(date_to))

    query = query.order_by(Movement.created_at.desc(), Movement.id.desc())
    return paginate(query, page, page_size)
