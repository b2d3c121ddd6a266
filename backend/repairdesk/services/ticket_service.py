# Overview: Service-layer operations for repair tickets; workflow state machine and payment gate.

"""
Repair ticket workflow

    RECEIVED -> DIAGNOSING | CANCELLED
    DIAGNOSING -> AWAITING_PART | IN_REPAIR | CANCELLED
    AWAITING_PART -> IN_REPAIR | CANCELLED
    IN_REPAIR -> REPAIRED | CANCELLED
    REPAIRED -> DELIVERED
    DELIVERED, CANCELLED: terminal

DESIGN:
- The table below is the only place transitions are decided.
- DELIVERED requires advance payment + payments of PAID sales linked to the
  ticket to cover the final cost.
- The state change and its history row are one atomic batch. The ticket
  update is a compare-and-set on the state that was read, so two concurrent
  transitions from the same state cannot both win.
- Part side effects run after that batch, one batch per part:
  IN_REPAIR consumes reserved parts, CANCELLED releases them.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, or_, update

from ..exceptions import (
    ConcurrencyConflict,
    InvalidTransition,
    PaymentIncomplete,
    ValidationFailed,
)
from ..extensions import db
from ..models import Payment, PartState, Sale, SaleStatus, Ticket, TicketHistory, TicketPart, TicketState
from ..time_utils import utcnow
from . import reservation_service
from .concurrency import Guarded, atomic_batch
from .folio_service import TICKET_PREFIX, next_folio
from .tenant_service import paginate, require_branch, require_ticket

logger = logging.getLogger(__name__)


TICKET_TRANSITIONS: dict[TicketState, frozenset[TicketState]] = {
    TicketState.RECEIVED: frozenset({TicketState.DIAGNOSING, TicketState.CANCELLED}),
    TicketState.DIAGNOSING: frozenset({
        TicketState.AWAITING_PART,
        TicketState.IN_REPAIR,
        TicketState.CANCELLED,
    }),
    TicketState.AWAITING_PART: frozenset({TicketState.IN_REPAIR, TicketState.CANCELLED}),
    TicketState.IN_REPAIR: frozenset({TicketState.REPAIRED, TicketState.CANCELLED}),
    TicketState.REPAIRED: frozenset({TicketState.DELIVERED}),
    TicketState.DELIVERED: frozenset(),
    TicketState.CANCELLED: frozenset(),
}

# States in which parts may still be pledged to the ticket
PART_EDITABLE_STATES = frozenset({
    TicketState.RECEIVED,
    TicketState.DIAGNOSING,
    TicketState.AWAITING_PART,
    TicketState.IN_REPAIR,
})

# Descriptive fields editable through update_ticket
EDITABLE_FIELDS = (
    "customer_name",
    "customer_phone",
    "customer_email",
    "device",
    "brand",
    "model",
    "serial_number",
    "problem",
    "diagnosis",
    "solution",
    "estimated_cost_cents",
    "final_cost_cents",
    "estimated_time",
    "warranty_days",
)

# Fields a transition may carry along with the new state
TRANSITION_FIELDS = (
    "diagnosis",
    "solution",
    "estimated_cost_cents",
    "final_cost_cents",
    "advance_payment_cents",
    "internal_notes",
)

REQUIRED_ON_CREATE = ("customer_name", "device", "problem")


def _coerce_state(state) -> TicketState:
    try:
        return TicketState(state)
    except ValueError:
        raise ValidationFailed(f"Unknown ticket state: {state}", state=state)


def is_terminal(state) -> bool:
    return not TICKET_TRANSITIONS[_coerce_state(state)]


def validate_transition(from_state, to_state) -> None:
    """Raise InvalidTransition unless from_state -> to_state is in the table."""
    from_state = _coerce_state(from_state)
    to_state = _coerce_state(to_state)
    if to_state not in TICKET_TRANSITIONS[from_state]:
        raise InvalidTransition(
            f"Invalid state transition from {from_state.value} to {to_state.value}",
            from_state=from_state.value,
            to_state=to_state.value,
            allowed=sorted(s.value for s in TICKET_TRANSITIONS[from_state]),
        )


def _check_money(fields: dict) -> None:
    for key, value in fields.items():
        if key.endswith("_cents") and value is not None:
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValidationFailed(f"{key} must be a non-negative integer (cents)", field=key)


# =============================================================================
# CREATION / EDITING
# =============================================================================

def create_ticket(*, org_id: int, branch_id: int, actor_user_id: int | None = None, **fields) -> Ticket:
    """
    Open a repair ticket in RECEIVED with its first history row.

    The LAB folio is drawn first (it handles its own atomicity), then ticket
    and history are written as one batch.
    """
    unknown = set(fields) - set(EDITABLE_FIELDS) - {"advance_payment_cents", "internal_notes"}
    if unknown:
        raise ValidationFailed("Unknown ticket fields", fields=sorted(unknown))
    missing = [name for name in REQUIRED_ON_CREATE if not fields.get(name)]
    if missing:
        raise ValidationFailed("Missing required ticket fields", fields=missing)
    _check_money(fields)

    branch = require_branch(branch_id, org_id)
    folio = next_folio(TICKET_PREFIX, branch.id, org_id=org_id)

    ticket = Ticket(
        branch_id=branch.id,
        folio=folio,
        state=TicketState.RECEIVED.value,
        created_by_user_id=actor_user_id,
        **fields,
    )
    ticket.history.append(
        TicketHistory(
            from_state=None,
            to_state=TicketState.RECEIVED.value,
            notes="Ticket created",
            user_id=actor_user_id,
        )
    )
    atomic_batch(ticket)

    logger.info("Ticket %s created at branch %s", folio, branch.code)
    return ticket


def update_ticket(ticket_id: int, *, org_id: int, **fields) -> Ticket:
    """Edit descriptive fields; state is never changed here."""
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationFailed("Fields not editable", fields=sorted(unknown))
    _check_money(fields)

    ticket = require_ticket(ticket_id, org_id)
    values = {k: v for k, v in fields.items() if v is not None}
    if not values:
        return ticket

    tickets = Ticket.__table__
    atomic_batch(
        update(tickets)
        .where(tickets.c.id == ticket.id)
        .values(**values, updated_at=utcnow())
    )
    return require_ticket(ticket_id, org_id)


def get_ticket(ticket_id: int, *, org_id: int) -> Ticket:
    return require_ticket(ticket_id, org_id)


def list_tickets(
    *,
    org_id: int,
    branch_id: int,
    state=None,
    q: str | None = None,
    page: int | None = None,
    page_size: int | None = None,
) -> dict:
    """Tickets of a branch, newest first. `q` matches folio, customer, device and problem."""
    require_branch(branch_id, org_id)

    query = db.session.query(Ticket).filter(Ticket.branch_id == branch_id)
    if state:
        query = query.filter(Ticket.state == _coerce_state(state).value)
    if q:
        like = f"%{q.strip().lower()}%"
        query = query.filter(or_(
            func.lower(Ticket.folio).like(like),
            func.lower(Ticket.customer_name).like(like),
            func.lower(Ticket.device).like(like),
            func.lower(Ticket.problem).like(like),
        ))

    query = query.order_by(Ticket.created_at.desc(), Ticket.id.desc())
    return paginate(query, page, page_size)


# =============================================================================
# PAYMENT GATE
# =============================================================================

def total_paid_cents(ticket: Ticket) -> int:
    """Advance payment plus every payment of PAID sales linked to the ticket."""
    paid_sales = (
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .join(Sale, Sale.id == Payment.sale_id)
        .filter(Sale.ticket_id == ticket.id, Sale.status == SaleStatus.PAID.value)
        .scalar()
    )
    return (ticket.advance_payment_cents or 0) + int(paid_sales or 0)


def check_payment_complete(ticket: Ticket, final_cost_cents: int | None = None) -> None:
    """Raise PaymentIncomplete when the ticket is not fully settled."""
    owed = final_cost_cents if final_cost_cents is not None else (ticket.final_cost_cents or 0)
    paid = total_paid_cents(ticket)
    if paid < owed:
        raise PaymentIncomplete(
            f"Cannot deliver ticket: payment incomplete. Total: {owed}, Paid: {paid}",
            ticket_id=ticket.id,
            total_owed_cents=owed,
            total_paid_cents=paid,
        )


# =============================================================================
# TRANSITIONS
# =============================================================================

def transition(
    ticket_id: int,
    to_state,
    *,
    org_id: int,
    actor_user_id: int | None = None,
    notes: str | None = None,
    **fields,
) -> Ticket:
    """
    Move a ticket to `to_state`.

    Args:
        fields: optional TRANSITION_FIELDS written together with the state

    Raises:
        NotFound: ticket missing or outside org_id
        InvalidTransition: edge not in TICKET_TRANSITIONS
        PaymentIncomplete: DELIVERED requested before the ticket is settled
        ConcurrencyConflict: another actor changed the state first, or some
            parts could not be consumed/released after the state was applied
    """
    to_state = _coerce_state(to_state)
    unknown = set(fields) - set(TRANSITION_FIELDS)
    if unknown:
        raise ValidationFailed("Fields not allowed on transition", fields=sorted(unknown))
    _check_money(fields)

    ticket = require_ticket(ticket_id, org_id)
    from_state = _coerce_state(ticket.state)
    validate_transition(from_state, to_state)

    if to_state == TicketState.DELIVERED:
        check_payment_complete(ticket, fields.get("final_cost_cents"))

    values = {k: v for k, v in fields.items() if v is not None}
    tickets = Ticket.__table__
    atomic_batch(
        Guarded(
            update(tickets)
            .where(tickets.c.id == ticket.id, tickets.c.state == from_state.value)
            .values(state=to_state.value, updated_at=utcnow(), **values),
            error=ConcurrencyConflict(
                "Ticket state changed concurrently",
                ticket_id=ticket.id,
                expected_state=from_state.value,
            ),
        ),
        TicketHistory(
            ticket_id=ticket.id,
            from_state=from_state.value,
            to_state=to_state.value,
            notes=notes,
            user_id=actor_user_id,
        ),
    )
    logger.info("Ticket %s: %s -> %s", ticket.folio, from_state.value, to_state.value)

    ticket = require_ticket(ticket_id, org_id)
    db.session.refresh(ticket)

    settlement = None
    if to_state == TicketState.IN_REPAIR:
        settlement = reservation_service.consume_reserved_parts(ticket, actor_user_id=actor_user_id)
    elif to_state == TicketState.CANCELLED:
        settlement = reservation_service.release_reserved_parts(ticket)

    if settlement is not None and not settlement.ok:
        raise ConcurrencyConflict(
            f"Ticket moved to {to_state.value} but {len(settlement.failed)} part(s) "
            f"could not be {settlement.target.value.lower()}",
            ticket_id=ticket.id,
            state=to_state.value,
            failed_parts=settlement.failed,
            settled_parts=settlement.settled,
        )

    return ticket


def add_part(
    ticket_id: int,
    variant_id: int,
    qty: int,
    *,
    org_id: int,
    actor_user_id: int | None = None,
) -> TicketPart:
    """
    Reserve stock for a ticket.

    Parts added while the ticket is already IN_REPAIR are consumed right away,
    since the consume trigger for that ticket has already fired.
    """
    ticket = require_ticket(ticket_id, org_id)
    state = _coerce_state(ticket.state)
    if state not in PART_EDITABLE_STATES:
        raise InvalidTransition(
            f"Cannot add parts to a ticket in {state.value}",
            ticket_id=ticket.id,
            state=state.value,
        )

    part = reservation_service.reserve_part(
        ticket, variant_id, qty, org_id=org_id, expected_state=state.value,
    )

    if state == TicketState.IN_REPAIR:
        result = reservation_service.consume_reserved_parts(
            ticket, actor_user_id=actor_user_id, parts=[part],
        )
        if not result.ok:
            raise ConcurrencyConflict(
                "Part reserved but could not be consumed",
                ticket_id=ticket.id,
                failed_parts=result.failed,
            )

    db.session.refresh(part)
    return part


def reserved_parts(ticket_id: int, *, org_id: int) -> list[TicketPart]:
    ticket = require_ticket(ticket_id, org_id)
    return (
        db.session.query(TicketPart)
        .filter_by(ticket_id=ticket.id, state=PartState.RESERVED.value)
        .order_by(TicketPart.id)
        .all()
    )
