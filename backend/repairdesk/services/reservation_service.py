# Overview: Service-layer operations for ticket-part reservations (reserve, consume, release).

"""
Reservation lifecycle

    RESERVED --consume--> CONSUMED   (ticket enters IN_REPAIR)
    RESERVED --release--> RELEASED   (ticket is CANCELLED)

CONSUMED and RELEASED are terminal. Each part is settled in its own atomic
batch whose first write is a compare-and-set on the part state, so a second
trigger for the same part (retry, duplicate request) finds nothing to update
and is skipped instead of moving stock twice.

Parts are settled one batch at a time; a failure on one part does not undo
parts already settled. Failures are collected and returned to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import update

from ..exceptions import ConcurrencyConflict, InsufficientStock, InvalidTransition, ValidationFailed, WorkflowError
from ..extensions import db
from ..models import Movement, MovementType, PartState, StockLevel, Ticket, TicketPart, TicketState
from ..time_utils import utcnow
from .concurrency import Guarded, atomic_batch, upsert_increment
from .stock_service import guarded_decrement
from .tenant_service import require_variant

logger = logging.getLogger(__name__)


PART_TRANSITIONS: dict[PartState, frozenset[PartState]] = {
    PartState.RESERVED: frozenset({PartState.CONSUMED, PartState.RELEASED}),
    PartState.CONSUMED: frozenset(),
    PartState.RELEASED: frozenset(),
}


class PartAlreadySettled(InvalidTransition):
    """The part left RESERVED before this batch could claim it."""

    code = "PART_ALREADY_SETTLED"
    default_message = "Ticket part is no longer reserved"


@dataclass
class SettlementResult:
    """Outcome of settling a ticket's reserved parts."""
    target: PartState
    settled: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def can_transition_part(from_state, to_state) -> bool:
    return PartState(to_state) in PART_TRANSITIONS[PartState(from_state)]


def _claim_part(part: TicketPart, to_state: PartState) -> Guarded:
    """Compare-and-set RESERVED -> to_state on a single part row."""
    if PartState(part.state) != PartState.RESERVED:
        raise PartAlreadySettled(part_id=part.id, state=part.state, to_state=to_state.value)
    if not can_transition_part(part.state, to_state):
        raise InvalidTransition(
            f"Invalid part transition from {part.state} to {to_state.value}",
            part_id=part.id,
            from_state=part.state,
            to_state=to_state.value,
        )
    parts = TicketPart.__table__
    return Guarded(
        update(parts)
        .where(parts.c.id == part.id, parts.c.state == PartState.RESERVED.value)
        .values(state=to_state.value),
        error=PartAlreadySettled(part_id=part.id, to_state=to_state.value),
    )


def reserve_part(
    ticket: Ticket,
    variant_id: int,
    qty: int,
    *,
    org_id: int,
    expected_state: str | None = None,
) -> TicketPart:
    """
    Pledge `qty` units of a variant to a ticket.

    One batch: touch the ticket row while it is still in `expected_state`
    (defaults to the state loaded on `ticket`), StockLevel.reserved += qty
    (row created if missing) and the TicketPart insert in RESERVED. If the
    ticket moved in the meantime nothing is written and ConcurrencyConflict
    is raised. reserved may exceed qty on hand; that is allowed at
    reservation time and surfaces when the part is consumed.
    """
    if not isinstance(qty, int) or isinstance(qty, bool) or qty <= 0:
        raise ValidationFailed("qty must be a positive integer", qty=qty)
    expected_state = TicketState(expected_state or ticket.state).value
    require_variant(variant_id, org_id)

    part = TicketPart(
        ticket_id=ticket.id,
        variant_id=variant_id,
        qty=qty,
        state=PartState.RESERVED.value,
    )
    tickets = Ticket.__table__
    atomic_batch(
        Guarded(
            update(tickets)
            .where(tickets.c.id == ticket.id, tickets.c.state == expected_state)
            .values(updated_at=utcnow()),
            error=ConcurrencyConflict(
                "Ticket state changed while reserving part",
                ticket_id=ticket.id,
                expected_state=expected_state,
            ),
        ),
        upsert_increment(
            StockLevel.__table__,
            keys={"branch_id": ticket.branch_id, "variant_id": variant_id},
            increments={"reserved": qty},
        ),
        part,
    )
    logger.info("Reserved %d x variant %s for ticket %s (part %s)", qty, variant_id, ticket.folio, part.id)
    return part


def _reserved_parts(ticket_id: int) -> list[TicketPart]:
    return (
        db.session.query(TicketPart)
        .filter_by(ticket_id=ticket_id, state=PartState.RESERVED.value)
        .order_by(TicketPart.id)
        .populate_existing()
        .all()
    )


def _consume_writes(ticket: Ticket, part: TicketPart, actor_user_id: int | None) -> list:
    return [
        _claim_part(part, PartState.CONSUMED),
        guarded_decrement(
            ticket.branch_id,
            part.variant_id,
            part.qty,
            reserved=part.qty,
            error=InsufficientStock(
                "Not enough stock to consume reserved part",
                branch_id=ticket.branch_id,
                variant_id=part.variant_id,
                part_id=part.id,
                requested=part.qty,
            ),
        ),
        Movement(
            branch_id=ticket.branch_id,
            variant_id=part.variant_id,
            type=MovementType.OUT.value,
            quantity=part.qty,
            ticket_id=ticket.id,
            reason=f"Consumed by ticket {ticket.folio}",
            user_id=actor_user_id,
        ),
    ]


def _release_writes(ticket: Ticket, part: TicketPart) -> list:
    stock = StockLevel.__table__
    return [
        _claim_part(part, PartState.RELEASED),
        Guarded(
            update(stock)
            .where(
                stock.c.branch_id == ticket.branch_id,
                stock.c.variant_id == part.variant_id,
                stock.c.reserved >= part.qty,
            )
            .values(reserved=stock.c.reserved - part.qty),
            error=ConcurrencyConflict(
                "Reserved counter is lower than the part being released",
                branch_id=ticket.branch_id,
                variant_id=part.variant_id,
                part_id=part.id,
            ),
        ),
    ]


def _settle(ticket: Ticket, target: PartState, build_writes, parts=None) -> SettlementResult:
    result = SettlementResult(target=target)
    for part in parts if parts is not None else _reserved_parts(ticket.id):
        part_id = part.id
        try:
            atomic_batch(*build_writes(part))
        except PartAlreadySettled:
            logger.info("Part %s of ticket %s already settled; skipping", part_id, ticket.folio)
            result.skipped.append(part_id)
            continue
        except WorkflowError as exc:
            logger.error(
                "Could not move part %s of ticket %s to %s: %s",
                part_id, ticket.folio, target.value, exc.message,
            )
            result.failed.append({"part_id": part_id, **exc.as_dict()})
            continue
        result.settled.append(part_id)
    return result


def consume_reserved_parts(ticket: Ticket, *, actor_user_id: int | None = None, parts=None) -> SettlementResult:
    """
    RESERVED -> CONSUMED for every reserved part of the ticket.

    Per part, one batch: claim the part, decrement qty and reserved, append
    an OUT movement referencing the ticket.
    """
    return _settle(
        ticket,
        PartState.CONSUMED,
        lambda part: _consume_writes(ticket, part, actor_user_id),
        parts,
    )


def release_reserved_parts(ticket: Ticket) -> SettlementResult:
    """
    RESERVED -> RELEASED for every reserved part of the ticket.

    Nothing left the shelf, so only the reserved counter moves; no movement is recorded.
    """
    return _settle(
        ticket,
        PartState.RELEASED,
        lambda part: _release_writes(ticket, part),
    )
