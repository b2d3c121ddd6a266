from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .enums import PartState, TicketState


class Ticket(db.Model):
    """
    Repair order.

    LIFECYCLE: RECEIVED -> ... -> DELIVERED | CANCELLED (see ticket_service).
    `state` is only ever written by ticket_service.transition through a
    compare-and-set update on the previously observed state.
    Tickets are never deleted; cancellation is a terminal state.
    """
    __tablename__ = "tickets"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "folio", name="uq_tickets_branch_folio"),
        db.Index("ix_tickets_branch_state", "branch_id", "state"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    folio = db.Column(db.String(64), nullable=False)

    # Customer
    customer_name = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)

    # Device
    device = db.Column(db.String(128), nullable=False)
    brand = db.Column(db.String(64), nullable=True)
    model = db.Column(db.String(64), nullable=True)
    serial_number = db.Column(db.String(128), nullable=True)

    problem = db.Column(db.Text, nullable=False)
    diagnosis = db.Column(db.Text, nullable=True)
    solution = db.Column(db.Text, nullable=True)
    internal_notes = db.Column(db.Text, nullable=True)

    state = db.Column(db.String(16), nullable=False, default=TicketState.RECEIVED.value, index=True)

    # Money (cents)
    estimated_cost_cents = db.Column(db.Integer, nullable=True)
    final_cost_cents = db.Column(db.Integer, nullable=True)
    advance_payment_cents = db.Column(db.Integer, nullable=False, default=0)

    estimated_time = db.Column(db.String(64), nullable=True)
    warranty_days = db.Column(db.Integer, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    branch = db.relationship("Branch")
    parts = db.relationship(
        "TicketPart",
        backref="ticket",
        lazy=True,
        order_by="TicketPart.id",
        cascade="all, delete-orphan",
    )
    history = db.relationship(
        "TicketHistory",
        backref="ticket",
        lazy=True,
        order_by="TicketHistory.id",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Ticket id={self.id} folio={self.folio!r} state={self.state}>"

    def to_dict(self, include_children: bool = False) -> dict:
        data = {
            "id": self.id,
            "branch_id": self.branch_id,
            "folio": self.folio,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_email": self.customer_email,
            "device": self.device,
            "brand": self.brand,
            "model": self.model,
            "serial_number": self.serial_number,
            "problem": self.problem,
            "diagnosis": self.diagnosis,
            "solution": self.solution,
            "internal_notes": self.internal_notes,
            "state": self.state,
            "estimated_cost_cents": self.estimated_cost_cents,
            "final_cost_cents": self.final_cost_cents,
            "advance_payment_cents": self.advance_payment_cents,
            "estimated_time": self.estimated_time,
            "warranty_days": self.warranty_days,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_children:
            data["parts"] = [p.to_dict() for p in self.parts]
            data["history"] = [h.to_dict() for h in self.history]
        return data


class TicketPart(db.Model):
    """
    Part pledged to a ticket.

    LIFECYCLE: RESERVED -> CONSUMED | RELEASED. Both targets are terminal.
    """
    __tablename__ = "ticket_parts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    qty = db.Column(db.Integer, nullable=False)
    state = db.Column(db.String(16), nullable=False, default=PartState.RESERVED.value, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    variant = db.relationship("ProductVariant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "variant_id": self.variant_id,
            "qty": self.qty,
            "state": self.state,
            "created_at": to_utc_z(self.created_at),
        }


class TicketHistory(db.Model):
    """Append-only audit row per ticket state change."""
    __tablename__ = "ticket_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id"), nullable=False, index=True)
    from_state = db.Column(db.String(16), nullable=True)
    to_state = db.Column(db.String(16), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "from_state": self.from_state,
            "to_state": self.to_state,
            "notes": self.notes,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
