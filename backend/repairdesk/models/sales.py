from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .enums import SaleStatus


class Sale(db.Model):
    """
    Sale document.

    Lines and totals are fixed at creation. `status` (PENDING/PAID) is the only
    mutable column and is driven by the payment reconciler.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "folio", name="uq_sales_branch_folio"),
        db.Index("ix_sales_branch_status_created", "branch_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    folio = db.Column(db.String(64), nullable=False)

    customer_id = db.Column(db.Integer, nullable=True, index=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=SaleStatus.PENDING.value, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    branch = db.relationship("Branch")
    ticket = db.relationship("Ticket", backref=db.backref("sales", lazy=True))
    lines = db.relationship(
        "SaleLine",
        backref="sale",
        lazy=True,
        order_by="SaleLine.id",
        cascade="all, delete-orphan",
    )
    payments = db.relationship(
        "Payment",
        backref="sale",
        lazy=True,
        order_by="Payment.id",
        cascade="all, delete-orphan",
    )

    @property
    def paid_cents(self) -> int:
        return sum(p.amount_cents for p in self.payments)

    @property
    def balance_cents(self) -> int:
        return self.total_cents - self.paid_cents

    def to_dict(self, include_children: bool = False) -> dict:
        data = {
            "id": self.id,
            "branch_id": self.branch_id,
            "folio": self.folio,
            "customer_id": self.customer_id,
            "ticket_id": self.ticket_id,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_children:
            data["lines"] = [line.to_dict() for line in self.lines]
            data["payments"] = [p.to_dict() for p in self.payments]
            data["paid_cents"] = self.paid_cents
            data["balance_cents"] = self.balance_cents
        return data


class SaleLine(db.Model):
    """Individual line on a sale; variant_id is empty for service/labour lines."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    description = db.Column(db.String(255), nullable=False)
    qty = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "variant_id": self.variant_id,
            "description": self.description,
            "qty": self.qty,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
        }


class Payment(db.Model):
    """
    Money received against a sale. Append-only.

    METHODS: CASH, CARD, TRANSFER
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(16), nullable=False)
    reference = db.Column(db.String(128), nullable=True)
    user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "reference": self.reference,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
