from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class CashRegister(db.Model):
    """Physical cash drawer of a branch. Never deleted; deactivate instead."""
    __tablename__ = "cash_registers"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "code", name="uq_cash_registers_branch_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(128), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    branch = db.relationship("Branch", backref=db.backref("cash_registers", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class CashCut(db.Model):
    """
    Daily settlement snapshot of a cash register.

    IMMUTABLE: never updated. Corrections go into the next cut's adjustments.
    Chained: initial_amount_cents defaults to the previous cut's final amount.
    """
    __tablename__ = "cash_cuts"
    __table_args__ = (
        db.UniqueConstraint("cash_register_id", "date", name="uq_cash_cuts_register_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False, index=True)

    initial_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    sales_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    sales_card_cents = db.Column(db.Integer, nullable=False, default=0)
    sales_transfer_cents = db.Column(db.Integer, nullable=False, default=0)
    advances_cents = db.Column(db.Integer, nullable=False, default=0)
    adjustments_cents = db.Column(db.Integer, nullable=False, default=0)
    total_income_cents = db.Column(db.Integer, nullable=False, default=0)
    final_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    cash_register = db.relationship("CashRegister", backref=db.backref("cuts", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cash_register_id": self.cash_register_id,
            "branch_id": self.branch_id,
            "date": self.date.isoformat() if self.date else None,
            "initial_amount_cents": self.initial_amount_cents,
            "sales_cash_cents": self.sales_cash_cents,
            "sales_card_cents": self.sales_card_cents,
            "sales_transfer_cents": self.sales_transfer_cents,
            "advances_cents": self.advances_cents,
            "adjustments_cents": self.adjustments_cents,
            "total_income_cents": self.total_income_cents,
            "final_amount_cents": self.final_amount_cents,
            "notes": self.notes,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
