from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class ProductVariant(db.Model):
    """
    Sellable/stockable item variant (e.g. "Screen iPhone 12 - black").

    Catalog maintenance is handled elsewhere; the workflow engine only needs
    the tenant, an identifier and a default price.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.UniqueConstraint("org_id", "sku", name="uq_product_variants_org_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    price_cents = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
        }


class StockLevel(db.Model):
    """
    Derived per-(branch, variant) counters maintained by the stock ledger.

    qty: on hand. reserved: pledged to repair tickets, not yet consumed.

    INVARIANTS:
    - qty >= 0 after every applied movement (guarded conditional decrements)
    - reserved <= qty is the business rule but is NOT enforced atomically
    - rows are created lazily (upsert) and never deleted
    """
    __tablename__ = "stock_levels"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "variant_id", name="uq_stock_levels_branch_variant"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)

    qty = db.Column(db.Integer, nullable=False, default=0)
    reserved = db.Column(db.Integer, nullable=False, default=0)
    min_qty = db.Column(db.Integer, nullable=False, default=0)
    max_qty = db.Column(db.Integer, nullable=False, default=1000)

    variant = db.relationship("ProductVariant")

    @property
    def available(self) -> int:
        return self.qty - self.reserved

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "variant_id": self.variant_id,
            "qty": self.qty,
            "reserved": self.reserved,
            "available": self.available,
            "min_qty": self.min_qty,
            "max_qty": self.max_qty,
        }


class Movement(db.Model):
    """
    Immutable stock movement (append-only audit trail).

    quantity is always positive; the direction comes from `type`
    (ADJUST rows store the signed delta).
    """
    __tablename__ = "movements"
    __table_args__ = (
        db.Index("ix_movements_branch_created", "branch_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    folio = db.Column(db.String(64), nullable=True, index=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id"), nullable=True, index=True)
    reason = db.Column(db.String(255), nullable=True)

    user_id = db.Column(db.Integer, nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    variant = db.relationship("ProductVariant")

    def __repr__(self) -> str:
        return f"<Movement id={self.id} type={self.type} qty={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "variant_id": self.variant_id,
            "type": self.type,
            "quantity": self.quantity,
            "folio": self.folio,
            "ticket_id": self.ticket_id,
            "reason": self.reason,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
