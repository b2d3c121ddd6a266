"""
Tenant scoping helpers.

Every workflow operation receives org_id explicitly and resolves the entities
it touches through these helpers. An entity that exists but belongs to another
organization is reported exactly like a missing one (NotFound), so callers
cannot probe other tenants.

USAGE:
    branch = require_branch(branch_id, org_id)
    variant = require_variant(variant_id, org_id)
"""

import logging

from flask import current_app

from ..exceptions import NotFound
from ..extensions import db
from ..models import Branch, ProductVariant, Ticket, Sale, CashRegister

logger = logging.getLogger(__name__)


def require_branch(branch_id: int, org_id: int) -> Branch:
    """Return the branch if it exists inside the organization."""
    branch = db.session.query(Branch).filter_by(id=branch_id).first()
    if not branch or branch.org_id != org_id:
        if branch:
            logger.warning("Branch %s requested from org %s (owned by org %s)", branch_id, org_id, branch.org_id)
        raise NotFound("Branch not found", branch_id=branch_id)
    return branch


def require_variant(variant_id: int, org_id: int) -> ProductVariant:
    variant = db.session.query(ProductVariant).filter_by(id=variant_id, org_id=org_id).first()
    if not variant:
        raise NotFound("Variant not found", variant_id=variant_id)
    return variant


def require_ticket(ticket_id: int, org_id: int) -> Ticket:
    ticket = (
        db.session.query(Ticket)
        .join(Branch, Branch.id == Ticket.branch_id)
        .filter(Ticket.id == ticket_id, Branch.org_id == org_id)
        .first()
    )
    if not ticket:
        raise NotFound("Ticket not found", ticket_id=ticket_id)
    return ticket


def require_sale(sale_id: int, org_id: int) -> Sale:
    sale = (
        db.session.query(Sale)
        .join(Branch, Branch.id == Sale.branch_id)
        .filter(Sale.id == sale_id, Branch.org_id == org_id)
        .first()
    )
    if not sale:
        raise NotFound("Sale not found", sale_id=sale_id)
    return sale


def require_cash_register(cash_register_id: int, org_id: int, branch_id: int | None = None) -> CashRegister:
    query = (
        db.session.query(CashRegister)
        .join(Branch, Branch.id == CashRegister.branch_id)
        .filter(CashRegister.id == cash_register_id, Branch.org_id == org_id)
    )
    if branch_id is not None:
        query = query.filter(CashRegister.branch_id == branch_id)
    register = query.first()
    if not register:
        raise NotFound("Cash register not found", cash_register_id=cash_register_id)
    return register


def paginate(query, page: int | None = None, page_size: int | None = None) -> dict:
    """Apply page/page_size to a query and return {data, pagination}."""
    page = max(int(page or 1), 1)
    page_size = int(page_size or current_app.config.get("DEFAULT_PAGE_SIZE", 50))
    page_size = min(max(page_size, 1), current_app.config.get("MAX_PAGE_SIZE", 500))

    total = query.order_by(None).count()
    rows = query.offset((page - 1) * page_size).limit(page_size).all()

    return {
        "data": rows,
        "pagination": {
            "page": page,
            "page_size": page_size,
            "total": total,
            "total_pages": (total + page_size - 1) // page_size,
        },
    }
