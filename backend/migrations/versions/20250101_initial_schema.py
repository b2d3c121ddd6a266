"""Initial workflow schema: tenancy, stock ledger, folios, tickets, sales, cash cuts

Revision ID: 20250101_initial
Revises:
Create Date: 2025-01-01
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20250101_initial"
down_revision = None
branch_labels = None
depends_on = None


def _id():
    return sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True)


def _created_at(server_default=False):
    if server_default:
        return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)


def upgrade():
    op.create_table(
        "organizations",
        _id(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("code", sa.String(32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _created_at(server_default=True),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_organizations_code", "organizations", ["code"], unique=True)
    op.create_index("ix_organizations_is_active", "organizations", ["is_active"])

    op.create_table(
        "branches",
        _id(),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _created_at(server_default=True),
        sa.UniqueConstraint("org_id", "code", name="uq_branches_org_code"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_branches_org_id", "branches", ["org_id"])

    op.create_table(
        "product_variants",
        _id(),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.UniqueConstraint("org_id", "sku", name="uq_product_variants_org_sku"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_product_variants_org_id", "product_variants", ["org_id"])

    op.create_table(
        "stock_levels",
        _id(),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("variant_id", sa.Integer(), sa.ForeignKey("product_variants.id"), nullable=False),
        sa.Column("qty", sa.Integer(), nullable=False),
        sa.Column("reserved", sa.Integer(), nullable=False),
        sa.Column("min_qty", sa.Integer(), nullable=False),
        sa.Column("max_qty", sa.Integer(), nullable=False),
        sa.UniqueConstraint("branch_id", "variant_id", name="uq_stock_levels_branch_variant"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_levels_branch_id", "stock_levels", ["branch_id"])
    op.create_index("ix_stock_levels_variant_id", "stock_levels", ["variant_id"])

    op.create_table(
        "folio_sequences",
        _id(),
        sa.Column("prefix", sa.String(16), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("period", sa.String(6), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("prefix", "branch_id", "period", name="uq_folio_sequences_key"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_folio_sequences_branch_id", "folio_sequences", ["branch_id"])

    op.create_table(
        "tickets",
        _id(),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("folio", sa.String(64), nullable=False),
        sa.Column("customer_name", sa.String(255), nullable=False),
        sa.Column("customer_phone", sa.String(32), nullable=True),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("device", sa.String(128), nullable=False),
        sa.Column("brand", sa.String(64), nullable=True),
        sa.Column("model", sa.String(64), nullable=True),
        sa.Column("serial_number", sa.String(128), nullable=True),
        sa.Column("problem", sa.Text(), nullable=False),
        sa.Column("diagnosis", sa.Text(), nullable=True),
        sa.Column("solution", sa.Text(), nullable=True),
        sa.Column("internal_notes", sa.Text(), nullable=True),
        sa.Column("state", sa.String(16), nullable=False),
        sa.Column("estimated_cost_cents", sa.Integer(), nullable=True),
        sa.Column("final_cost_cents", sa.Integer(), nullable=True),
        sa.Column("advance_payment_cents", sa.Integer(), nullable=False),
        sa.Column("estimated_time", sa.String(64), nullable=True),
        sa.Column("warranty_days", sa.Integer(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("branch_id", "folio", name="uq_tickets_branch_folio"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_tickets_branch_id", "tickets", ["branch_id"])
    op.create_index("ix_tickets_state", "tickets", ["state"])
    op.create_index("ix_tickets_branch_state", "tickets", ["branch_id", "state"])

    op.create_table(
        "ticket_parts",
        _id(),
        sa.Column("ticket_id", sa.Integer(), sa.ForeignKey("tickets.id"), nullable=False),
        sa.Column("variant_id", sa.Integer(), sa.ForeignKey("product_variants.id"), nullable=False),
        sa.Column("qty", sa.Integer(), nullable=False),
        sa.Column("state", sa.String(16), nullable=False),
        _created_at(),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_ticket_parts_ticket_id", "ticket_parts", ["ticket_id"])
    op.create_index("ix_ticket_parts_variant_id", "ticket_parts", ["variant_id"])
    op.create_index("ix_ticket_parts_state", "ticket_parts", ["state"])

    op.create_table(
        "ticket_history",
        _id(),
        sa.Column("ticket_id", sa.Integer(), sa.ForeignKey("tickets.id"), nullable=False),
        sa.Column("from_state", sa.String(16), nullable=True),
        sa.Column("to_state", sa.String(16), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        _created_at(),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_ticket_history_ticket_id", "ticket_history", ["ticket_id"])

    op.create_table(
        "movements",
        _id(),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("variant_id", sa.Integer(), sa.ForeignKey("product_variants.id"), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("folio", sa.String(64), nullable=True),
        sa.Column("ticket_id", sa.Integer(), sa.ForeignKey("tickets.id"), nullable=True),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        _created_at(),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_movements_branch_id", "movements", ["branch_id"])
    op.create_index("ix_movements_variant_id", "movements", ["variant_id"])
    op.create_index("ix_movements_type", "movements", ["type"])
    op.create_index("ix_movements_folio", "movements", ["folio"])
    op.create_index("ix_movements_ticket_id", "movements", ["ticket_id"])
    op.create_index("ix_movements_user_id", "movements", ["user_id"])
    op.create_index("ix_movements_branch_created", "movements", ["branch_id", "created_at"])

    op.create_table(
        "sales",
        _id(),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("folio", sa.String(64), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("ticket_id", sa.Integer(), sa.ForeignKey("tickets.id"), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        sa.Column("discount_cents", sa.Integer(), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.UniqueConstraint("branch_id", "folio", name="uq_sales_branch_folio"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sales_branch_id", "sales", ["branch_id"])
    op.create_index("ix_sales_customer_id", "sales", ["customer_id"])
    op.create_index("ix_sales_ticket_id", "sales", ["ticket_id"])
    op.create_index("ix_sales_status", "sales", ["status"])
    op.create_index("ix_sales_branch_status_created", "sales", ["branch_id", "status", "created_at"])

    op.create_table(
        "sale_lines",
        _id(),
        sa.Column("sale_id", sa.Integer(), sa.ForeignKey("sales.id"), nullable=False),
        sa.Column("variant_id", sa.Integer(), sa.ForeignKey("product_variants.id"), nullable=True),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("qty", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("discount_cents", sa.Integer(), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sale_lines_sale_id", "sale_lines", ["sale_id"])

    op.create_table(
        "payments",
        _id(),
        sa.Column("sale_id", sa.Integer(), sa.ForeignKey("sales.id"), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(16), nullable=False),
        sa.Column("reference", sa.String(128), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        _created_at(),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_payments_sale_id", "payments", ["sale_id"])

    op.create_table(
        "cash_registers",
        _id(),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _created_at(),
        sa.UniqueConstraint("branch_id", "code", name="uq_cash_registers_branch_code"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_cash_registers_branch_id", "cash_registers", ["branch_id"])

    op.create_table(
        "cash_cuts",
        _id(),
        sa.Column("cash_register_id", sa.Integer(), sa.ForeignKey("cash_registers.id"), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("initial_amount_cents", sa.Integer(), nullable=False),
        sa.Column("sales_cash_cents", sa.Integer(), nullable=False),
        sa.Column("sales_card_cents", sa.Integer(), nullable=False),
        sa.Column("sales_transfer_cents", sa.Integer(), nullable=False),
        sa.Column("advances_cents", sa.Integer(), nullable=False),
        sa.Column("adjustments_cents", sa.Integer(), nullable=False),
        sa.Column("total_income_cents", sa.Integer(), nullable=False),
        sa.Column("final_amount_cents", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.UniqueConstraint("cash_register_id", "date", name="uq_cash_cuts_register_date"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_cash_cuts_cash_register_id", "cash_cuts", ["cash_register_id"])
    op.create_index("ix_cash_cuts_branch_id", "cash_cuts", ["branch_id"])
    op.create_index("ix_cash_cuts_date", "cash_cuts", ["date"])


def downgrade():
    for table in (
        "cash_cuts",
        "cash_registers",
        "payments",
        "sale_lines",
        "sales",
        "movements",
        "ticket_history",
        "ticket_parts",
        "tickets",
        "folio_sequences",
        "stock_levels",
        "product_variants",
        "branches",
        "organizations",
    ):
        op.drop_table(table)
