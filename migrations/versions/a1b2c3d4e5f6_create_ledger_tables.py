"""create ledger tables

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "a1b2c3d4e5f6"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

voucher_type = sa.Enum("IN", "OUT", "TRANSFER", name="vouchertype")
payment_method = sa.Enum("BAR", "BANK", name="paymentmethod")
sphere = sa.Enum("IDEELL", "ZWECK", "VERMOEGEN", "WGB", name="sphere")
tax_mode = sa.Enum("NET", "GROSS", name="taxmode")
cash_advance_status = sa.Enum("OPEN", "RESOLVED", "OVERDUE", name="cashadvancestatus")


def upgrade() -> None:
    op.create_table(
        "custom_categories",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("color", sa.String(length=20), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("amount_planned", sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=True),
        sa.Column("category_name", sa.String(length=200), nullable=True),
        sa.Column("project_name", sa.String(length=200), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("enforce_time_range", sa.Boolean(), nullable=False),
        sa.Column("color", sa.String(length=20), nullable=True),
        sa.Column("is_archived", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_budgets_year", "budgets", ["year"])

    op.create_table(
        "earmarks",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("budget", sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column("color", sa.String(length=20), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("enforce_time_range", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )

    op.create_table(
        "vouchers",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("seq_no", sa.Integer(), nullable=False),
        sa.Column("voucher_no", sa.String(length=20), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("type", voucher_type, nullable=False),
        sa.Column("sphere", sphere, nullable=True),
        sa.Column("category_id", sa.Integer(), nullable=True),
        sa.Column("payment_method", payment_method, nullable=True),
        sa.Column("transfer_from", payment_method, nullable=True),
        sa.Column("transfer_to", payment_method, nullable=True),
        sa.Column("tax_mode", tax_mode, nullable=False),
        sa.Column("net_amount", sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column("vat_rate", sa.Integer(), nullable=False),
        sa.Column("vat_amount", sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column("gross_amount", sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("counterparty", sa.String(length=200), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(["category_id"], ["custom_categories.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_vouchers_voucher_no", "vouchers", ["voucher_no"], unique=True)
    op.create_index("ix_vouchers_date", "vouchers", ["date"])
    op.create_index("ix_vouchers_date_seq", "vouchers", ["date", "seq_no"])

    op.create_table(
        "voucher_budgets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("voucher_id", sa.Integer(), nullable=False),
        sa.Column("budget_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["voucher_id"], ["vouchers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["budget_id"], ["budgets.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("voucher_id", "budget_id", name="uq_voucher_budget"),
    )
    op.create_index("ix_voucher_budgets_voucher_id", "voucher_budgets", ["voucher_id"])
    op.create_index("ix_voucher_budgets_budget_id", "voucher_budgets", ["budget_id"])

    op.create_table(
        "voucher_earmarks",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("voucher_id", sa.Integer(), nullable=False),
        sa.Column("earmark_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["voucher_id"], ["vouchers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["earmark_id"], ["earmarks.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("voucher_id", "earmark_id", name="uq_voucher_earmark"),
    )
    op.create_index("ix_voucher_earmarks_voucher_id", "voucher_earmarks", ["voucher_id"])
    op.create_index("ix_voucher_earmarks_earmark_id", "voucher_earmarks", ["earmark_id"])

    op.create_table(
        "voucher_tags",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("voucher_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.ForeignKeyConstraint(["voucher_id"], ["vouchers.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("voucher_id", "name", name="uq_voucher_tag"),
    )
    op.create_index("ix_voucher_tags_voucher_id", "voucher_tags", ["voucher_id"])

    op.create_table(
        "voucher_taxonomy_terms",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("voucher_id", sa.Integer(), nullable=False),
        sa.Column("taxonomy_id", sa.Integer(), nullable=False),
        sa.Column("term_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["voucher_id"], ["vouchers.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("voucher_id", "taxonomy_id", name="uq_voucher_taxonomy"),
    )
    op.create_index("ix_voucher_taxonomy_terms_voucher_id", "voucher_taxonomy_terms", ["voucher_id"])

    op.create_table(
        "cash_advances",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("order_number", sa.String(length=30), nullable=False),
        sa.Column("holder_name", sa.String(length=200), nullable=False),
        sa.Column("purpose", sa.Text(), nullable=True),
        sa.Column("total_amount", sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column("status", cash_advance_status, nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("counter_voucher_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["counter_voucher_id"], ["vouchers.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_number"),
    )

    op.create_table(
        "cash_advance_partials",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("cash_advance_id", sa.Integer(), nullable=False),
        sa.Column("recipient_name", sa.String(length=200), nullable=False),
        sa.Column("amount", sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column("issued_at", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_settled", sa.Boolean(), nullable=False),
        sa.Column("settled_amount", sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column("settled_at", sa.Date(), nullable=True),
        sa.ForeignKeyConstraint(["cash_advance_id"], ["cash_advances.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_cash_advance_partials_cash_advance_id", "cash_advance_partials", ["cash_advance_id"])


def downgrade() -> None:
    op.drop_index("ix_cash_advance_partials_cash_advance_id", table_name="cash_advance_partials")
    op.drop_table("cash_advance_partials")
    op.drop_table("cash_advances")
    op.drop_index("ix_voucher_taxonomy_terms_voucher_id", table_name="voucher_taxonomy_terms")
    op.drop_table("voucher_taxonomy_terms")
    op.drop_index("ix_voucher_tags_voucher_id", table_name="voucher_tags")
    op.drop_table("voucher_tags")
    op.drop_index("ix_voucher_earmarks_earmark_id", table_name="voucher_earmarks")
    op.drop_index("ix_voucher_earmarks_voucher_id", table_name="voucher_earmarks")
    op.drop_table("voucher_earmarks")
    op.drop_index("ix_voucher_budgets_budget_id", table_name="voucher_budgets")
    op.drop_index("ix_voucher_budgets_voucher_id", table_name="voucher_budgets")
    op.drop_table("voucher_budgets")
    op.drop_index("ix_vouchers_date_seq", table_name="vouchers")
    op.drop_index("ix_vouchers_date", table_name="vouchers")
    op.drop_index("ix_vouchers_voucher_no", table_name="vouchers")
    op.drop_table("vouchers")
    op.drop_table("earmarks")
    op.drop_index("ix_budgets_year", table_name="budgets")
    op.drop_table("budgets")
    op.drop_table("custom_categories")

    bind = op.get_bind()
    for enum_type in (cash_advance_status, tax_mode, sphere, payment_method, voucher_type):
        enum_type.drop(bind, checkfirst=True)
