"""initial schema

Revision ID: 202601050900
Revises:
Create Date: 2026-01-05 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601050900"
down_revision = None
branch_labels = None
depends_on = None


TRANSACTION_TYPE = sa.Enum("Income", "Expense", name="transactiontype")
CATEGORY_TYPE = sa.Enum("Needs", "Wants", "Savings", "Income", name="categorytype")


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", CATEGORY_TYPE, nullable=False),
        sa.Column(
            "color", sa.String(length=7), nullable=False, server_default="#CCCCCC"
        ),
        sa.Column("description", sa.Text()),
        sa.Column(
            "is_predefined", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("type", "name", name="uq_category_type_name"),
    )

    op.create_table(
        "recurring_rules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("recurrence_day", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("contract_end_date", sa.Date()),
        sa.Column("last_processed_date", sa.Date()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "recurrence_day BETWEEN 1 AND 31", name="ck_rule_recurrence_day_range"
        ),
        sa.CheckConstraint("amount_cents >= 0", name="ck_rule_amount_positive"),
        sa.CheckConstraint("start_date <= end_date", name="ck_rule_date_order"),
    )
    op.create_index(
        "ix_recurring_rules_type_start", "recurring_rules", ["type", "start_date"]
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
        ),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column(
            "origin_rule_id",
            sa.Integer(),
            sa.ForeignKey("recurring_rules.id", ondelete="CASCADE"),
        ),
        sa.Column("occurrence_date", sa.Date()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "origin_rule_id",
            "occurrence_date",
            name="uq_txn_origin_occurrence",
        ),
    )
    op.create_index("ix_transactions_date", "transactions", ["transaction_date"])
    op.create_index(
        "ix_transactions_category_date",
        "transactions",
        ["category_id", "transaction_date"],
    )

    op.create_table(
        "budget_rules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date()),
        sa.Column("needs_ratio", sa.Float(), nullable=False),
        sa.Column("wants_ratio", sa.Float(), nullable=False),
        sa.Column("savings_ratio", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_budget_rules_start", "budget_rules", ["start_date"])


def downgrade():
    op.drop_index("ix_budget_rules_start", table_name="budget_rules")
    op.drop_table("budget_rules")
    op.drop_index("ix_transactions_category_date", table_name="transactions")
    op.drop_index("ix_transactions_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_recurring_rules_type_start", table_name="recurring_rules")
    op.drop_table("recurring_rules")
    op.drop_table("categories")
