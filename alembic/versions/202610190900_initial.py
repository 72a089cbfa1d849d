"""initial schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


ACCOUNT_TYPES = ("cash", "upi", "credit_card", "bank")
TRANSACTION_TYPES = ("income", "expense", "transfer")
PERIODS = ("daily", "weekly", "monthly", "quarterly", "yearly")


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", sa.Enum(*ACCOUNT_TYPES, name="accounttype"), nullable=False),
        sa.Column("sub_type", sa.String(length=100)),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "initial_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("credit_limit_cents", sa.Integer()),
        sa.Column("upi_id", sa.String(length=100)),
        sa.Column("payment_due_day", sa.Integer()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("deleted_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "payment_due_day IS NULL OR (payment_due_day >= 1 AND payment_due_day <= 31)",
            name="ck_accounts_payment_due_day",
        ),
    )
    op.create_index("ix_accounts_user_type", "accounts", ["user_id", "type"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "type", sa.Enum(*TRANSACTION_TYPES, name="transactiontype"), nullable=False
        ),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("sub_category", sa.String(length=100)),
        sa.Column("description", sa.String(length=200)),
        sa.Column("notes", sa.Text()),
        sa.Column("payment_method", sa.String(length=50)),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("transfer_account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        sa.Column("transfer_peer_id", sa.Integer(), sa.ForeignKey("transactions.id")),
        sa.Column("deleted_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_account", "transactions", ["user_id", "account_id"]
    )
    op.create_index(
        "ix_transactions_user_type_date", "transactions", ["user_id", "type", "date"]
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column(
            "budget_type",
            sa.Enum("overall", "category", "account", name="budgettype"),
            nullable=False,
        ),
        sa.Column("scope_categories", sa.JSON(), nullable=False),
        sa.Column("scope_account_types", sa.JSON(), nullable=False),
        sa.Column("scope_account_ids", sa.JSON(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("period", sa.Enum(*PERIODS, name="budgetperiod"), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column(
            "warning_threshold", sa.Integer(), nullable=False, server_default="80"
        ),
        sa.Column(
            "critical_threshold", sa.Integer(), nullable=False, server_default="100"
        ),
        sa.Column(
            "rollover_enabled", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "rollover_type",
            sa.Enum("remaining", "overspend", name="rollovertype"),
            nullable=False,
            server_default="remaining",
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "current_spent_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "current_transaction_count", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "current_progress_percentage",
            sa.Integer(),
            nullable=False,
            server_default="0",
        ),
        sa.Column("current_last_calculated", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents >= 0", name="ck_budgets_amount_positive"),
    )
    op.create_index("ix_budgets_user_active", "budgets", ["user_id", "is_active"])
    op.create_index("ix_budgets_user_name", "budgets", ["user_id", "name"])

    op.create_table(
        "goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("target_amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "current_amount_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("target_date", sa.Date()),
        sa.Column("category", sa.String(length=100)),
        sa.Column(
            "priority",
            sa.Enum("high", "medium", "low", name="goalpriority"),
            nullable=False,
            server_default="medium",
        ),
        sa.Column("image_url", sa.String(length=500)),
        sa.Column(
            "is_completed", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_goals_user_completed", "goals", ["user_id", "is_completed"])

    op.create_table(
        "goal_contributions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "goal_id",
            sa.Integer(),
            sa.ForeignKey("goals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
    )


def downgrade():
    op.drop_table("goal_contributions")
    op.drop_index("ix_goals_user_completed", table_name="goals")
    op.drop_table("goals")
    op.drop_index("ix_budgets_user_name", table_name="budgets")
    op.drop_index("ix_budgets_user_active", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_transactions_user_type_date", table_name="transactions")
    op.drop_index("ix_transactions_user_account", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_accounts_user_type", table_name="accounts")
    op.drop_table("accounts")
