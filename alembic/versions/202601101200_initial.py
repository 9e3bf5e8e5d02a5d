"""initial schema

Revision ID: 202601101200
Revises:
Create Date: 2026-01-10 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601101200"
down_revision = None
branch_labels = None
depends_on = None


CURRENCY = sa.Enum("DOP", "USD", name="currency")
TRANSACTION_TYPE = sa.Enum("income", "expense", "transfer", name="transactiontype")


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("bank", sa.String(length=100), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "payroll",
                "savings",
                "checking",
                "business",
                "credit-card",
                name="accounttype",
            ),
            nullable=False,
        ),
        sa.Column("currency", CURRENCY, nullable=False),
        sa.Column("account_number", sa.String(length=34)),
        sa.Column("card_number", sa.String(length=19)),
        sa.Column(
            "card_brand",
            sa.Enum(
                "visa", "mastercard", "american-express", "other", name="cardbrand"
            ),
        ),
        sa.Column(
            "is_frozen", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_accounts_user_name", "accounts", ["user_id", "name"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency", CURRENCY, nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("time", sa.Time()),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column(
            "transfer_to_account_id", sa.Integer(), sa.ForeignKey("accounts.id")
        ),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column(
            "description", sa.String(length=200), nullable=False, server_default=""
        ),
        sa.Column("receipt_url", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        sa.CheckConstraint(
            "(type = 'transfer') = (transfer_to_account_id IS NOT NULL)",
            name="ck_transactions_transfer_destination",
        ),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_account", "transactions", ["user_id", "account_id"]
    )
    op.create_index(
        "ix_transactions_user_type_date", "transactions", ["user_id", "type", "date"]
    )

    op.create_table(
        "recurring_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("currency", CURRENCY, nullable=False),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column(
            "frequency",
            sa.Enum("weekly", "monthly", "yearly", name="recurringfrequency"),
            nullable=False,
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_recurring_amount_positive"),
        sa.CheckConstraint("type != 'transfer'", name="ck_recurring_not_transfer"),
    )

    op.create_table(
        "tasks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("time", sa.Time()),
        sa.Column(
            "is_completed", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("completed_at", sa.DateTime()),
        sa.Column("transaction_id", sa.Integer(), sa.ForeignKey("transactions.id")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_tasks_user_due", "tasks", ["user_id", "due_date"])

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency", CURRENCY, nullable=False, server_default="DOP"),
        sa.Column(
            "period", sa.String(length=20), nullable=False, server_default="monthly"
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "category", name="uq_budget_user_category"),
        sa.CheckConstraint("amount > 0", name="ck_budget_amount_positive"),
    )


def downgrade():
    op.drop_table("budgets")
    op.drop_index("ix_tasks_user_due", table_name="tasks")
    op.drop_table("tasks")
    op.drop_table("recurring_transactions")
    op.drop_index("ix_transactions_user_type_date", table_name="transactions")
    op.drop_index("ix_transactions_user_account", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_accounts_user_name", table_name="accounts")
    op.drop_table("accounts")
