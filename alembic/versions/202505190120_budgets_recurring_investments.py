"""category budgets, recurring transactions and investments

Revision ID: 202505190120
Revises: 202505170740
Create Date: 2025-05-19 01:20:49.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202505190120"
down_revision = "202505170740"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("categories") as batch:
        batch.add_column(sa.Column("budget_cents", sa.Integer()))
        batch.create_check_constraint(
            "ck_categories_budget_positive",
            "budget_cents IS NULL OR budget_cents >= 0",
        )

    with op.batch_alter_table("transactions") as batch:
        batch.add_column(
            sa.Column(
                "is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()
            )
        )
        batch.add_column(
            sa.Column(
                "recurring_interval",
                sa.Enum(
                    "daily", "weekly", "monthly", "yearly", name="recurringinterval"
                ),
            )
        )
        batch.add_column(sa.Column("recurring_end_date", sa.Date()))
        batch.add_column(sa.Column("origin_transaction_id", sa.Integer()))
        batch.add_column(sa.Column("occurrence_date", sa.Date()))
        batch.create_foreign_key(
            "fk_transactions_origin",
            "transactions",
            ["origin_transaction_id"],
            ["id"],
            ondelete="SET NULL",
        )
        batch.create_unique_constraint(
            "uq_txn_origin_occurrence", ["origin_transaction_id", "occurrence_date"]
        )

    op.create_table(
        "investments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "stocks",
                "crypto",
                "bonds",
                "real_estate",
                "other",
                name="investmenttype",
            ),
            nullable=False,
        ),
        sa.Column("invested_cents", sa.Integer(), nullable=False),
        sa.Column("current_value_cents", sa.Integer(), nullable=False),
        sa.Column("purchase_date", sa.Date(), nullable=False),
        sa.Column(
            "risk_level",
            sa.Enum("low", "medium", "high", name="risklevel"),
            nullable=False,
        ),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "invested_cents > 0", name="ck_investment_invested_positive"
        ),
        sa.CheckConstraint(
            "current_value_cents > 0", name="ck_investment_value_positive"
        ),
    )
    op.create_index("ix_investments_user", "investments", ["user_id"])


def downgrade():
    op.drop_index("ix_investments_user", table_name="investments")
    op.drop_table("investments")

    with op.batch_alter_table("transactions") as batch:
        batch.drop_constraint("uq_txn_origin_occurrence", type_="unique")
        batch.drop_constraint("fk_transactions_origin", type_="foreignkey")
        batch.drop_column("occurrence_date")
        batch.drop_column("origin_transaction_id")
        batch.drop_column("recurring_end_date")
        batch.drop_column("recurring_interval")
        batch.drop_column("is_recurring")

    with op.batch_alter_table("categories") as batch:
        batch.drop_constraint("ck_categories_budget_positive", type_="check")
        batch.drop_column("budget_cents")
