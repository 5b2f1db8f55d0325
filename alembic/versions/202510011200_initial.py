"""initial obligations schema

Revision ID: 202510011200
Revises:
Create Date: 2025-10-01 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202510011200"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        *_timestamps(),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("amount", sa.String(length=40), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        *_timestamps(),
    )
    op.create_index("ix_transactions_date", "transactions", ["date"])

    op.create_table(
        "obligation_definitions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("notes", sa.Text(), nullable=False),
        sa.Column("amount", sa.String(length=40), nullable=False),
        sa.Column("recurrence_interval_months", sa.Integer(), nullable=False),
        sa.Column("first_occurrence_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date()),
        sa.Column("lead_time_months", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column(
            "saving_strategy",
            sa.Enum(
                "disabled",
                "evenly_distributed",
                "custom_monthly",
                name="savingstrategy",
            ),
            nullable=False,
        ),
        sa.Column("custom_monthly_saving_amount", sa.String(length=40)),
        sa.Column(
            "date_adjustment_policy",
            sa.Enum(
                "none",
                "move_to_previous_business_day",
                "move_to_next_business_day",
                name="dateadjustmentpolicy",
            ),
            nullable=False,
        ),
        sa.Column("day_pattern", sa.Text()),
        *_timestamps(),
    )

    op.create_table(
        "occurrences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "definition_id",
            sa.Integer(),
            sa.ForeignKey("obligation_definitions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("expected_amount", sa.String(length=40), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "planned", "saving", "completed", "cancelled", name="occurrencestatus"
            ),
            nullable=False,
        ),
        sa.Column("actual_date", sa.Date()),
        sa.Column("actual_amount", sa.String(length=40)),
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id", ondelete="SET NULL"),
        ),
        *_timestamps(),
    )
    op.create_index(
        "ix_occurrences_definition_date",
        "occurrences",
        ["definition_id", "scheduled_date"],
    )

    op.create_table(
        "saving_balances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "definition_id",
            sa.Integer(),
            sa.ForeignKey("obligation_definitions.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("total_saved_amount", sa.String(length=40), nullable=False),
        sa.Column("total_paid_amount", sa.String(length=40), nullable=False),
        sa.Column("last_updated_year", sa.Integer(), nullable=False),
        sa.Column("last_updated_month", sa.Integer(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "savings_goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("target_amount", sa.String(length=40)),
        sa.Column("monthly_saving_amount", sa.String(length=40), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("target_date", sa.Date()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        *_timestamps(),
    )

    op.create_table(
        "savings_goal_withdrawals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "goal_id",
            sa.Integer(),
            sa.ForeignKey("savings_goals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount", sa.String(length=40), nullable=False),
        sa.Column("withdrawn_on", sa.Date(), nullable=False),
        sa.Column("note", sa.Text()),
        *_timestamps(),
    )

    op.create_table(
        "savings_goal_balances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "goal_id",
            sa.Integer(),
            sa.ForeignKey("savings_goals.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("total_saved_amount", sa.String(length=40), nullable=False),
        sa.Column("total_withdrawn_amount", sa.String(length=40), nullable=False),
        sa.Column("last_updated_year", sa.Integer(), nullable=False),
        sa.Column("last_updated_month", sa.Integer(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "custom_holidays",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column(
            "is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
        sa.UniqueConstraint("date", "name", name="uq_custom_holiday_date_name"),
    )


def downgrade():
    op.drop_table("custom_holidays")
    op.drop_table("savings_goal_balances")
    op.drop_table("savings_goal_withdrawals")
    op.drop_table("savings_goals")
    op.drop_table("saving_balances")
    op.drop_index("ix_occurrences_definition_date", table_name="occurrences")
    op.drop_table("occurrences")
    op.drop_table("obligation_definitions")
    op.drop_index("ix_transactions_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("categories")
