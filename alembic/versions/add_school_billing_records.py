"""add schools, students and billing tables

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "a1b2c3d4e5f6"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "schools",
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_schools_id"), "schools", ["id"], unique=False)
    op.create_index(op.f("ix_schools_is_active"), "schools", ["is_active"], unique=False)

    op.create_table(
        "students",
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("admission_number", sa.String(50), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("school_id", sa.UUID(), nullable=False),
        sa.ForeignKeyConstraint(["school_id"], ["schools.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_students_id"), "students", ["id"], unique=False)
    op.create_index(op.f("ix_students_school_id"), "students", ["school_id"], unique=False)
    op.create_index(op.f("ix_students_is_active"), "students", ["is_active"], unique=False)

    op.execute("CREATE TYPE billing_type AS ENUM ('setup_fee', 'subscription_fee')")
    op.execute("CREATE TYPE billing_status AS ENUM ('pending', 'paid', 'overdue', 'cancelled')")
    op.create_table(
        "school_billing_records",
        sa.Column("invoice_number", sa.String(32), nullable=False),
        sa.Column("idempotency_key", sa.String(64), nullable=False),
        sa.Column("billing_type", postgresql.ENUM("setup_fee", "subscription_fee",
                  name="billing_type", create_type=False), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", postgresql.ENUM("pending", "paid", "overdue", "cancelled",
                  name="billing_status", create_type=False), nullable=False),
        sa.Column("student_count", sa.Integer(), nullable=True),
        sa.Column("billing_period_start", sa.Date(), nullable=True),
        sa.Column("billing_period_end", sa.Date(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("paid_date", sa.Date(), nullable=True),
        sa.Column("payment_method", sa.String(50), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("school_id", sa.UUID(), nullable=False),
        sa.ForeignKeyConstraint(["school_id"], ["schools.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key", name="uq_billing_records_idempotency_key"),
        sa.UniqueConstraint("invoice_number", name="uq_billing_records_invoice_number"),
        sa.CheckConstraint("amount > 0", name="ck_billing_records_amount_positive"),
        sa.CheckConstraint(
            "billing_period_start IS NULL OR billing_period_end IS NULL "
            "OR billing_period_start <= billing_period_end",
            name="ck_billing_records_period_order",
        ),
    )
    op.create_index(op.f("ix_school_billing_records_id"), "school_billing_records", ["id"], unique=False)
    op.create_index(op.f("ix_school_billing_records_school_id"), "school_billing_records", ["school_id"], unique=False)
    op.create_index(op.f("ix_school_billing_records_billing_type"), "school_billing_records", ["billing_type"], unique=False)
    op.create_index(op.f("ix_school_billing_records_status"), "school_billing_records", ["status"], unique=False)
    op.create_index(op.f("ix_school_billing_records_due_date"), "school_billing_records", ["due_date"], unique=False)

    op.create_table(
        "invoice_sequences",
        sa.Column("billing_type", sa.String(32), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("last_value", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("billing_type", "year"),
    )

    op.create_table(
        "billing_settings",
        sa.Column("setting_key", sa.String(100), nullable=False),
        sa.Column("setting_value", postgresql.JSONB(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_billing_settings_id"), "billing_settings", ["id"], unique=False)
    op.create_index(op.f("ix_billing_settings_setting_key"), "billing_settings", ["setting_key"], unique=True)


def downgrade() -> None:
    op.drop_index(op.f("ix_billing_settings_setting_key"), table_name="billing_settings")
    op.drop_index(op.f("ix_billing_settings_id"), table_name="billing_settings")
    op.drop_table("billing_settings")
    op.drop_table("invoice_sequences")
    op.drop_index(op.f("ix_school_billing_records_due_date"), table_name="school_billing_records")
    op.drop_index(op.f("ix_school_billing_records_status"), table_name="school_billing_records")
    op.drop_index(op.f("ix_school_billing_records_billing_type"), table_name="school_billing_records")
    op.drop_index(op.f("ix_school_billing_records_school_id"), table_name="school_billing_records")
    op.drop_index(op.f("ix_school_billing_records_id"), table_name="school_billing_records")
    op.drop_table("school_billing_records")
    op.execute("DROP TYPE billing_status")
    op.execute("DROP TYPE billing_type")
    op.drop_index(op.f("ix_students_is_active"), table_name="students")
    op.drop_index(op.f("ix_students_school_id"), table_name="students")
    op.drop_index(op.f("ix_students_id"), table_name="students")
    op.drop_table("students")
    op.drop_index(op.f("ix_schools_is_active"), table_name="schools")
    op.drop_index(op.f("ix_schools_id"), table_name="schools")
    op.drop_table("schools")
