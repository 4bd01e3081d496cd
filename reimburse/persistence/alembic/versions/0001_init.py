"""init

Revision ID: 0001_init
Revises: 
Create Date: 2026-10-18 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


_id = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
_json = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "approval_instances",
        sa.Column("id", _id, primary_key=True, autoincrement=True),
        sa.Column("external_instance_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("applicant_user_id", sa.String(), nullable=True),
        sa.Column("department", sa.String(), nullable=True),
        sa.Column("submission_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approval_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("form_data", _json, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    # Idempotent creation relies on this unique index.
    op.create_index(
        "ix_approval_instances_external_instance_id",
        "approval_instances",
        ["external_instance_id"],
        unique=True,
    )
    op.create_index("ix_approval_instances_status", "approval_instances", ["status"])

    op.create_table(
        "approval_history",
        sa.Column("id", _id, primary_key=True, autoincrement=True),
        sa.Column("instance_id", _id, sa.ForeignKey("approval_instances.id"), nullable=False),
        sa.Column("actor_user_id", sa.String(), nullable=True),
        sa.Column("previous_status", sa.String(), nullable=True),
        sa.Column("new_status", sa.String(), nullable=False),
        sa.Column("action_type", sa.String(), nullable=False),
        sa.Column("action_data", _json, nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_approval_history_instance_id", "approval_history", ["instance_id"])

    op.create_table(
        "reimbursement_items",
        sa.Column("id", _id, primary_key=True, autoincrement=True),
        sa.Column("instance_id", _id, sa.ForeignKey("approval_instances.id"), nullable=False),
        sa.Column("item_type", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(), nullable=False),
        sa.Column("expense_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("vendor", sa.String(), nullable=True),
        sa.Column("business_purpose", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_reimbursement_items_instance_id", "reimbursement_items", ["instance_id"])

    op.create_table(
        "approval_tasks",
        sa.Column("id", _id, primary_key=True, autoincrement=True),
        sa.Column("instance_id", _id, sa.ForeignKey("approval_instances.id"), nullable=False),
        sa.Column("external_task_id", sa.String(), nullable=True, unique=True),
        sa.Column("task_type", sa.String(), nullable=False),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("node_id", sa.String(), nullable=True),
        sa.Column("node_name", sa.String(), nullable=True),
        sa.Column("assignee_user_id", sa.String(), nullable=True),
        sa.Column("assignee_open_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_current", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_ai_decision", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("decision", sa.String(), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("result_data", _json, nullable=True),
        sa.Column("violations", _json, nullable=True),
        sa.Column("completed_by", sa.String(), nullable=True),
        sa.Column("notification_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("instance_id", "sequence_number", name="uq_approval_tasks_instance_sequence"),
    )
    op.create_index("ix_approval_tasks_instance_id", "approval_tasks", ["instance_id"])
    op.create_index("ix_approval_tasks_instance_current", "approval_tasks", ["instance_id", "is_current"])

    op.create_table(
        "attachments",
        sa.Column("id", _id, primary_key=True, autoincrement=True),
        sa.Column("instance_id", _id, sa.ForeignKey("approval_instances.id"), nullable=False),
        sa.Column("item_id", _id, sa.ForeignKey("reimbursement_items.id"), nullable=True),
        sa.Column("external_instance_id", sa.String(), nullable=False),
        sa.Column("file_name", sa.String(), nullable=False),
        sa.Column("url", sa.String(), nullable=True),
        sa.Column("file_path", sa.String(), nullable=True),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("mime_type", sa.String(), nullable=True),
        sa.Column("file_type", sa.String(), nullable=False),
        sa.Column("download_status", sa.String(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("audit_result", _json, nullable=True),
        sa.Column("downloaded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("instance_id", "url", name="uq_attachments_instance_url"),
    )
    op.create_index("ix_attachments_instance_id", "attachments", ["instance_id"])
    # Both workers poll by status in id order.
    op.create_index("ix_attachments_status_id", "attachments", ["download_status", "id"])

    op.create_table(
        "invoices",
        sa.Column("id", _id, primary_key=True, autoincrement=True),
        sa.Column("instance_id", _id, sa.ForeignKey("approval_instances.id"), nullable=False),
        sa.Column("attachment_id", _id, sa.ForeignKey("attachments.id"), nullable=False, unique=True),
        sa.Column("item_id", _id, nullable=True),
        sa.Column("invoice_code", sa.String(), nullable=False),
        sa.Column("invoice_number", sa.String(), nullable=False),
        sa.Column("unique_id", sa.String(), nullable=False),
        sa.Column("invoice_date", sa.String(), nullable=True),
        sa.Column("invoice_amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("seller_name", sa.String(), nullable=True),
        sa.Column("seller_tax_id", sa.String(), nullable=True),
        sa.Column("buyer_name", sa.String(), nullable=True),
        sa.Column("buyer_tax_id", sa.String(), nullable=True),
        sa.Column("extracted_data", _json, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_invoices_instance_id", "invoices", ["instance_id"])
    op.create_index("ix_invoices_unique_id", "invoices", ["unique_id"], unique=True)

    op.create_table(
        "audit_notifications",
        sa.Column("id", _id, primary_key=True, autoincrement=True),
        sa.Column("instance_id", _id, sa.ForeignKey("approval_instances.id"), nullable=False),
        sa.Column("external_instance_id", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("decision", sa.String(), nullable=True),
        sa.Column("recipient_open_id", sa.String(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_audit_notifications_instance_kind", "audit_notifications", ["instance_id", "kind"]
    )

    op.create_table(
        "generated_vouchers",
        sa.Column("id", _id, primary_key=True, autoincrement=True),
        sa.Column("instance_id", _id, sa.ForeignKey("approval_instances.id"), nullable=False, unique=True),
        sa.Column("voucher_number", sa.String(), nullable=False, unique=True),
        sa.Column("file_path", sa.String(), nullable=False),
        sa.Column("attachment_paths", _json, nullable=True),
        sa.Column("accountant_email", sa.String(), nullable=True),
        sa.Column("email_message_id", sa.String(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("generated_vouchers")
    op.drop_index("ix_audit_notifications_instance_kind", table_name="audit_notifications")
    op.drop_table("audit_notifications")
    op.drop_index("ix_invoices_unique_id", table_name="invoices")
    op.drop_index("ix_invoices_instance_id", table_name="invoices")
    op.drop_table("invoices")
    op.drop_index("ix_attachments_status_id", table_name="attachments")
    op.drop_index("ix_attachments_instance_id", table_name="attachments")
    op.drop_table("attachments")
    op.drop_index("ix_approval_tasks_instance_current", table_name="approval_tasks")
    op.drop_index("ix_approval_tasks_instance_id", table_name="approval_tasks")
    op.drop_table("approval_tasks")
    op.drop_index("ix_reimbursement_items_instance_id", table_name="reimbursement_items")
    op.drop_table("reimbursement_items")
    op.drop_index("ix_approval_history_instance_id", table_name="approval_history")
    op.drop_table("approval_history")
    op.drop_index("ix_approval_instances_status", table_name="approval_instances")
    op.drop_index("ix_approval_instances_external_instance_id", table_name="approval_instances")
    op.drop_table("approval_instances")
