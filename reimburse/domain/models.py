from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# SQLite only autoincrements INTEGER primary keys; Postgres keeps BIGINT.
IdType = BigInteger().with_variant(Integer(), "sqlite")
JsonType = JSON().with_variant(JSONB(), "postgresql")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class ApprovalInstance(Base):
    __tablename__ = "approval_instances"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    # Remote platform instance code; the natural key for idempotent creation.
    external_instance_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    status: Mapped[str] = mapped_column(String, index=True)
    applicant_user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    department: Mapped[str | None] = mapped_column(String, nullable=True)
    submission_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    approval_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    form_data: Mapped[dict[str, Any]] = mapped_column(JsonType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class ApprovalHistory(Base):
    __tablename__ = "approval_history"

    # Append-only trail; every status write has exactly one row here.
    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    instance_id: Mapped[int] = mapped_column(IdType, ForeignKey("approval_instances.id"), index=True)
    actor_user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    previous_status: Mapped[str | None] = mapped_column(String, nullable=True)
    new_status: Mapped[str] = mapped_column(String)
    action_type: Mapped[str] = mapped_column(String)
    action_data: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class ReimbursementItem(Base):
    __tablename__ = "reimbursement_items"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    instance_id: Mapped[int] = mapped_column(IdType, ForeignKey("approval_instances.id"), index=True)
    item_type: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[float] = mapped_column(Float, default=0.0)
    currency: Mapped[str] = mapped_column(String, default="CNY")
    expense_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    vendor: Mapped[str | None] = mapped_column(String, nullable=True)
    business_purpose: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class ApprovalTask(Base):
    __tablename__ = "approval_tasks"
    __table_args__ = (
        # One AI review per instance: it always sits at sequence 0.
        UniqueConstraint("instance_id", "sequence_number", name="uq_approval_tasks_instance_sequence"),
        Index("ix_approval_tasks_instance_current", "instance_id", "is_current"),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    instance_id: Mapped[int] = mapped_column(IdType, ForeignKey("approval_instances.id"), index=True)
    # NULL for AI review tasks; unique for remote human-review tasks.
    external_task_id: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    task_type: Mapped[str] = mapped_column(String)
    sequence_number: Mapped[int] = mapped_column(Integer)
    node_id: Mapped[str | None] = mapped_column(String, nullable=True)
    node_name: Mapped[str | None] = mapped_column(String, nullable=True)
    assignee_user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    assignee_open_id: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String)
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_current: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_ai_decision: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Decision fields are written only by complete_task.
    decision: Mapped[str | None] = mapped_column(String, nullable=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    result_data: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    violations: Mapped[list[str] | None] = mapped_column(JsonType, nullable=True)
    completed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    notification_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class Attachment(Base):
    __tablename__ = "attachments"
    __table_args__ = (
        Index("ix_attachments_status_id", "download_status", "id"),
        UniqueConstraint("instance_id", "url", name="uq_attachments_instance_url"),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    instance_id: Mapped[int] = mapped_column(IdType, ForeignKey("approval_instances.id"), index=True)
    item_id: Mapped[int | None] = mapped_column(IdType, ForeignKey("reimbursement_items.id"), nullable=True)
    # Denormalized so workers can name storage folders without a join.
    external_instance_id: Mapped[str] = mapped_column(String)
    file_name: Mapped[str] = mapped_column(String)
    url: Mapped[str | None] = mapped_column(String, nullable=True)
    # Empty until the download completes.
    file_path: Mapped[str | None] = mapped_column(String, nullable=True)
    file_size: Mapped[int] = mapped_column(BigInteger, default=0)
    mime_type: Mapped[str | None] = mapped_column(String, nullable=True)
    file_type: Mapped[str] = mapped_column(String)
    download_status: Mapped[str] = mapped_column(String)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    audit_result: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    downloaded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    instance_id: Mapped[int] = mapped_column(IdType, ForeignKey("approval_instances.id"), index=True)
    attachment_id: Mapped[int] = mapped_column(IdType, ForeignKey("attachments.id"), unique=True)
    item_id: Mapped[int | None] = mapped_column(IdType, nullable=True)
    invoice_code: Mapped[str] = mapped_column(String)
    invoice_number: Mapped[str] = mapped_column(String)
    # code + number; unique across every instance ever processed.
    unique_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    invoice_date: Mapped[str | None] = mapped_column(String, nullable=True)
    invoice_amount_cents: Mapped[int] = mapped_column(BigInteger, default=0)
    seller_name: Mapped[str | None] = mapped_column(String, nullable=True)
    seller_tax_id: Mapped[str | None] = mapped_column(String, nullable=True)
    buyer_name: Mapped[str | None] = mapped_column(String, nullable=True)
    buyer_tax_id: Mapped[str | None] = mapped_column(String, nullable=True)
    extracted_data: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    @property
    def amount(self) -> float:
        return self.invoice_amount_cents / 100.0


class AuditNotification(Base):
    __tablename__ = "audit_notifications"
    __table_args__ = (
        Index("ix_audit_notifications_instance_kind", "instance_id", "kind"),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    instance_id: Mapped[int] = mapped_column(IdType, ForeignKey("approval_instances.id"))
    external_instance_id: Mapped[str] = mapped_column(String)
    kind: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String)
    decision: Mapped[str | None] = mapped_column(String, nullable=True)
    recipient_open_id: Mapped[str | None] = mapped_column(String, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class GeneratedVoucher(Base):
    __tablename__ = "generated_vouchers"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    instance_id: Mapped[int] = mapped_column(IdType, ForeignKey("approval_instances.id"), unique=True)
    voucher_number: Mapped[str] = mapped_column(String, unique=True)
    file_path: Mapped[str] = mapped_column(String)
    attachment_paths: Mapped[list[str] | None] = mapped_column(JsonType, nullable=True)
    # Accountant delivery metadata, filled when the voucher is mailed out.
    accountant_email: Mapped[str | None] = mapped_column(String, nullable=True)
    email_message_id: Mapped[str | None] = mapped_column(String, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
