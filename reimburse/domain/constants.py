from __future__ import annotations


class InstanceStatus:
    CREATED = "CREATED"
    PENDING = "PENDING"
    AI_AUDITING = "AI_AUDITING"
    AI_AUDITED = "AI_AUDITED"
    IN_REVIEW = "IN_REVIEW"
    AUTO_APPROVED = "AUTO_APPROVED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    VOUCHER_GENERATING = "VOUCHER_GENERATING"
    COMPLETED = "COMPLETED"

    ALL = frozenset(
        {
            CREATED,
            PENDING,
            AI_AUDITING,
            AI_AUDITED,
            IN_REVIEW,
            AUTO_APPROVED,
            APPROVED,
            REJECTED,
            VOUCHER_GENERATING,
            COMPLETED,
        }
    )
    TERMINAL = frozenset({REJECTED, COMPLETED})


class HistoryAction:
    CREATE = "CREATE"
    UPDATE_STATUS = "UPDATE_STATUS"


class TaskType:
    AI_REVIEW = "AI_REVIEW"
    HUMAN_REVIEW = "HUMAN_REVIEW"


class TaskStatus:
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class Decision:
    PASS = "PASS"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    FAIL = "FAIL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AttachmentStatus:
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"
    AUDIT_FAILED = "AUDIT_FAILED"

    # Statuses that imply the file bytes are in storage.
    DOWNLOADED = frozenset({COMPLETED, PROCESSING, PROCESSED, AUDIT_FAILED})


class FileType:
    INVOICE = "INVOICE"
    OTHER = "OTHER"


class NotificationStatus:
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class NotificationKind:
    VOUCHER_READY = "VOUCHER_READY"


class ItemType:
    TRAVEL = "TRAVEL"
    MEAL = "MEAL"
    ACCOMMODATION = "ACCOMMODATION"
    EQUIPMENT = "EQUIPMENT"
    TRANSPORTATION = "TRANSPORTATION"
    ENTERTAINMENT = "ENTERTAINMENT"
    TEAM_BUILDING = "TEAM_BUILDING"
    COMMUNICATION = "COMMUNICATION"
    OTHER = "OTHER"
