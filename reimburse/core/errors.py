from __future__ import annotations


class ReimburseError(Exception):
    """Base error for the reimbursement workflow."""


class NotFoundError(ReimburseError):
    """Entity absent; callers can tell a miss apart from a failure."""

    def __init__(self, entity: str, key: object) -> None:
        super().__init__(f"{entity} not found: {key}")
        self.entity = entity
        self.key = key


class InvariantViolationError(ReimburseError):
    """Request rejected before any mutation because it would break an invariant."""


class InvalidTransitionError(InvariantViolationError):
    """Workflow trigger not permitted from the instance's current status."""


class RemoteDependencyError(ReimburseError):
    """Messaging, download or AI capability failure."""


class DownloadError(RemoteDependencyError):
    """Attachment download failure."""


class MessagingError(RemoteDependencyError):
    """Messaging platform request failure."""


class AIAuditError(RemoteDependencyError):
    """AI audit or extraction request failure."""


class StorageError(ReimburseError):
    """File storage failure or unsafe path."""


class InstanceNotReadyError(ReimburseError):
    """Instance does not meet voucher readiness criteria."""


class WorkerAlreadyRunningError(ReimburseError):
    """Start called on a worker whose loop is still running."""


class ProviderConfigError(ReimburseError):
    """Missing or invalid provider configuration."""
