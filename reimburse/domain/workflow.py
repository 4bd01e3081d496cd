from __future__ import annotations

from reimburse.core.errors import InvalidTransitionError
from reimburse.domain.constants import InstanceStatus


class Trigger:
    SUBMIT = "SUBMIT"
    START_AUDIT = "START_AUDIT"
    COMPLETE_AUDIT = "COMPLETE_AUDIT"
    REQUEST_REVIEW = "REQUEST_REVIEW"
    AUTO_APPROVE = "AUTO_APPROVE"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    START_VOUCHER = "START_VOUCHER"
    COMPLETE_VOUCHER = "COMPLETE_VOUCHER"
    RETRY = "RETRY"


TRANSITIONS: dict[str, dict[str, str]] = {
    InstanceStatus.CREATED: {
        Trigger.SUBMIT: InstanceStatus.PENDING,
        Trigger.START_AUDIT: InstanceStatus.AI_AUDITING,
    },
    InstanceStatus.PENDING: {
        Trigger.START_AUDIT: InstanceStatus.AI_AUDITING,
        Trigger.REJECT: InstanceStatus.REJECTED,
    },
    InstanceStatus.AI_AUDITING: {
        Trigger.COMPLETE_AUDIT: InstanceStatus.AI_AUDITED,
        Trigger.REJECT: InstanceStatus.REJECTED,
    },
    InstanceStatus.AI_AUDITED: {
        Trigger.AUTO_APPROVE: InstanceStatus.AUTO_APPROVED,
        Trigger.REQUEST_REVIEW: InstanceStatus.IN_REVIEW,
        Trigger.REJECT: InstanceStatus.REJECTED,
    },
    InstanceStatus.IN_REVIEW: {
        Trigger.APPROVE: InstanceStatus.APPROVED,
        Trigger.REJECT: InstanceStatus.REJECTED,
    },
    InstanceStatus.AUTO_APPROVED: {
        Trigger.APPROVE: InstanceStatus.APPROVED,
        Trigger.REJECT: InstanceStatus.REJECTED,
    },
    InstanceStatus.APPROVED: {
        Trigger.START_VOUCHER: InstanceStatus.VOUCHER_GENERATING,
    },
    InstanceStatus.VOUCHER_GENERATING: {
        Trigger.COMPLETE_VOUCHER: InstanceStatus.COMPLETED,
        Trigger.RETRY: InstanceStatus.APPROVED,
    },
    # Terminal states accept no trigger.
    InstanceStatus.REJECTED: {},
    InstanceStatus.COMPLETED: {},
}


def can_fire(status: str, trigger: str) -> bool:
    return trigger in TRANSITIONS.get(status, {})


def permitted_triggers(status: str) -> list[str]:
    return sorted(TRANSITIONS.get(status, {}))


def next_status(status: str, trigger: str) -> str:
    """Resolve the target status for a trigger or raise InvalidTransitionError."""
    target = TRANSITIONS.get(status, {}).get(trigger)
    if target is None:
        raise InvalidTransitionError(f"trigger {trigger} not permitted from status {status}")
    return target
