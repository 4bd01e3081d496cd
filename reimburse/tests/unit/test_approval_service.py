from __future__ import annotations

import pytest

from reimburse.core.errors import InvalidTransitionError, InvariantViolationError, NotFoundError
from reimburse.domain.constants import HistoryAction, InstanceStatus, ItemType
from reimburse.domain.workflow import Trigger
from reimburse.services.approval import ApprovalService


@pytest.mark.asyncio
async def test_create_instance_is_idempotent(coordinator) -> None:
    service = ApprovalService(coordinator)
    first = await service.create_instance("ext-1", {"applicant_user_id": "u-1", "department": "Ops"})
    second = await service.create_instance("ext-1", {"applicant_user_id": "someone-else"})

    assert first.id == second.id
    assert first.status == InstanceStatus.CREATED
    assert first.applicant_user_id == "u-1"
    history = await service.get_history(first.id)
    assert [entry.action_type for entry in history] == [HistoryAction.CREATE]
    assert history[0].previous_status is None


@pytest.mark.asyncio
async def test_update_status_records_previous_status(coordinator) -> None:
    service = ApprovalService(coordinator)
    instance = await service.create_instance("ext-1")

    entry = await service.update_status(instance.id, InstanceStatus.PENDING, {"action_by": "alice"})

    assert entry.previous_status == InstanceStatus.CREATED
    assert entry.new_status == InstanceStatus.PENDING
    assert entry.actor_user_id == "alice"
    assert (await service.get_instance(instance.id)).status == InstanceStatus.PENDING


@pytest.mark.asyncio
async def test_update_status_rejects_unknown_status(coordinator) -> None:
    service = ApprovalService(coordinator)
    instance = await service.create_instance("ext-1")
    with pytest.raises(InvariantViolationError):
        await service.update_status(instance.id, "ARCHIVED")


@pytest.mark.asyncio
async def test_update_status_missing_instance(coordinator) -> None:
    with pytest.raises(NotFoundError):
        await ApprovalService(coordinator).update_status(999, InstanceStatus.PENDING)


@pytest.mark.asyncio
async def test_transition_rejects_without_mutation(coordinator) -> None:
    service = ApprovalService(coordinator)
    instance = await service.create_instance("ext-1")

    with pytest.raises(InvalidTransitionError):
        await service.transition(instance.id, Trigger.APPROVE, actor="bob")

    assert (await service.get_instance(instance.id)).status == InstanceStatus.CREATED
    assert len(await service.get_history(instance.id)) == 1


@pytest.mark.asyncio
async def test_transition_records_trigger_and_actor(coordinator) -> None:
    service = ApprovalService(coordinator)
    instance = await service.create_instance("ext-1")

    status = await service.transition(instance.id, Trigger.SUBMIT, actor="bob", comment="submitted")

    assert status == InstanceStatus.PENDING
    latest = (await service.get_history(instance.id))[-1]
    assert latest.action_data == {"trigger": Trigger.SUBMIT, "action_by": "bob", "comment": "submitted"}


@pytest.mark.asyncio
async def test_set_approval_time(coordinator) -> None:
    service = ApprovalService(coordinator)
    instance = await service.create_instance("ext-1")
    assert instance.approval_time is None

    await service.set_approval_time(instance.id)

    assert (await service.get_instance(instance.id)).approval_time is not None


@pytest.mark.asyncio
async def test_add_item_rejects_negative_amount(coordinator) -> None:
    service = ApprovalService(coordinator)
    instance = await service.create_instance("ext-1")
    with pytest.raises(InvariantViolationError):
        await service.add_item(instance.id, item_type=ItemType.MEAL, amount=-1.0)


@pytest.mark.asyncio
async def test_register_attachment_is_idempotent(coordinator) -> None:
    service = ApprovalService(coordinator)
    instance = await service.create_instance("ext-1")

    first = await service.register_attachment(instance.id, file_name="a.pdf", url="https://files.test/a.pdf")
    second = await service.register_attachment(instance.id, file_name="a.pdf", url="https://files.test/a.pdf")

    assert first.id == second.id
    assert first.external_instance_id == "ext-1"
