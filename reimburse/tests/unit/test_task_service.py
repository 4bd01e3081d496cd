from __future__ import annotations

import pytest

from reimburse.core.errors import InvariantViolationError, NotFoundError
from reimburse.domain.constants import TaskStatus, TaskType
from reimburse.services.approval import ApprovalService
from reimburse.services.tasks import RemoteTask, TaskService


async def _instance(coordinator, external_id: str = "ext-1"):
    return await ApprovalService(coordinator).create_instance(external_id)


@pytest.mark.asyncio
async def test_ai_review_task_is_created_once(coordinator) -> None:
    service = TaskService(coordinator)
    instance = await _instance(coordinator)

    first = await service.create_ai_review_task(instance.id, "ai-approver")
    second = await service.create_ai_review_task(instance.id, "ai-approver")

    assert first.id == second.id
    assert first.task_type == TaskType.AI_REVIEW
    assert first.sequence_number == 0
    assert first.is_ai_decision
    assert len(await service.get_tasks_for_instance(instance.id)) == 1


@pytest.mark.asyncio
async def test_human_tasks_follow_ai_sequence(coordinator) -> None:
    service = TaskService(coordinator)
    instance = await _instance(coordinator)
    await service.create_ai_review_task(instance.id, "ai-approver")

    first = await service.create_human_review_task(instance.id, "t-1")
    second = await service.create_human_review_task(instance.id, "t-2")
    again = await service.create_human_review_task(instance.id, "t-1")

    assert (first.sequence_number, second.sequence_number) == (1, 2)
    assert again.id == first.id


@pytest.mark.asyncio
async def test_human_task_before_ai_task_skips_sequence_zero(coordinator) -> None:
    service = TaskService(coordinator)
    instance = await _instance(coordinator)

    human = await service.create_human_review_task(instance.id, "t-1")
    ai = await service.create_ai_review_task(instance.id, "ai-approver")

    assert human.sequence_number == 1
    assert ai.sequence_number == 0


@pytest.mark.asyncio
async def test_external_task_id_cannot_move_between_instances(coordinator) -> None:
    service = TaskService(coordinator)
    one = await _instance(coordinator, "ext-1")
    two = await _instance(coordinator, "ext-2")
    await service.create_human_review_task(one.id, "t-1")

    with pytest.raises(InvariantViolationError):
        await service.create_human_review_task(two.id, "t-1")


@pytest.mark.asyncio
async def test_set_current_task_keeps_one_current(coordinator) -> None:
    service = TaskService(coordinator)
    instance = await _instance(coordinator)
    ai = await service.create_ai_review_task(instance.id, "ai-approver")
    human = await service.create_human_review_task(instance.id, "t-1")

    assert (await service.get_current_task(instance.id)).id == ai.id
    await service.set_current_task(instance.id, human.id)

    tasks = await service.get_tasks_for_instance(instance.id)
    assert [task.id for task in tasks if task.is_current] == [human.id]


@pytest.mark.asyncio
async def test_set_current_task_rejects_foreign_task(coordinator) -> None:
    service = TaskService(coordinator)
    one = await _instance(coordinator, "ext-1")
    two = await _instance(coordinator, "ext-2")
    ai = await service.create_ai_review_task(one.id, "ai-approver")
    foreign = await service.create_human_review_task(two.id, "t-9")

    with pytest.raises(InvariantViolationError):
        await service.set_current_task(one.id, foreign.id)
    with pytest.raises(NotFoundError):
        await service.set_current_task(one.id, 12345)
    assert (await service.get_current_task(one.id)).id == ai.id


@pytest.mark.asyncio
async def test_complete_task_records_decision(coordinator) -> None:
    service = TaskService(coordinator)
    instance = await _instance(coordinator)
    task = await service.create_ai_review_task(instance.id, "ai-approver")

    await service.complete_task(
        task.id, decision="PASS", confidence=0.97, violations=[], completed_by="ai", result_data={"ok": True}
    )

    stored = await service.get_by_id(task.id)
    assert stored.status == TaskStatus.COMPLETED
    assert stored.decision == "PASS"
    assert stored.confidence == pytest.approx(0.97)
    assert stored.completed_by == "ai"
    assert stored.end_time is not None


@pytest.mark.asyncio
async def test_complete_missing_task_raises(coordinator) -> None:
    with pytest.raises(NotFoundError):
        await TaskService(coordinator).complete_task(42, decision="PASS", completed_by="ai")


@pytest.mark.asyncio
async def test_sync_remote_tasks_is_idempotent(coordinator) -> None:
    service = TaskService(coordinator)
    instance = await _instance(coordinator)
    batch = [RemoteTask("t-1", TaskStatus.PENDING, user_id="u-1"), RemoteTask("t-2", TaskStatus.PENDING)]

    assert await service.sync_remote_tasks(instance.id, batch) == 2
    assert await service.sync_remote_tasks(instance.id, batch) == 0

    overlapping = [RemoteTask("t-2", TaskStatus.COMPLETED), RemoteTask("t-3", TaskStatus.PENDING)]
    assert await service.sync_remote_tasks(instance.id, overlapping) == 2

    tasks = await service.get_tasks_for_instance(instance.id)
    assert [task.external_task_id for task in tasks] == ["t-1", "t-2", "t-3"]
    assert tasks[1].status == TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_sync_remote_tasks_rolls_back_on_failure(coordinator) -> None:
    service = TaskService(coordinator)
    one = await _instance(coordinator, "ext-1")
    two = await _instance(coordinator, "ext-2")
    await service.create_human_review_task(two.id, "taken")

    batch = [RemoteTask("t-1", TaskStatus.PENDING), RemoteTask("taken", TaskStatus.PENDING)]
    with pytest.raises(InvariantViolationError):
        await service.sync_remote_tasks(one.id, batch)

    assert await service.get_tasks_for_instance(one.id) == []


@pytest.mark.asyncio
async def test_sync_remote_tasks_leaves_other_instance_tasks_untouched(coordinator) -> None:
    service = TaskService(coordinator)
    one = await _instance(coordinator, "ext-1")
    two = await _instance(coordinator, "ext-2")
    await service.create_human_review_task(two.id, "shared", status=TaskStatus.PENDING)

    with pytest.raises(InvariantViolationError):
        await service.sync_remote_tasks(one.id, [RemoteTask("shared", TaskStatus.COMPLETED)])

    [task] = await service.get_tasks_for_instance(two.id)
    assert task.status == TaskStatus.PENDING
