from __future__ import annotations

import pytest

from reimburse.domain.constants import InstanceStatus
from reimburse.providers.messaging.base import InstanceDetail
from reimburse.providers.messaging.fake import FakeMessagingClient
from reimburse.services.approval import ApprovalService
from reimburse.tests.utils.seed import force_status, seed_instance
from reimburse.workers.status_worker import StatusPollWorker


def _worker(coordinator, messaging) -> StatusPollWorker:
    return StatusPollWorker(coordinator, messaging, ApprovalService(coordinator), poll_interval_s=0.01)


def _messaging(status: str) -> FakeMessagingClient:
    return FakeMessagingClient(
        details={"inst-1": InstanceDetail(instance_code="inst-1", status=status, user_id="manager-1")}
    )


@pytest.mark.asyncio
async def test_remote_approval_moves_instance_to_approved(coordinator) -> None:
    instance, _, _ = await seed_instance(coordinator)
    await force_status(coordinator, instance.id, InstanceStatus.IN_REVIEW)

    assert await _worker(coordinator, _messaging("APPROVED")).run_once() == 1

    approvals = ApprovalService(coordinator)
    stored = await approvals.get_instance(instance.id)
    assert stored.status == InstanceStatus.APPROVED
    assert stored.approval_time is not None
    assert (await approvals.get_history(instance.id))[-1].actor_user_id == "manager-1"


@pytest.mark.asyncio
@pytest.mark.parametrize("remote_status", ["REJECTED", "CANCELED", "DELETED"])
async def test_remote_rejection_moves_instance_to_rejected(coordinator, remote_status: str) -> None:
    instance, _, _ = await seed_instance(coordinator)
    await force_status(coordinator, instance.id, InstanceStatus.AUTO_APPROVED)

    await _worker(coordinator, _messaging(remote_status)).run_once()

    stored = await ApprovalService(coordinator).get_instance(instance.id)
    assert stored.status == InstanceStatus.REJECTED
    assert stored.approval_time is None


@pytest.mark.asyncio
async def test_pending_remote_status_leaves_instance_alone(coordinator) -> None:
    instance, _, _ = await seed_instance(coordinator)
    await force_status(coordinator, instance.id, InstanceStatus.IN_REVIEW)
    approvals = ApprovalService(coordinator)
    history_before = len(await approvals.get_history(instance.id))

    worker = _worker(coordinator, _messaging("PENDING"))
    await worker.run_once()

    assert (await approvals.get_instance(instance.id)).status == InstanceStatus.IN_REVIEW
    assert len(await approvals.get_history(instance.id)) == history_before
    assert worker.stats().processed_count == 1


@pytest.mark.asyncio
async def test_only_instances_awaiting_a_verdict_are_polled(coordinator) -> None:
    instance, _, _ = await seed_instance(coordinator)
    await force_status(coordinator, instance.id, InstanceStatus.AI_AUDITING)

    assert await _worker(coordinator, _messaging("APPROVED")).run_once() == 0
    assert (await ApprovalService(coordinator).get_instance(instance.id)).status == InstanceStatus.AI_AUDITING
