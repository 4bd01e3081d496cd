from __future__ import annotations

import asyncio

import pytest

from reimburse.domain.constants import InstanceStatus, NotificationStatus
from reimburse.persistence.repos import notifications as notifications_repo
from reimburse.persistence.repos import vouchers as vouchers_repo
from reimburse.providers.messaging.fake import FakeMessagingClient
from reimburse.services.approval import ApprovalService
from reimburse.services.notifications import NotificationService
from reimburse.services.vouchers import VoucherService
from reimburse.tests.utils.seed import force_status, mark_all_downloaded, seed_instance
from reimburse.workers.voucher_worker import VoucherWorker


def _worker(coordinator, storage, messaging, *, accountant_email=None, item_timeout_s=None) -> VoucherWorker:
    approvals = ApprovalService(coordinator)
    vouchers = VoucherService(
        coordinator, approvals, storage, messaging=messaging, accountant_email=accountant_email
    )
    return VoucherWorker(
        coordinator,
        vouchers,
        NotificationService(coordinator, messaging),
        poll_interval_s=0.01,
        item_timeout_s=item_timeout_s,
    )


@pytest.mark.asyncio
async def test_approved_ready_instance_gets_voucher_and_notice(coordinator, storage) -> None:
    instance, _, attachments = await seed_instance(coordinator)
    await mark_all_downloaded(coordinator, attachments)
    await force_status(coordinator, instance.id, InstanceStatus.APPROVED)
    messaging = FakeMessagingClient()

    assert await _worker(coordinator, storage, messaging).run_once() == 1

    async with coordinator.transaction() as session:
        voucher = await vouchers_repo.get_by_instance(session, instance.id)
        notifications = await notifications_repo.list_notifications(session, instance.id)
    assert voucher is not None
    assert await storage.exists(voucher.file_path)
    assert [record.status for record in notifications] == [NotificationStatus.SENT]
    assert len(messaging.sent) == 1
    assert (await ApprovalService(coordinator).get_instance(instance.id)).status == InstanceStatus.COMPLETED


@pytest.mark.asyncio
async def test_instance_waiting_on_downloads_is_deferred(coordinator, storage) -> None:
    instance, _, _ = await seed_instance(coordinator)
    await force_status(coordinator, instance.id, InstanceStatus.APPROVED)
    worker = _worker(coordinator, storage, FakeMessagingClient())

    await worker.run_once()

    async with coordinator.transaction() as session:
        assert await vouchers_repo.get_by_instance(session, instance.id) is None
    assert (await ApprovalService(coordinator).get_instance(instance.id)).status == InstanceStatus.APPROVED
    assert worker.stats().failed_count == 0


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_the_voucher(coordinator, storage) -> None:
    instance, _, attachments = await seed_instance(coordinator)
    await mark_all_downloaded(coordinator, attachments)
    await force_status(coordinator, instance.id, InstanceStatus.APPROVED)
    messaging = FakeMessagingClient()
    messaging.fail_sends = 1
    worker = _worker(coordinator, storage, messaging)

    await worker.run_once()

    assert worker.stats().failed_count == 0
    async with coordinator.transaction() as session:
        notifications = await notifications_repo.list_notifications(session, instance.id)
    assert [record.status for record in notifications] == [NotificationStatus.FAILED]
    assert (await ApprovalService(coordinator).get_instance(instance.id)).status == InstanceStatus.COMPLETED


class _SlowStorage:
    def __init__(self, inner, delay_s: float) -> None:
        self._inner = inner
        self._delay_s = delay_s

    def resolve(self, logical_path: str):
        return self._inner.resolve(logical_path)

    async def save(self, logical_path: str, data: bytes) -> str:
        await asyncio.sleep(self._delay_s)
        return await self._inner.save(logical_path, data)


@pytest.mark.asyncio
async def test_timed_out_generation_is_released_and_retried(coordinator, storage) -> None:
    instance, _, attachments = await seed_instance(coordinator)
    await mark_all_downloaded(coordinator, attachments)
    await force_status(coordinator, instance.id, InstanceStatus.APPROVED)
    messaging = FakeMessagingClient()
    slow = _worker(coordinator, _SlowStorage(storage, 1.0), messaging, item_timeout_s=0.1)

    await slow.run_once()

    assert slow.stats().failed_count == 1
    assert (await ApprovalService(coordinator).get_instance(instance.id)).status == InstanceStatus.APPROVED
    history = await ApprovalService(coordinator).get_history(instance.id)
    assert [entry.new_status for entry in history[-2:]] == [
        InstanceStatus.VOUCHER_GENERATING,
        InstanceStatus.APPROVED,
    ]

    assert await _worker(coordinator, storage, messaging).run_once() == 1
    assert (await ApprovalService(coordinator).get_instance(instance.id)).status == InstanceStatus.COMPLETED


@pytest.mark.asyncio
async def test_voucher_is_mailed_to_accountant_once(coordinator, storage) -> None:
    instance, _, attachments = await seed_instance(coordinator, attachment_names=("a.pdf", "b.png"))
    await mark_all_downloaded(coordinator, attachments)
    await force_status(coordinator, instance.id, InstanceStatus.APPROVED)
    messaging = FakeMessagingClient()
    worker = _worker(coordinator, storage, messaging, accountant_email="books@example.com")

    await worker.run_once()

    async with coordinator.transaction() as session:
        voucher = await vouchers_repo.get_by_instance(session, instance.id)
    [email] = messaging.emails
    assert email.to == "books@example.com"
    assert voucher.voucher_number in email.subject
    assert len(email.attachments) == 1 + len(attachments)
    assert email.attachments[0].endswith(f"reimbursement_voucher_{instance.id}.xlsx")
    assert voucher.accountant_email == "books@example.com"
    assert voucher.email_message_id == email.message_id
    assert voucher.sent_at is not None

    service = VoucherService(
        coordinator, ApprovalService(coordinator), storage, messaging=messaging, accountant_email="books@example.com"
    )
    again = await service.deliver_voucher(instance.id)
    assert again.email_message_id == email.message_id
    assert len(messaging.emails) == 1


@pytest.mark.asyncio
async def test_failed_mail_leaves_voucher_unsent(coordinator, storage) -> None:
    instance, _, attachments = await seed_instance(coordinator)
    await mark_all_downloaded(coordinator, attachments)
    await force_status(coordinator, instance.id, InstanceStatus.APPROVED)
    messaging = FakeMessagingClient()
    messaging.fail_emails = 1
    worker = _worker(coordinator, storage, messaging, accountant_email="books@example.com")

    await worker.run_once()

    assert worker.stats().failed_count == 0
    assert (await ApprovalService(coordinator).get_instance(instance.id)).status == InstanceStatus.COMPLETED
    async with coordinator.transaction() as session:
        voucher = await vouchers_repo.get_by_instance(session, instance.id)
    assert voucher.accountant_email == "books@example.com"
    assert voucher.sent_at is None
    assert voucher.email_message_id is None


@pytest.mark.asyncio
async def test_delivery_skipped_without_accountant(coordinator, storage) -> None:
    instance, _, attachments = await seed_instance(coordinator)
    await mark_all_downloaded(coordinator, attachments)
    await force_status(coordinator, instance.id, InstanceStatus.APPROVED)
    messaging = FakeMessagingClient()

    await _worker(coordinator, storage, messaging).run_once()

    assert messaging.emails == []
    async with coordinator.transaction() as session:
        voucher = await vouchers_repo.get_by_instance(session, instance.id)
    assert voucher.sent_at is None
