from __future__ import annotations

from dataclasses import dataclass

from reimburse.core.config import Settings, get_settings
from reimburse.persistence.transaction import TransactionCoordinator
from reimburse.providers.ai.base import AIAuditor
from reimburse.providers.downloader.base import AttachmentDownloader
from reimburse.providers.factory import get_ai_auditor, get_attachment_downloader, get_messaging_client
from reimburse.providers.messaging.base import MessagingClient
from reimburse.services.approval import ApprovalService
from reimburse.services.audit import AuditService
from reimburse.services.notifications import NotificationService
from reimburse.services.review import ReviewService
from reimburse.services.tasks import TaskService
from reimburse.services.vouchers import VoucherService
from reimburse.storage.files import LocalFileStorage
from reimburse.storage.folders import LocalFolderManager
from reimburse.workers.download_worker import DownloadWorker
from reimburse.workers.invoice_worker import InvoiceWorker
from reimburse.workers.manager import WorkerManager
from reimburse.workers.status_worker import StatusPollWorker
from reimburse.workers.voucher_worker import VoucherWorker


@dataclass
class Runtime:
    coordinator: TransactionCoordinator
    storage: LocalFileStorage
    folders: LocalFolderManager
    approvals: ApprovalService
    tasks: TaskService
    audits: AuditService
    notifications: NotificationService
    reviews: ReviewService
    vouchers: VoucherService
    manager: WorkerManager


def build_runtime(
    *,
    coordinator: TransactionCoordinator | None = None,
    settings: Settings | None = None,
    auditor: AIAuditor | None = None,
    messaging: MessagingClient | None = None,
    downloader: AttachmentDownloader | None = None,
) -> Runtime:
    """Wire services and workers; capabilities default to the configured providers."""
    settings = settings or get_settings()
    coordinator = coordinator or TransactionCoordinator()
    auditor = auditor or get_ai_auditor()
    messaging = messaging or get_messaging_client()
    downloader = downloader or get_attachment_downloader()
    storage = LocalFileStorage(settings.storage_dir)
    folders = LocalFolderManager(settings.storage_dir)

    approvals = ApprovalService(coordinator)
    tasks = TaskService(coordinator)
    audits = AuditService(coordinator, auditor)
    notifications = NotificationService(coordinator, messaging)
    reviews = ReviewService(coordinator, approvals, tasks, audits, notifications)
    vouchers = VoucherService(
        coordinator,
        approvals,
        storage,
        voucher_folder=settings.voucher_folder,
        messaging=messaging,
        accountant_email=settings.accountant_email,
    )

    manager = WorkerManager()
    manager.register(DownloadWorker(coordinator, downloader, storage, folders))
    manager.register(InvoiceWorker(coordinator, auditor, audits, storage))
    manager.register(StatusPollWorker(coordinator, messaging, approvals))
    manager.register(VoucherWorker(coordinator, vouchers, notifications))
    return Runtime(
        coordinator=coordinator,
        storage=storage,
        folders=folders,
        approvals=approvals,
        tasks=tasks,
        audits=audits,
        notifications=notifications,
        reviews=reviews,
        vouchers=vouchers,
        manager=manager,
    )
