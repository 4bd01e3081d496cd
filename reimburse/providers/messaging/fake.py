from __future__ import annotations

from dataclasses import dataclass

from reimburse.core.errors import MessagingError
from reimburse.providers.messaging.base import ApproverInfo, InstanceDetail


@dataclass
class SentEmail:
    message_id: str
    to: str
    subject: str
    body: str
    attachments: list[str]


class FakeMessagingClient:
    def __init__(self, *, details: dict[str, InstanceDetail] | None = None) -> None:
        # Sent messages are kept in order so tests can assert on copy and count.
        self.details = dict(details or {})
        self.sent: list[tuple[str, str]] = []
        self.emails: list[SentEmail] = []
        self.fail_sends = 0
        self.fail_emails = 0

    async def get_instance_detail(self, instance_id: str) -> InstanceDetail:
        detail = self.details.get(instance_id)
        if detail is None:
            return InstanceDetail(instance_code=instance_id, open_id=f"ou_{instance_id}")
        return detail

    async def get_approvers(self, instance_id: str) -> list[ApproverInfo]:
        return [ApproverInfo(user_id="approver", open_id=f"ou_approver_{instance_id}", name="Approver")]

    async def send_message(self, open_id: str, content: str) -> None:
        if self.fail_sends > 0:
            self.fail_sends -= 1
            raise MessagingError(f"send to {open_id} failed")
        self.sent.append((open_id, content))

    async def send_email(self, to: str, subject: str, body: str, attachments: list[str]) -> str:
        if self.fail_emails > 0:
            self.fail_emails -= 1
            raise MessagingError(f"mail to {to} failed")
        message_id = f"mail_{len(self.emails) + 1}"
        self.emails.append(SentEmail(message_id, to, subject, body, list(attachments)))
        return message_id
