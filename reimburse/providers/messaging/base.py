from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel


class InstanceDetail(BaseModel):
    instance_code: str
    approval_code: str = ""
    user_id: str = ""
    open_id: str = ""
    status: str = ""
    form_data: str = ""
    start_time: int = 0
    end_time: int = 0


class ApproverInfo(BaseModel):
    user_id: str
    open_id: str = ""
    name: str = ""


class MessagingClient(Protocol):
    async def get_instance_detail(self, instance_id: str) -> InstanceDetail:
        ...

    async def get_approvers(self, instance_id: str) -> list[ApproverInfo]:
        ...

    async def send_message(self, open_id: str, content: str) -> None:
        ...

    async def send_email(self, to: str, subject: str, body: str, attachments: list[str]) -> str:
        """Send a mail with file attachments; returns the platform message id."""
        ...
