from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from reimburse.core.config import get_settings
from reimburse.core.logging import configure_logging
from reimburse.domain.constants import FileType, ItemType
from reimburse.persistence.db import create_schema, engine
from reimburse.workers.runtime import build_runtime


async def _seed(external_id: str, amount: float, review: bool) -> None:
    # Create one demo request with a single travel item and run the AI review.
    configure_logging()
    settings = get_settings()
    if settings.database_url.startswith("sqlite"):
        Path("var").mkdir(parents=True, exist_ok=True)
        await create_schema()
    runtime = build_runtime()
    instance = await runtime.approvals.create_instance(
        external_id, {"applicant_user_id": "demo-user", "department": "Engineering"}
    )
    item = await runtime.approvals.add_item(
        instance.id, item_type=ItemType.TRAVEL, amount=amount, description="Demo train ticket"
    )
    await runtime.approvals.register_attachment(
        instance.id,
        file_name="ticket.pdf",
        url=f"https://example.invalid/{external_id}/ticket.pdf",
        file_type=FileType.INVOICE,
        item_id=item.id,
    )
    print(f"instance_id={instance.id}")
    if review:
        outcome = await runtime.reviews.run_ai_review(instance.id)
        print(f"decision={outcome.decision}")
        print(f"status={outcome.instance_status}")
    await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed a demo reimbursement request")
    parser.add_argument("--external-id", default="demo-instance-1")
    parser.add_argument("--amount", type=float, default=320.0)
    parser.add_argument("--no-review", action="store_true")
    args = parser.parse_args()
    asyncio.run(_seed(args.external_id, args.amount, not args.no_review))


if __name__ == "__main__":
    main()
