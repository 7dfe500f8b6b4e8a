"""
CLI tool to start an SMS survey for one service visit right away.

Usage:
    python scripts/send_survey.py <service_visit_id>

Creates the survey record if the visit has none, then sends the
greeting and first rating question to the visit's customer.
"""

import argparse
import asyncio
import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from dotenv import load_dotenv
load_dotenv(".env.local")

from src.db import get_db
from src.logging_config import setup_logging, get_logger
from src.services.survey_service import get_survey_service

setup_logging()
logger = get_logger(__name__)


async def send_survey(service_visit_id: str) -> None:
    """Send the first survey message for a single visit."""
    db = get_db()
    service = get_survey_service()

    result = (
        db.client.table("service_visits")
        .select("*, customers(id, first_name, last_name, phone, preferred_language)")
        .eq("id", service_visit_id)
        .limit(1)
        .execute()
    )
    if not result.data:
        print(f"Service visit {service_visit_id} not found")
        return

    visit = result.data[0]
    customer = visit.get("customers")
    if not customer or not customer.get("phone"):
        print("Service visit has no customer phone number")
        return

    if await db.get_survey_for_visit(service_visit_id) is None:
        survey = await db.create_survey(service_visit_id)
        print(f"Created survey: {survey['id']}")

    message = await service.send_initial_survey(customer, visit)
    print(f"Survey sent: {message.sid}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Send the first SMS survey message for a service visit")
    parser.add_argument("service_visit_id", help="Service visit UUID from DB")
    args = parser.parse_args()

    asyncio.run(send_survey(args.service_visit_id))


if __name__ == "__main__":
    main()
