"""
Database Seeding Script.

Populates the `customers` and `service_visits` tables with sample data
whose visits fall inside the survey window, for end-to-end testing.
"""

import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone

# Add project root to path so we can import src
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from src.db import get_db
from src.logging_config import setup_logging, get_logger

setup_logging()
logger = get_logger(__name__)

SAMPLE_CUSTOMERS = [
    {
        "first_name": "Maria",
        "last_name": "Gonzalez",
        "phone": "+15550101",
        "email": "maria.gonzalez@example.com",
        "preferred_language": "Spanish",
        "visit": {"service_type": "Brake service", "vehicle_make": "Toyota", "vehicle_model": "Camry", "vehicle_year": 2019, "vin": "4T1B11HK5KU000001"},
    },
    {
        "first_name": "James",
        "last_name": "Porter",
        "phone": "+15550102",
        "email": "james.porter@example.com",
        "preferred_language": "English",
        "visit": {"service_type": "Oil change", "vehicle_make": "Ford", "vehicle_model": "F-150", "vehicle_year": 2021, "vin": "1FTEW1EP5MF000002"},
    },
    {
        "first_name": "Aisha",
        "last_name": "Reed",
        "phone": "+15550103",
        "email": "aisha.reed@example.com",
        "preferred_language": "English",
        "visit": {"service_type": "Tire rotation", "vehicle_make": "Honda", "vehicle_model": "CR-V", "vehicle_year": 2020, "vin": "2HKRW2H5XLH000003"},
    },
]


async def seed():
    db = get_db()
    completed_at = datetime.now(timezone.utc) - timedelta(hours=30)

    logger.info("Seeding database...")

    for sample in SAMPLE_CUSTOMERS:
        visit = sample.pop("visit")

        existing = db.client.table("customers").select("id").eq("phone", sample["phone"]).execute()
        if existing.data:
            customer_id = existing.data[0]["id"]
            logger.info(f"Customer {sample['first_name']} {sample['last_name']} already exists")
        else:
            result = db.client.table("customers").insert(sample).execute()
            if not result.data:
                logger.error(f"Failed to create {sample['first_name']} {sample['last_name']}")
                continue
            customer_id = result.data[0]["id"]
            logger.info(f"Created {sample['first_name']} {sample['last_name']}", id=customer_id)

        result = db.client.table("service_visits").insert({
            "customer_id": customer_id,
            "service_date": completed_at.isoformat(),
            "completed_at": completed_at.isoformat(),
            **visit,
        }).execute()
        if result.data:
            logger.info("Created service visit", id=result.data[0]["id"], vin=visit["vin"])

    logger.info("Seeding complete.")

if __name__ == "__main__":
    asyncio.run(seed())
