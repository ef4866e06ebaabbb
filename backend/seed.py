"""
Idempotent seed: default subscription plan catalogue.
Existing plans (matched by plan_id) are left untouched so admin edits survive.
"""
import asyncio
from motor.motor_asyncio import AsyncIOMotorClient
import os
from pathlib import Path
from dotenv import load_dotenv
from models import SubscriptionPlan

load_dotenv(Path(__file__).resolve().parent / ".env")

DEFAULT_PLANS = [
    SubscriptionPlan(
        plan_id="plan_starter",
        name="Starter",
        description="For solo professionals getting organised",
        price=97.0,
        trial_days=7,
        max_clients=50,
        max_users=2,
        max_events=10,
        max_products=20,
        max_forms=5,
        max_ai_analyses=100,
        max_storage_mb=500,
        features={"forms": True, "events": True, "custom_fields": True},
    ),
    SubscriptionPlan(
        plan_id="plan_growth",
        name="Growth",
        description="For small teams with recurring clients",
        price=197.0,
        trial_days=7,
        max_clients=300,
        max_users=5,
        max_events=50,
        max_products=100,
        max_forms=20,
        max_ai_analyses=500,
        max_storage_mb=2000,
        features={
            "forms": True, "events": True, "custom_fields": True,
            "reports": True, "ai_analysis": True, "whatsapp_integration": True,
        },
    ),
    SubscriptionPlan(
        plan_id="plan_scale",
        name="Scale",
        description="Every feature with room to grow",
        price=397.0,
        trial_days=14,
        max_clients=2000,
        max_users=20,
        max_events=500,
        max_products=1000,
        max_forms=100,
        max_ai_analyses=3000,
        max_storage_mb=10000,
        features={"all_features": True},
    ),
]


async def seed_database():
    mongo_url = os.environ["MONGO_URL"]
    db_name = os.environ["DB_NAME"]
    client = AsyncIOMotorClient(mongo_url)
    db = client[db_name]

    print("Seeding subscription plans (idempotent)...")
    for plan in DEFAULT_PLANS:
        result = await db.subscription_plans.update_one(
            {"plan_id": plan.plan_id},
            {"$setOnInsert": plan.model_dump(mode="json")},
            upsert=True,
        )
        action = "created" if result.upserted_id else "exists"
        print(f"  {plan.plan_id}: {action}")

    client.close()
    print("Seed complete.")


if __name__ == "__main__":
    asyncio.run(seed_database())
