from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None

    async def connect(self):
        try:
            mongo_url = os.environ['MONGO_URL']
            self.client = AsyncIOMotorClient(mongo_url)
            self.db = self.client[os.environ['DB_NAME']]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {os.environ['DB_NAME']}")

            await self._create_indexes()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def get_db(self):
        return self.db

    async def _create_indexes(self):
        """Create MongoDB indexes for tenant-scoped lookups and usage counts."""
        try:
            await self.db.accounts.create_index("account_id", unique=True)
            await self.db.users.create_index("user_id", unique=True)
            await self.db.users.create_index("account_id")

            await self.db.subscription_plans.create_index("plan_id", unique=True)
            await self.db.subscription_plans.create_index([("is_active", 1), ("price", 1)])

            await self.db.clients.create_index("client_id", unique=True)
            await self.db.clients.create_index([("account_id", 1), ("financial_status", 1)])

            # Overdue receivables lookup (financial status)
            await self.db.financial_entries.create_index(
                [("account_id", 1), ("client_id", 1), ("entry_type", 1), ("status", 1), ("due_date", 1)]
            )

            await self.db.client_contracts.create_index("contract_id", unique=True)
            await self.db.client_contracts.create_index([("account_id", 1), ("client_id", 1)])
            await self.db.client_contracts.create_index("end_date")
            await self.db.client_subscriptions.create_index("subscription_id", unique=True)
            await self.db.client_subscriptions.create_index([("account_id", 1), ("client_id", 1)])

            # Quota counters
            await self.db.events.create_index("account_id")
            await self.db.products.create_index("account_id")
            await self.db.forms.create_index("account_id")
            await self.db.ai_usage_logs.create_index([("account_id", 1), ("created_at", -1)])

            await self.db.audit_logs.create_index([("account_id", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index([("account_id", 1), ("resource_type", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index([("resource_type", 1), ("resource_id", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index([("action", 1), ("timestamp", -1)])

            # Contract expiry notice dedup
            await self.db.notifications.create_index(
                [("user_id", 1), ("source_type", 1), ("source_id", 1), ("created_at", -1)]
            )

            # Payment webhook idempotency - duplicate event id must not process twice
            try:
                await self.db.asaas_events.create_index("event_id", unique=True)
            except Exception as e:
                logger.warning(f"asaas_events.event_id unique index: {e}")
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist, log but don't fail
            logger.warning(f"Index creation note: {e}")

# Global database instance
database = Database()

