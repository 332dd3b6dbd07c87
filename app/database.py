"""MongoDB database connection manager."""

from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie
from typing import Optional

from app.config import settings
from app.core.logging import logger


class Database:
    """MongoDB database connection manager."""

    client: Optional[AsyncIOMotorClient] = None

    @classmethod
    async def connect_db(cls):
        """Connect to MongoDB and initialize Beanie."""
        cls.client = AsyncIOMotorClient(settings.MONGODB_URL)

        # Import document models
        from app.features.auth.models import UserDocument
        from app.features.medications.models import MedicationDocument
        from app.features.messages.models import ConversationDocument, MessageDocument

        # Initialize Beanie with document models
        await init_beanie(
            database=cls.client[settings.DATABASE_NAME],
            document_models=[
                UserDocument,
                MedicationDocument,
                ConversationDocument,
                MessageDocument,
            ]
        )

        logger.info(f"Connected to MongoDB database: {settings.DATABASE_NAME}")

    @classmethod
    async def ping(cls) -> bool:
        """Whether the database answers a ping."""
        if not cls.client:
            return False
        try:
            await cls.client.admin.command("ping")
        except Exception as e:
            logger.warning(f"MongoDB ping failed: {e}")
            return False
        return True

    @classmethod
    async def close_db(cls):
        """Close MongoDB connection."""
        if cls.client:
            cls.client.close()
            cls.client = None
            logger.info("Closed MongoDB connection")
