import logging
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from interviewdesk.config import MONGO_URL, DB_NAME

logger = logging.getLogger(__name__)

# MongoDB connection
client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]


async def column_exists(collection: str, field: str) -> bool:
    """Check whether any document in a collection carries the given field"""
    try:
        doc = await db[collection].find_one({field: {"$exists": True}}, {"_id": 1})
    except PyMongoError as e:
        logger.warning(f"column_exists({collection}.{field}) failed: {e}")
        return False
    return doc is not None
