# app/db/mongo_client.py
# Process-wide Motor client for the profiles database.

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from app.core.config import settings
from app.core.logging_setup import logger

_client: AsyncIOMotorClient | None = None
_database: AsyncIOMotorDatabase | None = None


def _host_of(uri: str) -> str:
    # Drops credentials and path so the URI can be logged
    return uri.rsplit("@", 1)[-1].split("//")[-1].split("/")[0]


async def connect_to_mongo():
    """Opens the client and pings the server; startup fails if Mongo is unreachable."""
    global _client, _database
    if _database is not None:
        logger.debug("MongoDB client already initialised.")
        return
    db_name = settings.MONGO_DB_NAME
    if not db_name:
        raise RuntimeError("MONGO_DB_NAME must be set or derivable from MONGODB_URI.")

    logger.info(f"Connecting to MongoDB at {_host_of(settings.MONGODB_URI)} (db={db_name})")
    client = AsyncIOMotorClient(
        settings.MONGODB_URI,
        serverSelectionTimeoutMS=settings.MONGO_TIMEOUT_MS,
        uuidRepresentation="standard",
        tz_aware=True,
    )
    try:
        await client.admin.command("ping")
    except Exception as e:
        client.close()
        logger.critical(f"FATAL: MongoDB ping failed: {e}")
        raise RuntimeError(f"Failed to connect to MongoDB: {e}") from e
    _client, _database = client, client[db_name]
    logger.success(f"Connected to MongoDB database '{db_name}'.")


async def close_mongo_connection():
    global _client, _database
    if _client is None:
        return
    logger.info("Closing MongoDB client...")
    _client.close()
    _client, _database = None, None


def get_database() -> AsyncIOMotorDatabase:
    """Returns the connected database. Raises RuntimeError before startup."""
    if _database is None:
        raise RuntimeError("Database not connected. Ensure connect_to_mongo() was called successfully.")
    return _database


async def ping_database() -> bool:
    """True when the server answers a ping; failures are logged, not raised."""
    try:
        await get_database().command("ping")
        return True
    except Exception as e:
        logger.error(f"MongoDB ping failed: {e}")
        return False
