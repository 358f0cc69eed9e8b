from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from typing import Optional
from ..config import Settings, settings as default_settings

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None

async def connect(config: Optional[Settings] = None) -> None:
    """
    Open the metadata database once per process. Fails startup if the server
    does not answer a ping within the selection timeout.
    """
    global _client, _db
    if _db is not None:
        return

    config = config or default_settings
    client = AsyncIOMotorClient(
        config.mongodb_uri,
        serverSelectionTimeoutMS=5000,
        tz_aware=False,
    )
    db = client[config.mongodb_db]
    try:
        await db.command("ping")
        # _id (the slug) is unique already; expiry is only queried by external reapers
        await db.entries.create_index([("lifetime", 1)], sparse=True)
    except Exception:
        client.close()
        raise
    _client, _db = client, db

async def disconnect() -> None:
    global _client, _db
    if _client is not None:
        _client.close()
    _client, _db = None, None

def get_db() -> AsyncIOMotorDatabase:
    """Database handle for the repositories; only valid between connect() and disconnect()."""
    if _db is None:
        raise RuntimeError("metadata store is not connected; create_app()'s lifespan calls connect()")
    return _db
