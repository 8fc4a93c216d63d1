from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from .config import get_settings

_settings = get_settings()
_client: AsyncIOMotorClient | None = None
_db: AsyncIOMotorDatabase | None = None


async def ensure_indexes(db) -> None:
    """Índices que la mensajería necesita (la unicidad de threads vive aquí)."""
    await db.users.create_index("email", unique=True)
    await db.users.create_index([("role", 1)])
    # Un único thread por par (ordenado) de participantes y producto opcional
    await db.threads.create_index(
        [("participant_low", 1), ("participant_high", 1), ("product_id", 1)],
        unique=True,
    )
    await db.threads.create_index([("participant_low", 1), ("updated_at", -1)])
    await db.threads.create_index([("participant_high", 1), ("updated_at", -1)])
    await db.messages.create_index([("thread_id", 1), ("seq", 1)], unique=True)
    await db.messages.create_index([("thread_id", 1), ("receiver_id", 1), ("is_read", 1)])


async def get_db() -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is None:
        _client = AsyncIOMotorClient(_settings.mongodb_uri)
        _db = _client[_settings.db_name]
        await ensure_indexes(_db)
    return _db
