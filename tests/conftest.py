"""
Configuración de pytest para tests

MongoDB se sustituye por mongomock-motor: la mensajería recibe la base de
datos explícitamente, así que no hace falta un servidor.
"""
import asyncio
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport
from mongomock_motor import AsyncMongoMockClient
from pymongo.errors import AutoReconnect

from agrimarket.config import Settings
from agrimarket.db import ensure_indexes, get_db
from agrimarket.deps import get_notifier
from agrimarket.messaging.notifier import ChangeNotifier
from agrimarket.messaging.service import MessagingService
from agrimarket.schemas.user import CurrentUser
from agrimarket.security import create_access_token

TEST_DB_NAME = "agrimarket_test"


async def create_user(db, name: str, role: str, is_blocked: bool = False) -> CurrentUser:
    """Inserta un usuario directamente (sin pasar por /auth/signup)"""
    oid = ObjectId()
    email = f"{name.lower()}-{oid}@example.com"
    await db.users.insert_one({
        "_id": oid,
        "name": name,
        "email": email,
        "role": role,
        "is_blocked": is_blocked,
    })
    return CurrentUser(id=str(oid), role=role, display_name=name, is_blocked=is_blocked, email=email)


def auth_headers(user: CurrentUser) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


class FlakyInserts:
    """
    Envuelve una colección y altera sus primeros insert_one:
      - "fail": lanza AutoReconnect sin escribir
      - "slow_before": espera y luego escribe
      - "slow_after": escribe y luego espera
    """

    def __init__(self, collection, mode: str, times: int = 1, delay: float = 0.05):
        self.collection = collection
        self.mode = mode
        self.times = times
        self.delay = delay
        self.calls = 0

    def __getattr__(self, name):
        return getattr(self.collection, name)

    async def insert_one(self, doc, *args, **kwargs):
        self.calls += 1
        if self.calls > self.times:
            return await self.collection.insert_one(doc, *args, **kwargs)
        if self.mode == "fail":
            raise AutoReconnect("connection reset")
        if self.mode == "slow_before":
            await asyncio.sleep(self.delay)
            return await self.collection.insert_one(doc, *args, **kwargs)
        res = await self.collection.insert_one(doc, *args, **kwargs)
        await asyncio.sleep(self.delay)
        return res


# Deshabilitar rate limiting en la app antes de importarla
@pytest.fixture(scope="session", autouse=True)
def disable_rate_limiting():
    """Deshabilita rate limiting para todos los tests"""
    from agrimarket.main import app
    app.state.limiter = None

@pytest.fixture
def settings():
    return Settings(
        thread_poll_seconds=5,
        inbox_poll_seconds=5,
        read_retry_attempts=3,
        read_retry_backoff=0.01,
    )

@pytest.fixture
async def db():
    """Base de datos en memoria, limpia en cada test"""
    client = AsyncMongoMockClient()
    database = client[TEST_DB_NAME]
    await ensure_indexes(database)
    yield database

@pytest.fixture
def notifier():
    return ChangeNotifier(queue_size=50)

@pytest.fixture
def messaging(db, notifier, settings):
    return MessagingService(db, notifier, settings)

@pytest.fixture
async def buyer(db):
    return await create_user(db, "Ravi", "buyer")

@pytest.fixture
async def seller(db):
    return await create_user(db, "Meena", "seller")

@pytest.fixture
async def admin(db):
    return await create_user(db, "Admin", "admin")

@pytest.fixture
def app(db, notifier):
    """App con la base de datos y el notificador del test"""
    from agrimarket.main import app
    app.state.limiter = None

    async def _db():
        return db

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield app
    app.dependency_overrides.clear()

@pytest.fixture
async def ac(app):
    """Cliente HTTP asíncrono contra la app (transporte ASGI)"""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# --------- variante síncrona para TestClient/WebSocket ----------

@pytest.fixture
def sync_db():
    client = AsyncMongoMockClient()
    database = client[TEST_DB_NAME]
    asyncio.run(ensure_indexes(database))
    return database

@pytest.fixture
def sync_users(sync_db):
    async def _create():
        return (
            await create_user(sync_db, "Ravi", "buyer"),
            await create_user(sync_db, "Meena", "seller"),
        )
    return asyncio.run(_create())

@pytest.fixture
def client(sync_db):
    """Fixture para cliente de test de FastAPI (necesario para WebSocket)"""
    from agrimarket.main import app
    app.state.limiter = None
    shared = ChangeNotifier(queue_size=50)

    async def _db():
        return sync_db

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_notifier] = lambda: shared
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
