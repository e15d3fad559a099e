import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import spliteasy.models  # noqa: F401
from spliteasy.core.security import create_access_token
from spliteasy.db.session import Base, get_db
from spliteasy.main import app
from spliteasy.models.user import User

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

def make_engine():
    return create_async_engine(
        TEST_DB_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

def auth(user_id: int) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}

@pytest_asyncio.fixture
async def engine():
    engine = make_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()

@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)

@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session

@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()

@pytest_asyncio.fixture
async def users(db):
    """alice, bob, carol and dave, in that id order."""
    created = {}
    for name in ("alice", "bob", "carol", "dave"):
        user = User(name=name.title(), email=f"{name}@example.com", password_hash="not-a-real-hash")
        db.add(user)
        await db.flush()
        created[name] = user
    await db.commit()
    return created

@pytest_asyncio.fixture
async def group(client, users):
    """USD group owned by alice with bob and carol as members."""
    res = await client.post(
        "/api/v1/groups/",
        json={"title": "Trip", "currency": "usd"},
        headers=auth(users["alice"].id),
    )
    assert res.status_code == 201
    group = res.json()

    for name in ("bob", "carol"):
        res = await client.post(
            f"/api/v1/groups/{group['id']}/add/{users[name].id}",
            headers=auth(users["alice"].id),
        )
        assert res.status_code == 201

    return group
