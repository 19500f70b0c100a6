"""Shared test fixtures.

Every test gets its own SQLite database (aiosqlite) with the schema created
from the ORM metadata, a fresh settings object and a throwaway RSA key pair
for JWTs. Redis is never initialized: publishing is best-effort and the API
falls back to ``None``.
"""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from famquest.auth.jwt import create_access_token, reset_keys
from famquest.behavior.family_service import Actor
from famquest.behavior.rules import create_rule
from famquest.config import Settings, get_settings
from famquest.database import close_db, get_engine, get_session_factory, init_db
from famquest.db.base import Base
from famquest.db.models import ChildProfile, Family, PenaltyRule, User
from famquest.main import create_app


@pytest.fixture(scope="session")
def jwt_keys(tmp_path_factory: pytest.TempPathFactory) -> tuple[str, str]:
    """RSA key pair written once per test session."""
    keydir = tmp_path_factory.mktemp("jwt_keys")
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_path = keydir / "jwt_private.pem"
    public_path = keydir / "jwt_public.pem"
    private_path.write_bytes(key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ))
    public_path.write_bytes(key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ))
    return str(private_path), str(public_path)


@pytest.fixture(autouse=True)
def test_settings(monkeypatch: pytest.MonkeyPatch, tmp_path, jwt_keys) -> Settings:
    """Point settings at a per-test SQLite file and the test keys."""
    private_path, public_path = jwt_keys
    monkeypatch.setenv("FQ_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'famquest.db'}")
    monkeypatch.setenv("FQ_JWT_PRIVATE_KEY_PATH", private_path)
    monkeypatch.setenv("FQ_JWT_PUBLIC_KEY_PATH", public_path)
    monkeypatch.setenv("FQ_LOG_FORMAT", "console")
    get_settings.cache_clear()
    reset_keys()
    yield get_settings()
    get_settings.cache_clear()
    reset_keys()


@pytest_asyncio.fixture
async def database(test_settings: Settings) -> AsyncGenerator[None, None]:
    """Initialize the engine and create every table."""
    await init_db(test_settings.database_url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(database) -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session for setup and assertions."""
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def client(database) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app. The lifespan does not run under ASGITransport."""
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class RecordingRedis:
    """Stand-in for the pub/sub side of Redis that remembers what was published."""

    def __init__(self) -> None:
        self.published: list[tuple[str, dict[str, Any]]] = []

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, json.loads(message)))
        return 1

    def on(self, channel: str) -> list[dict[str, Any]]:
        return [payload for ch, payload in self.published if ch == channel]


@pytest.fixture
def publisher() -> RecordingRedis:
    return RecordingRedis()


class Seeder:
    """Creates families, members and rules directly in the database."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def family(self, name: str = "The Testers", tz: str = "UTC") -> Family:
        family = Family(name=name, timezone=tz, created_at=datetime.now(timezone.utc))
        self.db.add(family)
        await self.db.commit()
        return family

    async def parent(self, family_id: int, name: str = "Parent") -> User:
        parent = User(family_id=family_id, display_name=name, role="parent", created_at=datetime.now(timezone.utc))
        self.db.add(parent)
        await self.db.commit()
        return parent

    async def child(
        self,
        family_id: int,
        name: str = "Kid",
        *,
        total_xp: int = 0,
        recent_xp_earned: int = 0,
        with_profile: bool = True,
    ) -> User:
        child = User(family_id=family_id, display_name=name, role="child", created_at=datetime.now(timezone.utc))
        self.db.add(child)
        await self.db.flush()
        if with_profile:
            self.db.add(ChildProfile(
                user_id=child.id,
                family_id=family_id,
                total_xp=total_xp,
                recent_xp_earned=recent_xp_earned,
                quests_completed=0,
            ))
        await self.db.commit()
        return child

    async def rule(self, family_id: int, **definition: Any) -> PenaltyRule:
        body: dict[str, Any] = {
            "name": "Test rule",
            "trigger": "missed_quest",
            "penalty_type": "xp_deduction",
            "severity": "minor",
            "consequences": {"xp_deduction": 10},
            "auto_apply": True,
        }
        body.update(definition)
        rule = await create_rule(self.db, family_id, body)
        await self.db.commit()
        return rule


@pytest.fixture
def seed(db_session: AsyncSession) -> Seeder:
    return Seeder(db_session)


@dataclass(frozen=True)
class Household:
    """Plain ids and actors; safe to use after any session rollback."""

    family_id: int
    parent_id: int
    child_id: int
    parent: Actor
    child: Actor


async def _household(seed: Seeder, name: str, total_xp: int, tz: str = "UTC") -> Household:
    family = await seed.family(name, tz)
    parent = await seed.parent(family.id, f"{name} parent")
    child = await seed.child(family.id, f"{name} kid", total_xp=total_xp)
    return Household(
        family_id=family.id,
        parent_id=parent.id,
        child_id=child.id,
        parent=Actor(parent.id, family.id, "parent"),
        child=Actor(child.id, family.id, "child"),
    )


@pytest_asyncio.fixture
async def household(seed: Seeder) -> Household:
    """A family with one parent and one child holding 100 XP."""
    return await _household(seed, "Smith", total_xp=100)


@pytest_asyncio.fixture
async def other_household(seed: Seeder) -> Household:
    return await _household(seed, "Jones", total_xp=50)


@pytest.fixture
def auth_headers(test_settings: Settings) -> Callable[[Actor], dict[str, str]]:
    """Bearer header for a family member."""

    def _headers(actor: Actor) -> dict[str, str]:
        token = create_access_token(actor.user_id, actor.family_id, actor.role)  # type: ignore[arg-type]
        return {"Authorization": f"Bearer {token}"}

    return _headers
