"""
tests/conftest.py
Shared fixtures: a per-test SQLite database, an in-memory Redis stand-in,
an ASGI test client and one user per role.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("APP_ENV", "test")

import time
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from config.database import Base, build_engine, get_db
from config.redis_client import get_redis
from main import app
from shared.models.models import (
    Case,
    CaseStatus,
    DonorProfile,
    HospitalProfile,
    PatientProfile,
    SponsorProfile,
    UrgencyLevel,
    User,
    UserRole,
)
from shared.utils.security import create_access_token, hash_password

TEST_PASSWORD = "Sup3rSecret!"
_PASSWORD_HASH = hash_password(TEST_PASSWORD)


# ── Redis ─────────────────────────────────────────────────────

class FakeRedis:
    """Just enough of redis.asyncio for the token deny-list."""

    def __init__(self):
        self.store = {}

    def _live(self, key):
        item = self.store.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and expires_at <= time.monotonic():
            del self.store[key]
            return None
        return value

    async def setex(self, key, ttl, value):
        self.store[key] = (value, time.monotonic() + ttl)
        return True

    async def get(self, key):
        return self._live(key)

    async def exists(self, *keys):
        return sum(1 for k in keys if self._live(k) is not None)

    async def ping(self):
        return True


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


# ── Database ──────────────────────────────────────────────────

@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
async def app_engine(database_url):
    """Engine the app runs on: BEGIN IMMEDIATE, one writer at a time."""
    engine = build_engine(database_url, poolclass=NullPool, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(app_engine):
    return async_sessionmaker(
        bind=app_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
async def db(app_engine, database_url):
    """
    Session for arranging and inspecting data. It uses its own plain engine
    so reads never hold the write lock the app's requests wait on.
    """
    engine = create_async_engine(database_url, poolclass=NullPool)

    @event.listens_for(engine.sync_engine, "connect")
    def _wal_mode(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))

    session = AsyncSession(engine, expire_on_commit=False, autoflush=False)
    yield session
    await session.close()
    await engine.dispose()


@pytest.fixture
async def client(session_factory, fake_redis, db):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: fake_redis
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def refetch(db: AsyncSession, model, pk):
    """Load a row again, bypassing whatever the session already holds."""
    return await db.get(model, pk, populate_existing=True)


# ── Users ─────────────────────────────────────────────────────

async def make_user(
    db: AsyncSession,
    role: UserRole,
    email: str,
    name: str,
    approved: bool = True,
) -> User:
    user = User(
        email=email,
        name=name,
        password_hash=_PASSWORD_HASH,
        role=role,
        approved=approved,
    )
    db.add(user)
    await db.flush()
    if role == UserRole.PATIENT:
        db.add(PatientProfile(user_id=user.id, full_name=name, email=email))
    elif role == UserRole.DONOR:
        db.add(DonorProfile(user_id=user.id, full_name=name, email=email))
    elif role == UserRole.HOSPITAL:
        db.add(HospitalProfile(user_id=user.id))
    elif role == UserRole.SPONSOR:
        db.add(SponsorProfile(user_id=user.id, full_name=name, email=email))
    await db.commit()
    await db.refresh(user)
    return user


@pytest.fixture
async def patient_user(db) -> User:
    return await make_user(db, UserRole.PATIENT, "patient@example.com", "Priya Patient")


@pytest.fixture
async def other_patient(db) -> User:
    return await make_user(db, UserRole.PATIENT, "other.patient@example.com", "Omar Other")


@pytest.fixture
async def donor_user(db) -> User:
    return await make_user(db, UserRole.DONOR, "donor@example.com", "Dana Donor")


@pytest.fixture
async def hospital_user(db) -> User:
    return await make_user(db, UserRole.HOSPITAL, "hospital@example.com", "City General")


@pytest.fixture
async def other_hospital(db) -> User:
    return await make_user(db, UserRole.HOSPITAL, "mercy@example.com", "Mercy Hospital")


@pytest.fixture
async def pending_hospital(db) -> User:
    return await make_user(db, UserRole.HOSPITAL, "new.hospital@example.com", "New Clinic", approved=False)


@pytest.fixture
async def sponsor_user(db) -> User:
    return await make_user(db, UserRole.SPONSOR, "sponsor@example.com", "Sam Sponsor")


@pytest.fixture
async def pending_sponsor(db) -> User:
    return await make_user(db, UserRole.SPONSOR, "new.sponsor@example.com", "Nia Newsponsor", approved=False)


@pytest.fixture
async def admin_user(db) -> User:
    return await make_user(db, UserRole.ADMIN, "admin@example.com", "Ada Admin")


# ── Cases ─────────────────────────────────────────────────────

async def make_case(
    db: AsyncSession,
    patient: User,
    funding_goal: Decimal = Decimal("0"),
    status: CaseStatus = CaseStatus.WAITING,
    **fields,
) -> Case:
    case = Case(
        patient_id=patient.id,
        organ_needed=fields.pop("organ_needed", "kidney"),
        urgency_level=fields.pop("urgency_level", UrgencyLevel.HIGH),
        status=status,
        funding_goal=funding_goal,
        funding_amount=fields.pop("funding_amount", Decimal("0")),
        **fields,
    )
    db.add(case)
    await db.commit()
    await db.refresh(case)
    return case


@pytest.fixture
async def case(db, patient_user) -> Case:
    """A waiting kidney case with a 100.00 goal and one lab file."""
    return await make_case(
        db,
        patient_user,
        funding_goal=Decimal("100.00"),
        notes="Needs dialysis three times a week",
        lab_results_files=[
            {
                "name": "cbc.pdf",
                "url": "https://files.example.com/cbc.pdf",
                "size": 2048,
                "type": "application/pdf",
                "path": f"{patient_user.id}/x/lab-results/1_cbc.pdf",
            }
        ],
    )


# ── Helpers ───────────────────────────────────────────────────

def auth_headers(user: User) -> dict:
    token, _ = create_access_token(str(user.id), user.role.value, user.email)
    return {"Authorization": f"Bearer {token}"}
