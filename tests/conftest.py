"""Pytest configuration and fixtures."""

import uuid
from datetime import date, datetime

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_os.core.database import build_engine
from clinic_os.core.models import Base, Tenant
from clinic_os.core.repository import PatientRepository, ProviderRepository
from clinic_os.observability import ObservabilityLogger
from clinic_os.scheduling.models import Provider as ProviderModel
from clinic_os.scheduling.models import WaitlistEntry

TENANT_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")
OTHER_TENANT_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")
PROVIDER_A = uuid.UUID("00000000-0000-0000-0000-00000000000a")
PROVIDER_B = uuid.UUID("00000000-0000-0000-0000-00000000000b")
PATIENT_ID = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")

# A Monday
TODAY = date(2026, 3, 2)


# ---------------------------------------------------------------------------
# Auth override for tests: bypass the get_current_user dependency
# ---------------------------------------------------------------------------

class _MockProvider:
    """Lightweight stand-in for the Provider ORM model used in tests."""

    def __init__(self, role: str = "owner"):
        self.id = PROVIDER_A
        self.tenant_id = TENANT_ID
        self.name = "Dr. Ana Souza"
        self.role = role
        self.active = True
        self.email = "ana@example.com"
        self.password_hash = None


@pytest.fixture
def current_user():
    return _MockProvider()


@pytest.fixture(autouse=True)
def quiet_observability(tmp_path):
    """Keep the global observability logger off disk during tests."""
    previous = ObservabilityLogger._instance
    ObservabilityLogger._instance = ObservabilityLogger(log_dir=tmp_path / "obs", enabled=False)
    yield ObservabilityLogger._instance
    ObservabilityLogger._instance = previous


# ---------------------------------------------------------------------------
# Engine models
# ---------------------------------------------------------------------------

def make_provider(provider_id: uuid.UUID = PROVIDER_A, **kwargs) -> ProviderModel:
    kwargs.setdefault("tenant_id", TENANT_ID)
    kwargs.setdefault("name", f"Provider {str(provider_id)[-1]}")
    return ProviderModel(id=provider_id, **kwargs)


def make_entry(**kwargs) -> WaitlistEntry:
    kwargs.setdefault("tenant_id", TENANT_ID)
    kwargs.setdefault("patient_id", PATIENT_ID)
    kwargs.setdefault("created_at", datetime(2026, 2, 20, 9, 0))
    return WaitlistEntry(**kwargs)


# ---------------------------------------------------------------------------
# In-memory SQLite
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine():
    eng = build_engine("sqlite+aiosqlite://")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as sess:
        yield sess
        await sess.rollback()


async def seed_rows(sess: AsyncSession) -> None:
    """One tenant with two providers and a patient, plus a foreign tenant."""
    sess.add_all([
        Tenant(id=TENANT_ID, name="Clínica Central", slug="central"),
        Tenant(id=OTHER_TENANT_ID, name="Clínica Norte", slug="norte"),
    ])
    await sess.flush()
    providers = ProviderRepository(sess)
    await providers.create(id=PROVIDER_A, tenant_id=TENANT_ID, name="Dr. Ana Souza", role="owner")
    await providers.create(id=PROVIDER_B, tenant_id=TENANT_ID, name="Dr. Bruno Lima", role="professional")
    await PatientRepository(sess).create(id=PATIENT_ID, tenant_id=TENANT_ID, name="Maria Silva", phone="11999990000")


@pytest_asyncio.fixture
async def seed_clinic(session_factory):
    async with session_factory() as sess:
        await seed_rows(sess)
        await sess.commit()
    return {"tenant_id": TENANT_ID, "providers": [PROVIDER_A, PROVIDER_B], "patient_id": PATIENT_ID}
