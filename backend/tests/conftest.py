from __future__ import annotations

import os
import tempfile
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

# Settings are read at import time; configure before importing the app.
os.environ.setdefault(
    "DATABASE_URL_ASYNC",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'school_erp_import.db')}",
)
os.environ.setdefault("JWT_SECRET", "test-secret-0123456789abcdef0123456789")
os.environ.setdefault("ASSIGN_TENANT_SECRET", "test-assign-secret")
os.environ.setdefault("JSON_LOGS", "false")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.pool import NullPool

from app.auth.context import issue_access_token
from app.db.session import build_engine, get_db, make_sessionmaker

# Ensure Base + models are registered before create_all
from app.db.base import Base
import app.models  # noqa: F401
from app.models.credential import Credential
from app.models.invitation import Invitation
from app.models.member import Member
from app.models.tenant import Tenant


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------
# Database config
# ---------------------------------------------------------
@pytest.fixture()
def database_url_async(tmp_path) -> str:
    """
    Fresh SQLite file per test; set TEST_DATABASE_URL to run against Postgres.
    """
    return os.getenv("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


# ---------------------------------------------------------
# Engine + schema lifecycle
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def engine(database_url_async: str):
    engine = build_engine(database_url_async, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture()
def sessionmaker(engine):
    return make_sessionmaker(engine)


# ---------------------------------------------------------
# DB session for service calls & assertions
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def db(sessionmaker):
    """
    Never leave a transaction open on this session while the HTTP client or
    another session writes: SQLite transactions hold the database write lock.
    """
    async with sessionmaker() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------
# Test data (each helper commits in its own session and returns plain values)
# ---------------------------------------------------------
@dataclass(frozen=True)
class MemberRef:
    id: uuid.UUID
    email: str
    tenant_id: Optional[uuid.UUID]
    role: str


@dataclass(frozen=True)
class InviteRef:
    id: uuid.UUID
    token: str
    tenant_id: uuid.UUID
    email: str
    role: str


class Factory:
    def __init__(self, sessionmaker):
        self._sessionmaker = sessionmaker

    async def tenant(self, name: str = "Greenfield Academy", slug: Optional[str] = None, status: str = "active") -> uuid.UUID:
        async with self._sessionmaker() as s:
            tenant = Tenant(name=name, slug=slug or f"school-{uuid.uuid4().hex[:8]}", status=status)
            s.add(tenant)
            await s.commit()
            return tenant.id

    async def member(
        self,
        email: str,
        *,
        tenant_id: Optional[uuid.UUID] = None,
        role: str = "member",
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        password_hash: Optional[str] = None,
        is_active: bool = True,
    ) -> MemberRef:
        async with self._sessionmaker() as s:
            m = Member(
                email=email.strip().lower(),
                tenant_id=tenant_id,
                role=role,
                first_name=first_name,
                last_name=last_name,
                password_hash=password_hash,
                is_active=is_active,
            )
            s.add(m)
            await s.commit()
            return MemberRef(id=m.id, email=m.email, tenant_id=m.tenant_id, role=m.role)

    async def invite(
        self,
        tenant_id: uuid.UUID,
        email: str,
        *,
        role: str = "teacher",
        status: str = "pending",
        expires_at: Optional[datetime] = None,
        created_by: Optional[uuid.UUID] = None,
    ) -> InviteRef:
        async with self._sessionmaker() as s:
            inv = Invitation(
                tenant_id=tenant_id,
                email=email.strip().lower(),
                role=role,
                token=f"tok_{uuid.uuid4().hex}{uuid.uuid4().hex}",
                status=status,
                expires_at=expires_at or utcnow() + timedelta(days=7),
                created_by=created_by,
            )
            s.add(inv)
            await s.commit()
            return InviteRef(id=inv.id, token=inv.token, tenant_id=tenant_id, email=inv.email, role=role)

    async def credential(self, member_id: uuid.UUID, username: str, default_password: str = "Initial2345") -> None:
        async with self._sessionmaker() as s:
            s.add(Credential(member_id=member_id, username=username, default_password=default_password))
            await s.commit()

    async def get(self, model, pk):
        async with self._sessionmaker() as s:
            return await s.get(model, pk)

    async def all(self, stmt):
        async with self._sessionmaker() as s:
            return list((await s.execute(stmt)).scalars().all())


@pytest.fixture()
def factory(sessionmaker) -> Factory:
    return Factory(sessionmaker)


def bearer(member: MemberRef) -> dict:
    return {"Authorization": f"Bearer {issue_access_token(member)}"}


@pytest.fixture()
def auth_headers():
    return bearer



# ---------------------------------------------------------
# FastAPI app + dependency override
# ---------------------------------------------------------
@pytest.fixture()
def app(sessionmaker):
    from app.main import app as fastapi_app

    async def _override_get_db():
        async with sessionmaker() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


# ---------------------------------------------------------
# HTTP client
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
    ) as ac:
        yield ac
