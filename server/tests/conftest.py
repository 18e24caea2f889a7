"""
Shared fixtures for the signing engine test suite.

Every test gets its own file-backed SQLite database so that separate
sessions (request path, background audit and contact tasks) see each
other's committed writes the way they would against Postgres.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./signing_engine_test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-signing")

from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional

import pytest
import pytest_asyncio
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from signing_engine.db.session import build_session_factory, init_models
from signing_engine.models.audit import AuditLog
from signing_engine.models.envelope import Envelope, EnvelopeRecipient, RecipientRole, SigningMode
from signing_engine.schemas.envelope import EnvelopeCreate, RecipientCreate
from signing_engine.services import envelope_store
from signing_engine.services.background import BackgroundTaskRunner
from signing_engine.services.envelope_service import create_envelope, send_envelope
from signing_engine.services.signing_session import SigningSessionService

TEAM_ID = "team-0001"
USER_ID = "user-0001"


@dataclass
class EnvelopeHandle:
    id: str
    signer_tokens: list[str] = field(default_factory=list)
    cc_tokens: list[str] = field(default_factory=list)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncEngine:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'signing.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        # Writers queue on the database lock instead of failing on upgrade.
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
def task_runner() -> BackgroundTaskRunner:
    return BackgroundTaskRunner()


@pytest_asyncio.fixture
async def signing_service(session_factory, task_runner) -> SigningSessionService:
    service = SigningSessionService(session_factory, task_runner=task_runner)
    yield service
    await task_runner.drain()


@pytest.fixture
def make_envelope(session_factory) -> Callable[..., Awaitable[EnvelopeHandle]]:
    async def _make(
        mode: SigningMode,
        orders: list[int],
        *,
        cc: int = 0,
        send: bool = True,
        team_id: str = TEAM_ID,
        source_file_name: Optional[str] = "mutual-nda.pdf",
        expires_at: Optional[datetime] = None,
    ) -> EnvelopeHandle:
        recipients = [
            RecipientCreate(email=f"signer{index}@example.com", name=f"Signer {index}", order=order)
            for index, order in enumerate(orders, start=1)
        ]
        recipients += [
            RecipientCreate(
                email=f"copy{index}@example.com",
                name=f"Copy {index}",
                role=RecipientRole.CC,
                order=max(orders),
            )
            for index in range(1, cc + 1)
        ]
        payload = EnvelopeCreate(
            title="Mutual NDA",
            source_file="s3://documents/mutual-nda.pdf",
            source_file_name=source_file_name,
            signing_mode=mode,
            expires_at=expires_at,
            recipients=recipients,
        )
        async with session_factory() as session:
            envelope = await create_envelope(session, payload, team_id=team_id, created_by_id=USER_ID)
            if send:
                envelope = await send_envelope(session, envelope.id, actor_id=USER_ID)
            await session.commit()
            tokens = {recipient.email: recipient.signing_token for recipient in envelope.recipients}
        return EnvelopeHandle(
            id=envelope.id,
            signer_tokens=[tokens[f"signer{index}@example.com"] for index in range(1, len(orders) + 1)],
            cc_tokens=[tokens[f"copy{index}@example.com"] for index in range(1, cc + 1)],
        )

    return _make


@pytest.fixture
def fetch_recipient(session_factory) -> Callable[[str], Awaitable[EnvelopeRecipient]]:
    async def _fetch(token: str) -> EnvelopeRecipient:
        async with session_factory() as session:
            recipient = await envelope_store.get_recipient_by_token(session, token)
        assert recipient is not None
        return recipient

    return _fetch


@pytest.fixture
def fetch_envelope(session_factory) -> Callable[[str], Awaitable[Envelope]]:
    async def _fetch(envelope_id: str) -> Envelope:
        async with session_factory() as session:
            envelope = await envelope_store.get_envelope(session, envelope_id)
        assert envelope is not None
        return envelope

    return _fetch


@pytest.fixture
def fetch_audit_events(session_factory) -> Callable[..., Awaitable[list[AuditLog]]]:
    async def _fetch(event_type: Optional[str] = None) -> list[AuditLog]:
        query = select(AuditLog).order_by(AuditLog.created_at.asc())
        if event_type is not None:
            query = query.where(AuditLog.event_type == event_type)
        async with session_factory() as session:
            return list((await session.execute(query)).scalars().all())

    return _fetch
