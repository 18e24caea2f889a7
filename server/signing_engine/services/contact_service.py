from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signing_engine.core.errors import report_error
from signing_engine.core.logging import get_logger
from signing_engine.models.contact import Contact, ContactSource, ContactStatus

logger = get_logger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def split_name(name: str) -> tuple[str, str]:
    parts = name.split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


async def find_contact(session: AsyncSession, team_id: str, email: str) -> Contact | None:
    result = await session.execute(
        select(Contact).where(Contact.team_id == team_id, Contact.email == normalize_email(email))
    )
    return result.scalars().first()


async def find_or_create_contact(session: AsyncSession, team_id: str, email: str, name: str) -> Contact:
    existing = await find_contact(session, team_id, email)
    if existing is not None:
        return existing
    first_name, last_name = split_name(name)
    contact = Contact(
        team_id=team_id,
        email=normalize_email(email),
        first_name=first_name,
        last_name=last_name,
        source=ContactSource.SIGNATURE_EVENT,
        status=ContactStatus.PROSPECT,
    )
    session.add(contact)
    await session.flush()
    logger.info("contact.auto_created", team_id=team_id, contact_id=contact.id)
    return contact


class ContactService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def auto_create_contact_for_signer(self, team_id: str, email: str, name: str) -> str | None:
        """Best-effort CRM contact for a signer; never raises."""
        try:
            async with self._session_factory() as session, session.begin():
                contact = await find_or_create_contact(session, team_id, email, name)
                return contact.id
        except IntegrityError:
            # A concurrent signing event created the same contact first.
            async with self._session_factory() as session:
                contact = await find_contact(session, team_id, email)
                return contact.id if contact is not None else None
        except Exception as exc:
            report_error(exc, team_id=team_id, operation="contact.auto_create")
            return None
