from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from signing_engine.api.dependencies.auth import TeamPrincipal, get_current_principal
from signing_engine.api.dependencies.database import get_db
from signing_engine.api.dependencies.signing import get_signing_service
from signing_engine.core.errors import NotFoundError
from signing_engine.models.envelope import Envelope
from signing_engine.schemas.envelope import (
    EnvelopeCreate,
    EnvelopeRead,
    EnvelopeRemind,
    EnvelopeVoid,
    ReminderResultRead,
)
from signing_engine.schemas.signing import CompletionResultRead, SigningStatusRead
from signing_engine.services import envelope_store
from signing_engine.services.envelope_service import create_envelope, send_envelope, send_reminder, void_envelope
from signing_engine.services.signing_session import SigningSessionService


router = APIRouter(prefix="/envelopes", tags=["envelopes"])


async def _get_team_envelope(session: AsyncSession, envelope_id: str, principal: TeamPrincipal) -> Envelope:
    envelope = await envelope_store.get_envelope(session, envelope_id)
    if envelope is None or envelope.team_id != principal.team_id:
        raise NotFoundError("Envelope not found", envelope_id=envelope_id)
    return envelope


@router.post("", response_model=EnvelopeRead, status_code=status.HTTP_201_CREATED)
async def create_envelope_endpoint(
    payload: EnvelopeCreate,
    session: AsyncSession = Depends(get_db),
    principal: TeamPrincipal = Depends(get_current_principal),
) -> EnvelopeRead:
    envelope = await create_envelope(session, payload, team_id=principal.team_id, created_by_id=principal.user_id)
    await session.commit()
    return EnvelopeRead.model_validate(await _get_team_envelope(session, envelope.id, principal))


@router.get("/{envelope_id}", response_model=EnvelopeRead)
async def get_envelope_endpoint(
    envelope_id: str,
    session: AsyncSession = Depends(get_db),
    principal: TeamPrincipal = Depends(get_current_principal),
) -> EnvelopeRead:
    return EnvelopeRead.model_validate(await _get_team_envelope(session, envelope_id, principal))


@router.post("/{envelope_id}/send", response_model=EnvelopeRead)
async def send_envelope_endpoint(
    envelope_id: str,
    session: AsyncSession = Depends(get_db),
    principal: TeamPrincipal = Depends(get_current_principal),
) -> EnvelopeRead:
    await _get_team_envelope(session, envelope_id, principal)
    envelope = await send_envelope(session, envelope_id, actor_id=principal.user_id)
    await session.commit()
    return EnvelopeRead.model_validate(envelope)


@router.post("/{envelope_id}/void", response_model=EnvelopeRead)
async def void_envelope_endpoint(
    envelope_id: str,
    payload: EnvelopeVoid,
    session: AsyncSession = Depends(get_db),
    principal: TeamPrincipal = Depends(get_current_principal),
) -> EnvelopeRead:
    await _get_team_envelope(session, envelope_id, principal)
    envelope = await void_envelope(session, envelope_id, actor_id=principal.user_id, reason=payload.reason)
    await session.commit()
    return EnvelopeRead.model_validate(envelope)


@router.post("/{envelope_id}/remind", response_model=ReminderResultRead)
async def remind_envelope_endpoint(
    envelope_id: str,
    payload: EnvelopeRemind,
    session: AsyncSession = Depends(get_db),
    principal: TeamPrincipal = Depends(get_current_principal),
) -> ReminderResultRead:
    await _get_team_envelope(session, envelope_id, principal)
    reminded = await send_reminder(
        session, envelope_id, actor_id=principal.user_id, recipient_id=payload.recipient_id
    )
    await session.commit()
    return ReminderResultRead(reminded=reminded)


@router.get("/{envelope_id}/signing-status", response_model=SigningStatusRead)
async def signing_status_endpoint(
    envelope_id: str,
    principal: TeamPrincipal = Depends(get_current_principal),
    service: SigningSessionService = Depends(get_signing_service),
) -> SigningStatusRead:
    report = await service.get_signing_status(envelope_id, team_id=principal.team_id)
    return SigningStatusRead.model_validate(report)


@router.post("/{envelope_id}/reconcile", response_model=CompletionResultRead)
async def reconcile_envelope_endpoint(
    envelope_id: str,
    principal: TeamPrincipal = Depends(get_current_principal),
    service: SigningSessionService = Depends(get_signing_service),
) -> CompletionResultRead:
    await service.get_signing_status(envelope_id, team_id=principal.team_id)
    result = await service.reconcile_envelope(envelope_id)
    return CompletionResultRead(
        success=result.success,
        is_envelope_complete=result.is_envelope_complete,
        next_recipients=result.next_recipients,
        filing_result=result.filing_result.as_dict() if result.filing_result else None,
    )
