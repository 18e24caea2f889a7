from fastapi import APIRouter, Depends, Request

from signing_engine.api.dependencies.signing import get_signing_service
from signing_engine.schemas.signing import (
    CompletionResultRead,
    DeclineResultRead,
    DeclineSubmission,
    SignatureSubmission,
    SignerSessionRead,
)
from signing_engine.services.signing_session import SigningSessionService


router = APIRouter(prefix="/sign", tags=["signing"])


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.get("/{token}", response_model=SignerSessionRead)
async def authenticate_signer_endpoint(
    token: str,
    service: SigningSessionService = Depends(get_signing_service),
) -> SignerSessionRead:
    signer = await service.authenticate_signer(token)
    return SignerSessionRead.model_validate(signer)


@router.post("/{token}/complete", response_model=CompletionResultRead)
async def complete_signing_endpoint(
    token: str,
    payload: SignatureSubmission,
    request: Request,
    service: SigningSessionService = Depends(get_signing_service),
) -> CompletionResultRead:
    result = await service.record_signer_completion(
        token,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        signature_image=payload.signature_image,
        signature_type=payload.signature_type,
        field_values=payload.field_values,
        esign_consent=payload.esign_consent,
    )
    return CompletionResultRead(
        success=result.success,
        is_envelope_complete=result.is_envelope_complete,
        next_recipients=result.next_recipients,
        filing_result=result.filing_result.as_dict() if result.filing_result else None,
    )


@router.post("/{token}/decline", response_model=DeclineResultRead)
async def decline_signing_endpoint(
    token: str,
    payload: DeclineSubmission,
    request: Request,
    service: SigningSessionService = Depends(get_signing_service),
) -> DeclineResultRead:
    result = await service.record_signer_decline(
        token,
        reason=payload.reason,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return DeclineResultRead.model_validate(result)
