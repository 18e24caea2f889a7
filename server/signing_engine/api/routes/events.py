from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from signing_engine.api.dependencies.auth import TeamPrincipal, get_current_principal
from signing_engine.api.dependencies.database import get_db
from signing_engine.integrations.webhooks import WebhookNotifier
from signing_engine.services.outbox_service import dispatch_pending_events


router = APIRouter(prefix="/events", tags=["events"])


@router.post("/dispatch")
async def dispatch_events_endpoint(
    session: AsyncSession = Depends(get_db),
    principal: TeamPrincipal = Depends(get_current_principal),  # noqa: ARG001 - scope enforcement via auth layer
) -> dict[str, int]:
    dispatched = await dispatch_pending_events(session, WebhookNotifier.from_settings())
    await session.commit()
    return {"dispatched": dispatched}
