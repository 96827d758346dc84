"""Internal endpoint for Discord gateway events.

Discord has no message webhooks, so a gateway bridge forwards MESSAGE_CREATE
dispatches here. Protected by X-Internal-Secret header.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from threadsync.core.deps import get_db, verify_internal_secret
from threadsync.db.enums import Platform
from threadsync.schemas.events import EventAck, GatewayDispatch
from threadsync.services.event_dispatch import dispatch_event

router = APIRouter(
    prefix="/internal/discord",
    tags=["internal"],
    dependencies=[Depends(verify_internal_secret)],
)


@router.post("/events", response_model=EventAck)
async def receive_discord_event(
    data: GatewayDispatch,
    db: Session = Depends(get_db),
):
    event = data.t.lower()
    result = await dispatch_event(
        db, Platform.DISCORD, event, data.d, delivery_id=data.d.get("id")
    )
    return EventAck(event=event, handled=result.handled)
