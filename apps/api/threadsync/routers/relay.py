"""Internal endpoint to run one relay pass on demand.

Protected by X-Internal-Secret header. Shares the app's relays so
overlapping calls never post the same row twice; the row lease keeps this
endpoint and a running worker from posting the same row.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from threadsync.core.deps import get_db, verify_internal_secret
from threadsync.schemas.thread import RelayRunResult
from threadsync.services.relay_service import PlatformRelay, default_relays, run_relays

router = APIRouter(
    prefix="/internal/relay",
    tags=["internal"],
    dependencies=[Depends(verify_internal_secret)],
)


def get_relays(request: Request) -> list[PlatformRelay]:
    relays = getattr(request.app.state, "relays", None)
    if relays is None:
        relays = default_relays()
        request.app.state.relays = relays
    return relays


@router.post("/run", response_model=RelayRunResult)
async def run_relay(
    db: Session = Depends(get_db),
    relays: list[PlatformRelay] = Depends(get_relays),
):
    stats = await run_relays(db, relays)
    return RelayRunResult(
        messages_sent=stats.messages_sent,
        updates_sent=stats.updates_sent,
        failures=stats.failures,
    )
