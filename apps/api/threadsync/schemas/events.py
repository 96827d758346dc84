"""Schemas for events forwarded by the Discord gateway bridge."""

from typing import Any

from pydantic import BaseModel, Field


class GatewayDispatch(BaseModel):
    """A gateway dispatch as received by the bridge: event name `t`, data `d`."""
    t: str = Field(min_length=1)
    d: dict[str, Any]


class EventAck(BaseModel):
    status: str = "ok"
    event: str
    handled: bool
