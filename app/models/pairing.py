"""
Browser-extension pairing models.

A signed-in user starts a pairing and gets a short-lived 6-digit code; the
extension exchanges that code (once) for a long-lived import token.
"""
from datetime import datetime

from pydantic import Field

from app.models.base import CamelModel

DEFAULT_DEVICE_NAME = "Browser Extension"


class PairingStartRequest(CamelModel):
    device_name: str | None = Field(None, max_length=120)


class PairingStartResponse(CamelModel):
    ok: bool = True
    pairing_id: str
    code: str
    expires_at: datetime


class PairingStatusResponse(CamelModel):
    ok: bool = True
    pairing_id: str
    paired: bool
    used_at: datetime | None = None
    expires_at: datetime
    expired: bool


class PairingCompleteRequest(CamelModel):
    pairing_id: str | None = None
    code: str | None = None


class PairingCompleteResponse(CamelModel):
    ok: bool = True
    token: str
    user_id: str
    expires_at: datetime
