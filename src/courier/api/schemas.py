"""Pydantic request/response models for the notification API.

API schemas are separate from Protean commands (anti-corruption pattern).
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request Models
# ---------------------------------------------------------------------------
class EnqueueRequest(BaseModel):
    recipient_id: str
    channel: str = Field(..., examples=["email"])
    category: str = Field(..., examples=["transactional"])
    priority: str = Field("normal", examples=["high"])
    title: str | None = None
    body: str
    data: dict | None = None
    dedup_key: str | None = Field(None, examples=["spring-sale:cust-42"])
    scheduled_at: datetime | None = None
    expires_at: datetime | None = None


class ExternalEventRequest(BaseModel):
    external_ref: str
    kind: str = Field(..., examples=["delivered"])
    detail: dict | None = None


class PreferenceRequest(BaseModel):
    enabled: bool | None = None
    daily_limit: int | None = Field(None, ge=1)
    clear_daily_limit: bool = False
    quiet_hours_start: str | None = Field(None, pattern=r"^\d{2}:\d{2}$", examples=["22:00"])
    quiet_hours_end: str | None = Field(None, pattern=r"^\d{2}:\d{2}$", examples=["08:00"])
    timezone: str | None = Field(None, examples=["America/New_York"])
    clear_quiet_hours: bool = False


class OptOutRequest(BaseModel):
    source: str = "settings"


class InboundSmsRequest(BaseModel):
    recipient_id: str
    from_number: str | None = None
    message: str


# ---------------------------------------------------------------------------
# Response Models
# ---------------------------------------------------------------------------
class StatusResponse(BaseModel):
    status: str = "ok"


class EnqueueResponse(BaseModel):
    notification_id: str


class HistoryEntryResponse(BaseModel):
    kind: str
    sequence: int
    occurred_at: datetime
    detail: dict = {}


class NotificationStatusResponse(BaseModel):
    notification_id: str
    status: str
    effective_state: str
    channel: str
    attempt_count: int
    external_ref: str | None = None
    error: str | None = None
    last_error: str | None = None
    next_attempt_at: datetime | None = None
    sent_at: datetime | None = None
    history: list[HistoryEntryResponse] = []


class CancelResponse(StatusResponse):
    cancelled: bool


class InboundSmsResponse(StatusResponse):
    action: str | None = None


class DispatchResponse(StatusResponse):
    selected: int = 0
    claimed: int = 0
    skipped: int = 0
    dispatched: int = 0
    sent: int = 0
    deferred: int = 0
    retried: int = 0
    failed: int = 0
    cancelled: int = 0
