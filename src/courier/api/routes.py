"""FastAPI routes for the notification engine.

Thin adapters that translate HTTP requests into intake calls and domain
commands. The intake, dispatcher and tracker live on ``app.state``.
"""

from dataclasses import asdict

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from protean.utils.globals import current_domain

from courier.api.schemas import (
    CancelResponse,
    DispatchResponse,
    EnqueueRequest,
    EnqueueResponse,
    ExternalEventRequest,
    InboundSmsRequest,
    InboundSmsResponse,
    NotificationStatusResponse,
    OptOutRequest,
    PreferenceRequest,
    StatusResponse,
)
from courier.consent.inbound_sms import HandleInboundSms
from courier.consent.management import ClearOptOut, RecordOptOut, SetPreference
from courier.errors import DuplicateRequest, RecipientUnknown
from courier.notification.cancellation import CancelNotification
from courier.tracking.external import ReportExternalEvent

router = APIRouter(prefix="/notifications", tags=["notifications"])


# ---------------------------------------------------------------------------
# Enqueue / status / cancel
# ---------------------------------------------------------------------------
@router.post("", status_code=201, response_model=EnqueueResponse)
async def enqueue_notification(body: EnqueueRequest, request: Request) -> EnqueueResponse:
    """Admit a pre-rendered notification for delivery."""
    notification_id = request.app.state.intake.submit(**body.model_dump(exclude_none=True))
    return EnqueueResponse(notification_id=notification_id)


@router.get("/{notification_id}", response_model=NotificationStatusResponse)
async def get_notification_status(notification_id: str, request: Request) -> NotificationStatusResponse:
    """Lifecycle state plus full delivery history."""
    status = request.app.state.tracker.status(notification_id)
    return NotificationStatusResponse(**asdict(status))


@router.post("/{notification_id}/cancel", response_model=CancelResponse)
async def cancel_notification(notification_id: str) -> CancelResponse:
    """Stop further attempts. Already-terminal notifications are left untouched."""
    cancelled = current_domain.process(CancelNotification(notification_id=notification_id), asynchronous=False)
    return CancelResponse(cancelled=bool(cancelled))


# ---------------------------------------------------------------------------
# Channel webhooks
# ---------------------------------------------------------------------------
@router.post("/events", status_code=201, response_model=StatusResponse)
async def report_external_event(body: ExternalEventRequest) -> StatusResponse:
    """Delivery confirmations (delivered/opened/clicked/bounced/complained)."""
    command = ReportExternalEvent(
        external_ref=body.external_ref,
        kind=body.kind,
        detail=body.detail or {},
    )
    current_domain.process(command, asynchronous=False)
    return StatusResponse()


@router.post("/inbound/sms", response_model=InboundSmsResponse)
async def inbound_sms(body: InboundSmsRequest) -> InboundSmsResponse:
    """Carrier keyword handling (STOP / START)."""
    command = HandleInboundSms(
        recipient_id=body.recipient_id,
        from_number=body.from_number,
        message=body.message,
    )
    action = current_domain.process(command, asynchronous=False)
    return InboundSmsResponse(action=action)


# ---------------------------------------------------------------------------
# Consent
# ---------------------------------------------------------------------------
@router.put("/preferences/{recipient_id}/{channel}/{category}", response_model=StatusResponse)
async def set_preference(recipient_id: str, channel: str, category: str, body: PreferenceRequest) -> StatusResponse:
    """Create or update a recipient's preference for one channel and category."""
    command = SetPreference(
        recipient_id=recipient_id,
        channel=channel,
        category=category,
        **body.model_dump(exclude_none=True),
    )
    current_domain.process(command, asynchronous=False)
    return StatusResponse()


@router.post("/opt-outs/{recipient_id}/{channel}", status_code=201, response_model=StatusResponse)
async def record_opt_out(recipient_id: str, channel: str, body: OptOutRequest | None = None) -> StatusResponse:
    command = RecordOptOut(
        recipient_id=recipient_id,
        channel=channel,
        source=body.source if body else "settings",
    )
    current_domain.process(command, asynchronous=False)
    return StatusResponse()


@router.delete("/opt-outs/{recipient_id}/{channel}", response_model=StatusResponse)
async def clear_opt_out(recipient_id: str, channel: str) -> StatusResponse:
    current_domain.process(ClearOptOut(recipient_id=recipient_id, channel=channel), asynchronous=False)
    return StatusResponse()


# ---------------------------------------------------------------------------
# Maintenance: periodic background job endpoint
# ---------------------------------------------------------------------------
@router.post("/dispatch", response_model=DispatchResponse)
def run_dispatch_cycle(request: Request) -> DispatchResponse:
    """Run one poll cycle at the current time.

    For deployments driven by an external scheduler instead of the worker loop.
    Sends block, so this runs in the FastAPI threadpool.
    """
    summary = request.app.state.dispatcher.run_cycle()
    return DispatchResponse(**summary.as_dict())


# ---------------------------------------------------------------------------
# Admission error mapping
# ---------------------------------------------------------------------------
def register_admission_handlers(app: FastAPI) -> None:
    """Map engine admission errors to HTTP responses (409 duplicate, 422 unknown recipient)."""

    @app.exception_handler(DuplicateRequest)
    async def duplicate_request_handler(request: Request, exc: DuplicateRequest):
        return JSONResponse(
            status_code=409,
            content={"error": exc.message, "existing_id": exc.existing_id},
        )

    @app.exception_handler(RecipientUnknown)
    async def recipient_unknown_handler(request: Request, exc: RecipientUnknown):
        return JSONResponse(
            status_code=422,
            content={"error": exc.message, "recipient_id": exc.recipient_id},
        )
