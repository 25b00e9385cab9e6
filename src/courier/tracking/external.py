"""ReportExternalEvent command + handler — channel webhooks after a send.

Delivery confirmations arrive keyed by the transport's external reference.
Complaint (and, if configured, bounce) reports also withdraw consent for
the channel so no further messages go out on it.
"""

import structlog
from protean.exceptions import ValidationError
from protean.fields import Dict, String
from protean.utils.globals import current_domain
from protean.utils.mixins import handle

from courier.consent.management import record_opt_out
from courier.consent.opt_out import OptOutSource
from courier.domain import courier
from courier.notification.notification import Notification
from courier.settings import load_settings
from courier.tracking.delivery_event import EXTERNAL_KINDS, DeliveryEvent, DeliveryEventKind
from courier.tracking.tracker import DeliveryTracker

logger = structlog.get_logger(__name__)

_OPT_OUT_SOURCES = {
    DeliveryEventKind.COMPLAINED.value: OptOutSource.COMPLAINT.value,
    DeliveryEventKind.BOUNCED.value: OptOutSource.BOUNCE.value,
}


@courier.command(part_of="DeliveryEvent")
class ReportExternalEvent:
    """A channel reported what happened to a message it accepted."""

    external_ref: String(required=True, max_length=255)
    kind: String(required=True, max_length=50)
    detail: Dict()


@courier.command_handler(part_of=DeliveryEvent)
class ExternalEventHandler:
    @handle(ReportExternalEvent)
    def report_external_event(self, command: ReportExternalEvent):
        if command.kind not in {kind.value for kind in EXTERNAL_KINDS}:
            raise ValidationError({"kind": [f"Unsupported external event kind: {command.kind}"]})

        notification = current_domain.repository_for(Notification).find_by_external_ref(command.external_ref)
        detail = dict(command.detail or {})
        detail["external_ref"] = command.external_ref
        DeliveryTracker().record(notification.id, command.kind, detail)

        if command.kind in load_settings().opt_out_event_kinds:
            self._withdraw_consent(notification, command.kind)

        logger.info(
            "External delivery event recorded",
            notification_id=str(notification.id),
            kind=command.kind,
            channel=notification.channel,
        )
        return str(notification.id)

    def _withdraw_consent(self, notification, kind):
        source = _OPT_OUT_SOURCES.get(kind, OptOutSource.COMPLAINT.value)
        record_opt_out(notification.recipient_id, notification.channel, source=source)
