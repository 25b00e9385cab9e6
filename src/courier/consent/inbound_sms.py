"""HandleInboundSms command + handler — carrier keyword compliance.

Replies such as STOP or START arrive from the SMS provider's inbound
webhook. Keyword matching is on the whole trimmed message, case-insensitive.
"""

import structlog
from protean.fields import String
from protean.utils.globals import current_domain
from protean.utils.mixins import handle

from courier.channel.sms import normalize_phone_number
from courier.consent.management import clear_opt_out, record_opt_out
from courier.consent.opt_out import OptOut, OptOutSource
from courier.domain import courier
from courier.notification.notification import Channel

logger = structlog.get_logger(__name__)

OPT_OUT_KEYWORDS = frozenset({"STOP", "UNSUBSCRIBE", "QUIT", "END", "CANCEL", "STOPALL"})
OPT_IN_KEYWORDS = frozenset({"START", "UNSTOP", "YES"})


def interpret_keyword(message):
    """Return "opt_out", "opt_in" or None for an inbound message."""
    keyword = (message or "").strip().upper()
    if keyword in OPT_OUT_KEYWORDS:
        return "opt_out"
    if keyword in OPT_IN_KEYWORDS:
        return "opt_in"
    return None


@courier.command(part_of="OptOut")
class HandleInboundSms:
    recipient_id: String(required=True, max_length=255)
    from_number: String(max_length=32)
    message: String(required=True, max_length=1600)


@courier.command_handler(part_of=OptOut)
class InboundSmsHandler:
    @handle(HandleInboundSms)
    def handle_inbound_sms(self, command: HandleInboundSms):
        action = interpret_keyword(command.message)
        log = logger.bind(
            recipient_id=command.recipient_id,
            from_number=normalize_phone_number(command.from_number),
        )

        if action == "opt_out":
            record_opt_out(command.recipient_id, Channel.SMS.value, OptOutSource.SMS_KEYWORD.value)
            log.info("SMS opt-out keyword received")
        elif action == "opt_in":
            opt_out = current_domain.repository_for(OptOut).find_for(command.recipient_id, Channel.SMS.value)
            if opt_out is not None and opt_out.active:
                clear_opt_out(command.recipient_id, Channel.SMS.value, OptOutSource.SMS_KEYWORD.value)
            log.info("SMS opt-in keyword received")
        else:
            log.debug("Inbound SMS ignored", message_length=len(command.message))

        return action
