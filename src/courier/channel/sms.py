"""Outbound SMS formatting shared by SMS adapters."""

import re

MAX_SMS_LENGTH = 1600  # Ten concatenated segments
OPT_OUT_FOOTER = "\n\nReply STOP to opt out."


def normalize_phone_number(phone):
    """Normalize to E.164 (``+15551234567``); 10-digit numbers are assumed US.

    Returns None when the input cannot be a phone number.
    """
    if not phone:
        return None

    digits = re.sub(r"\D", "", phone)
    if len(digits) == 10:
        digits = "1" + digits

    if not 10 < len(digits) <= 15:
        return None
    return "+" + digits


def prepare_sms_body(body, category):
    """Cap the length and make sure marketing messages end with the opt-out footer.

    The body is truncated before the footer is added so the footer always
    survives and appears once even when the body already carries it.
    """
    message = body or ""
    footer = ""
    if category == "marketing":
        footer = OPT_OUT_FOOTER
        message = message.removesuffix(OPT_OUT_FOOTER)

    room = MAX_SMS_LENGTH - len(footer)
    if len(message) > room:
        message = message[: room - 3] + "..."
    return message + footer
