"""Consent management commands + handlers — the settings surface writes here.

The engine itself only reads preferences and opt-outs; these commands are
how an external settings UI (or the inbound SMS keywords) changes them.
"""

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.fields import Boolean, Identifier, Integer, String
from protean.utils.globals import current_domain
from protean.utils.mixins import handle

from courier.consent.opt_out import OptOut, OptOutSource
from courier.consent.preference import DeliveryPreference
from courier.domain import courier

logger = structlog.get_logger(__name__)


@courier.command(part_of="DeliveryPreference")
class SetPreference:
    """Create or change the preference for one (recipient, channel, category).

    Unset fields leave the stored value alone.
    """

    recipient_id: Identifier(required=True)
    channel: String(required=True, max_length=20)
    category: String(required=True, max_length=20)
    enabled: Boolean()
    daily_limit: Integer(min_value=1)
    clear_daily_limit: Boolean(default=False)
    quiet_hours_start: String(max_length=5)
    quiet_hours_end: String(max_length=5)
    timezone: String(max_length=64)
    clear_quiet_hours: Boolean(default=False)


@courier.command(part_of="OptOut")
class RecordOptOut:
    recipient_id: Identifier(required=True)
    channel: String(required=True, max_length=20)
    source: String(max_length=20, default=OptOutSource.SETTINGS.value)


@courier.command(part_of="OptOut")
class ClearOptOut:
    recipient_id: Identifier(required=True)
    channel: String(required=True, max_length=20)
    source: String(max_length=20, default=OptOutSource.SETTINGS.value)


@courier.command_handler(part_of=DeliveryPreference)
class ManagePreferenceHandler:
    @handle(SetPreference)
    def set_preference(self, command: SetPreference):
        repo = current_domain.repository_for(DeliveryPreference)
        preference = repo.find_for(command.recipient_id, command.channel, command.category)

        if preference is None:
            preference = DeliveryPreference.create(
                recipient_id=command.recipient_id,
                channel=command.channel,
                category=command.category,
                enabled=True if command.enabled is None else command.enabled,
                daily_limit=command.daily_limit,
                timezone=command.timezone,
            )
        elif command.enabled is not None or command.daily_limit is not None or command.clear_daily_limit:
            preference.update(
                enabled=command.enabled,
                daily_limit=command.daily_limit,
                clear_daily_limit=command.clear_daily_limit,
            )

        if command.quiet_hours_start or command.quiet_hours_end:
            preference.set_quiet_hours(command.quiet_hours_start, command.quiet_hours_end, command.timezone)
        elif command.clear_quiet_hours and preference.has_quiet_hours:
            preference.clear_quiet_hours()

        repo.add(preference)
        return preference.key


def record_opt_out(recipient_id, channel, source=OptOutSource.SETTINGS.value):
    """Activate the opt-out for (recipient, channel); a no-op if already active."""
    repo = current_domain.repository_for(OptOut)
    opt_out = repo.find_for(recipient_id, channel)

    if opt_out is None:
        opt_out = OptOut.record(recipient_id, channel, source=source)
    elif opt_out.active:
        # Keep the original effective time
        return opt_out
    else:
        opt_out.reactivate(source=source)

    repo.add(opt_out)
    logger.info("Opt-out recorded", recipient_id=str(recipient_id), channel=channel, source=source)
    return opt_out


def clear_opt_out(recipient_id, channel, source=OptOutSource.SETTINGS.value):
    repo = current_domain.repository_for(OptOut)
    opt_out = repo.find_for(recipient_id, channel)
    if opt_out is None:
        raise ObjectNotFoundError(f"No opt-out for {recipient_id} on {channel}")

    opt_out.clear(source=source)
    repo.add(opt_out)
    logger.info("Opt-out cleared", recipient_id=str(recipient_id), channel=channel, source=source)
    return opt_out


@courier.command_handler(part_of=OptOut)
class ManageOptOutHandler:
    @handle(RecordOptOut)
    def record_opt_out(self, command: RecordOptOut):
        return record_opt_out(command.recipient_id, command.channel, command.source).key

    @handle(ClearOptOut)
    def clear_opt_out(self, command: ClearOptOut):
        return clear_opt_out(command.recipient_id, command.channel, command.source).key
