"""CancelNotification command + handler — cooperative cancellation by expiry."""

import structlog
from protean.fields import Identifier
from protean.utils.globals import current_domain
from protean.utils.mixins import handle

from courier.domain import courier
from courier.notification.notification import Notification
from courier.utils.time import utcnow

logger = structlog.get_logger(__name__)


@courier.command(part_of="Notification")
class CancelNotification:
    """Stop any further attempts; an attempt already in flight is not recalled."""

    notification_id: Identifier(required=True)


@courier.command_handler(part_of=Notification)
class CancelNotificationHandler:
    @handle(CancelNotification)
    def cancel_notification(self, command: CancelNotification):
        repo = current_domain.repository_for(Notification)
        notification = repo.get(command.notification_id)

        if not notification.request_cancellation(utcnow()):
            logger.info(
                "Cancellation ignored, notification already terminal",
                notification_id=str(notification.id),
                status=notification.status,
            )
            return False

        repo.add(notification)
        logger.info("Cancellation requested", notification_id=str(notification.id))
        return True
