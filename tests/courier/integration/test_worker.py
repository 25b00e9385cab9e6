"""Integration test for the dispatcher worker entry point."""

import pytest
from protean import current_domain

from courier.notification.notification import Notification
from worker import run


@pytest.mark.fast
def test_single_cycle_sends_due_notifications(intake, channels):
    # Stamped with the wall clock so the worker's own "now" finds it due
    notification_id = intake.submit(
        recipient_id="cust-2",
        channel="email",
        category="transactional",
        title="Password reset",
        body="Use code 481516 to reset your password.",
    )

    summary = run(once=True, channels=channels)

    assert summary.sent == 1
    assert current_domain.repository_for(Notification).get(notification_id).status == "sent"
    assert channels.get("email").sent_emails[0]["to"] == "grace@example.com"
