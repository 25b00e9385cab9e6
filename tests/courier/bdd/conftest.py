"""Shared BDD fixtures and step definitions for notification delivery."""

import pytest
from protean import current_domain
from pytest_bdd import given, parsers, then

from courier.consent.management import record_opt_out
from courier.consent.preference import DeliveryPreference
from courier.notification.dispatcher import Dispatcher
from courier.notification.notification import Notification


@pytest.fixture()
def engine(settings):
    """Settings overrides collected by Given steps, applied when dispatching."""
    return {"settings": settings}


@pytest.fixture()
def enqueued():
    return []


@pytest.fixture()
def run_dispatcher(channels, engine, tracker):
    created = []

    def _make():
        dispatcher = Dispatcher(channels, engine["settings"], tracker=tracker)
        created.append(dispatcher)
        return dispatcher

    yield _make
    for dispatcher in created:
        dispatcher.close()


def _notification(enqueued):
    return current_domain.repository_for(Notification).get(enqueued[-1])


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('recipient "{recipient_id}" has no preferences'))
def no_preferences(recipient_id):
    assert current_domain.repository_for(DeliveryPreference).find_by_recipient(recipient_id) == []


@given(parsers.cfparse('recipient "{recipient_id}" has opted out of "{channel}"'))
def opted_out(recipient_id, channel):
    record_opt_out(recipient_id, channel)


@given(parsers.cfparse("the engine allows {count:d} retries"))
def max_retries(engine, count):
    engine["settings"] = engine["settings"].with_overrides(max_retries=count)


@given(parsers.cfparse('the "{category}" cap is {limit:d} per hour'))
def hourly_cap(engine, category, limit):
    settings = engine["settings"]
    engine["settings"] = settings.with_overrides(
        rate_limits={**settings.rate_limits, category: limit},
        rate_window_seconds=3600,
    )


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the notification status is "{status}"'))
def notification_status_is(enqueued, status):
    assert _notification(enqueued).status == status


@then(parsers.cfparse('the notification error is "{error}"'))
def notification_error_is(enqueued, error):
    assert _notification(enqueued).error == error


@then(parsers.cfparse("the notification attempt count is {count:d}"))
def notification_attempt_count(enqueued, count):
    assert _notification(enqueued).attempt_count == count


@then(parsers.re(r'the "(?P<channel>\w+)" adapter was called (?P<count>\d+) times?'), converters={"count": int})
def adapter_calls(channels, channel, count):
    assert channels.get(channel).calls == count
