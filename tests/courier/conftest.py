from datetime import UTC, datetime

import pytest
from protean.integrations.pytest import DomainFixture

from courier.channel import build_default_registry
from courier.directory import InMemoryDirectory
from courier.notification.dispatcher import Dispatcher
from courier.notification.enqueue import NotificationIntake
from courier.settings import EngineSettings
from courier.tracking.tracker import DeliveryTracker

# A fixed instant after any wall-clock write the tests make (opt-outs,
# cancellation requests), so records stamped with "now" are already in effect.
NOW = datetime(2030, 1, 15, 12, 0, tzinfo=UTC)


@pytest.fixture(scope="session")
def courier_bed():
    from courier.domain import courier

    bed = DomainFixture(courier)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(courier_bed):
    with courier_bed.domain_context():
        yield


@pytest.fixture()
def now():
    return NOW


@pytest.fixture()
def settings():
    return EngineSettings(backoff_jitter_ratio=0.0, worker_count=4)


@pytest.fixture()
def directory():
    directory = InMemoryDirectory()
    directory.add("cust-1", email="ada@example.com", sms="555-010-0001", push="device-token-1")
    directory.add("cust-2", email="grace@example.com", sms="+15550100002", push="device-token-2")
    return directory


@pytest.fixture()
def channels():
    return build_default_registry()


@pytest.fixture()
def tracker():
    return DeliveryTracker()


@pytest.fixture()
def intake(directory, settings, tracker):
    return NotificationIntake(directory, settings, tracker=tracker)


@pytest.fixture()
def dispatcher(channels, settings, tracker):
    with Dispatcher(channels, settings, tracker=tracker) as dispatcher:
        yield dispatcher


@pytest.fixture()
def enqueue(intake, now):
    """Enqueue with sensible defaults; keyword arguments override them."""

    def _enqueue(at=None, **overrides):
        request = {
            "recipient_id": "cust-1",
            "channel": "email",
            "category": "transactional",
            "title": "Your order shipped",
            "body": "Order #1001 is on its way.",
        }
        request.update(overrides)
        return intake.submit(now=at or now, **request)

    return _enqueue
