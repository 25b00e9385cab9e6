"""Tests for DeliveryPreference and OptOut aggregates."""

from datetime import UTC, datetime, timedelta

import pytest
from protean.exceptions import ValidationError

from courier.consent.events import (
    OptOutCleared,
    OptOutRecorded,
    PreferenceSet,
    QuietHoursCleared,
    QuietHoursSet,
)
from courier.consent.opt_out import OptOut, OptOutSource
from courier.consent.preference import DeliveryPreference, preference_key


def _preference(**overrides):
    defaults = {"recipient_id": "cust-001", "channel": "email", "category": "marketing"}
    defaults.update(overrides)
    preference = DeliveryPreference.create(**defaults)
    preference._events.clear()
    return preference


class TestDeliveryPreference:
    def test_identity_is_the_tuple(self):
        preference = _preference()
        assert preference.key == preference_key("cust-001", "email", "marketing")

    def test_defaults(self):
        preference = _preference()
        assert preference.enabled is True
        assert preference.daily_limit is None
        assert preference.timezone is None
        assert not preference.has_quiet_hours

    def test_create_is_stamped_with_given_time(self):
        now = datetime(2030, 1, 15, 12, 0, tzinfo=UTC)
        preference = DeliveryPreference.create("cust-001", "sms", "system", now=now)
        assert preference.created_at == now
        assert preference._events[0].updated_at == now

    def test_create_raises_preference_set(self):
        preference = DeliveryPreference.create(recipient_id="cust-001", channel="sms", category="system")
        assert isinstance(preference._events[0], PreferenceSet)

    def test_create_rejects_unknown_timezone(self):
        with pytest.raises(ValidationError):
            _preference(timezone="Nowhere/Special")

    def test_update_enabled_and_limit(self):
        preference = _preference()
        preference.update(enabled=False, daily_limit=3)
        assert preference.enabled is False
        assert preference.daily_limit == 3
        assert isinstance(preference._events[-1], PreferenceSet)

    def test_clear_daily_limit(self):
        preference = _preference(daily_limit=3)
        preference.update(clear_daily_limit=True)
        assert preference.daily_limit is None

    def test_update_without_changes_is_rejected(self):
        with pytest.raises(ValidationError):
            _preference().update()

    def test_daily_limit_must_be_positive(self):
        with pytest.raises(ValidationError):
            _preference(daily_limit=0)

    def test_set_quiet_hours(self):
        preference = _preference()
        preference.set_quiet_hours("22:00", "07:00", "Europe/Berlin")
        assert preference.has_quiet_hours
        assert preference.timezone == "Europe/Berlin"
        assert isinstance(preference._events[-1], QuietHoursSet)

    def test_quiet_hours_need_both_ends(self):
        with pytest.raises(ValidationError):
            _preference().set_quiet_hours("22:00", None)

    def test_quiet_hours_bad_format(self):
        with pytest.raises(ValidationError):
            _preference().set_quiet_hours("10pm", "07:00")

    def test_clear_quiet_hours(self):
        preference = _preference()
        preference.set_quiet_hours("22:00", "07:00")
        preference.clear_quiet_hours()
        assert not preference.has_quiet_hours
        assert isinstance(preference._events[-1], QuietHoursCleared)

    def test_quiet_until(self):
        preference = _preference()
        preference.set_quiet_hours("22:00", "07:00")
        night = datetime(2030, 1, 15, 23, 30, tzinfo=UTC)
        assert preference.quiet_until(night) == datetime(2030, 1, 16, 7, 0, tzinfo=UTC)
        assert preference.quiet_until(datetime(2030, 1, 15, 12, 0, tzinfo=UTC)) is None

    def test_quiet_until_falls_back_to_recipient_timezone(self):
        preference = _preference()
        preference.set_quiet_hours("22:00", "23:00")
        # 03:30 UTC is 22:30 in New York during winter
        now = datetime(2030, 1, 16, 3, 30, tzinfo=UTC)
        assert preference.quiet_until(now) is None
        assert preference.quiet_until(now, fallback_timezone="America/New_York") == datetime(
            2030, 1, 16, 4, 0, tzinfo=UTC
        )

    def test_own_timezone_wins_over_fallback(self):
        preference = _preference()
        preference.set_quiet_hours("22:00", "23:00", "UTC")
        now = datetime(2030, 1, 16, 3, 30, tzinfo=UTC)
        assert preference.quiet_until(now, fallback_timezone="America/New_York") is None


class TestOptOut:
    def test_record(self):
        opt_out = OptOut.record("cust-001", "sms", source=OptOutSource.SMS_KEYWORD.value)
        assert opt_out.active is True
        assert opt_out.key == "cust-001|sms"
        assert opt_out.source == "sms_keyword"
        assert isinstance(opt_out._events[0], OptOutRecorded)

    def test_active_only_from_effective_time(self):
        effective = datetime(2030, 1, 15, 12, 0, tzinfo=UTC)
        opt_out = OptOut.record("cust-001", "email", effective_at=effective)
        assert not opt_out.is_active_at(effective - timedelta(seconds=1))
        assert opt_out.is_active_at(effective)

    def test_clear(self):
        opt_out = OptOut.record("cust-001", "email")
        opt_out.clear()
        assert opt_out.active is False
        assert not opt_out.is_active_at(datetime.now(UTC) + timedelta(days=1))
        assert isinstance(opt_out._events[-1], OptOutCleared)

    def test_clear_twice_is_rejected(self):
        opt_out = OptOut.record("cust-001", "email")
        opt_out.clear()
        with pytest.raises(ValidationError):
            opt_out.clear()

    def test_reactivate(self):
        opt_out = OptOut.record("cust-001", "email")
        opt_out.clear()
        opt_out.reactivate(source=OptOutSource.COMPLAINT.value)
        assert opt_out.active is True
        assert opt_out.source == "complaint"

    def test_reactivate_active_is_rejected(self):
        with pytest.raises(ValidationError):
            OptOut.record("cust-001", "email").reactivate()
