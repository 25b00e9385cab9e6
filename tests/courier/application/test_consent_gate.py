"""Application tests for the preference & consent gate."""

from datetime import UTC, datetime, timedelta

from protean import current_domain

from courier.consent.gate import ConsentGate, Decision, DenialReason
from courier.consent.opt_out import OptOut
from courier.consent.preference import DeliveryPreference
from courier.ratelimit.limiter import RateLimiter

NOW = datetime(2030, 1, 15, 12, 0, tzinfo=UTC)


def _gate(settings):
    return ConsentGate(RateLimiter(settings))


def _opt_out(recipient_id="cust-1", channel="email", effective_at=NOW - timedelta(days=1)):
    current_domain.repository_for(OptOut).add(OptOut.record(recipient_id, channel, effective_at=effective_at))


def _preference(**overrides):
    defaults = {"recipient_id": "cust-1", "channel": "email", "category": "marketing"}
    quiet_hours = overrides.pop("quiet_hours", None)
    defaults.update(overrides)
    preference = DeliveryPreference.create(**defaults)
    if quiet_hours:
        preference.set_quiet_hours(*quiet_hours)
    current_domain.repository_for(DeliveryPreference).add(preference)
    return preference


class TestDefaults:
    def test_no_records_means_allowed(self, settings):
        assert _gate(settings).may_send("cust-1", "sms", "marketing", NOW) == Decision.allowed()


class TestOptOut:
    def test_active_opt_out_denies_permanently(self, settings):
        _opt_out()
        decision = _gate(settings).may_send("cust-1", "email", "transactional", NOW)
        assert not decision.allow
        assert decision.reason == DenialReason.OPTED_OUT.value
        assert decision.retry_after is None
        assert decision.is_permanent

    def test_opt_out_overrides_enabled_preference(self, settings):
        _opt_out()
        _preference(category="transactional", enabled=True)
        decision = _gate(settings).may_send("cust-1", "email", "transactional", NOW)
        assert decision.reason == "OptedOut"

    def test_opt_out_is_per_channel(self, settings):
        _opt_out(channel="sms")
        assert _gate(settings).may_send("cust-1", "email", "marketing", NOW).allow

    def test_future_opt_out_not_yet_in_effect(self, settings):
        _opt_out(effective_at=NOW + timedelta(hours=1))
        assert _gate(settings).may_send("cust-1", "email", "marketing", NOW).allow

    def test_cleared_opt_out(self, settings):
        opt_out = OptOut.record("cust-1", "email", effective_at=NOW - timedelta(days=1))
        opt_out.clear()
        current_domain.repository_for(OptOut).add(opt_out)
        assert _gate(settings).may_send("cust-1", "email", "marketing", NOW).allow


class TestPreference:
    def test_disabled_denies_permanently(self, settings):
        _preference(enabled=False)
        decision = _gate(settings).may_send("cust-1", "email", "marketing", NOW)
        assert decision.reason == DenialReason.PREFERENCE_DISABLED.value
        assert decision.is_permanent

    def test_disabled_category_does_not_affect_others(self, settings):
        _preference(enabled=False)
        assert _gate(settings).may_send("cust-1", "email", "transactional", NOW).allow

    def test_quiet_hours_defer_to_window_end(self, settings):
        _preference(quiet_hours=("11:00", "13:00"))
        decision = _gate(settings).may_send("cust-1", "email", "marketing", NOW)
        assert decision.reason == DenialReason.QUIET_HOURS.value
        assert decision.retry_after == datetime(2030, 1, 15, 13, 0, tzinfo=UTC)
        assert not decision.is_permanent

    def test_quiet_hours_use_recipient_timezone_when_unset(self, settings):
        _preference(quiet_hours=("22:00", "23:00"))
        late_evening_in_new_york = datetime(2030, 1, 16, 3, 30, tzinfo=UTC)

        decision = _gate(settings).may_send(
            "cust-1", "email", "marketing", late_evening_in_new_york, timezone="America/New_York"
        )
        assert decision.reason == DenialReason.QUIET_HOURS.value
        assert decision.retry_after == datetime(2030, 1, 16, 4, 0, tzinfo=UTC)

        assert _gate(settings).may_send("cust-1", "email", "marketing", late_evening_in_new_york).allow

    def test_outside_quiet_hours(self, settings):
        _preference(quiet_hours=("22:00", "07:00"))
        assert _gate(settings).may_send("cust-1", "email", "marketing", NOW).allow


class TestFrequencyCap:
    def test_under_cap(self, settings):
        _preference(daily_limit=2)
        limiter = RateLimiter(settings)
        limiter.try_reserve("cust-1", "email", "marketing", NOW)
        assert ConsentGate(limiter).may_send("cust-1", "email", "marketing", NOW).allow

    def test_at_cap_defers_to_end_of_day(self, settings):
        _preference(daily_limit=2)
        limiter = RateLimiter(settings)
        limiter.try_reserve("cust-1", "email", "marketing", NOW - timedelta(hours=3))
        limiter.try_reserve("cust-1", "email", "marketing", NOW)

        decision = ConsentGate(limiter).may_send("cust-1", "email", "marketing", NOW)
        assert decision.reason == DenialReason.FREQUENCY_CAPPED.value
        assert decision.retry_after == datetime(2030, 1, 16, 0, 0, tzinfo=UTC)

    def test_gate_never_writes(self, settings):
        _preference(daily_limit=1)
        gate = _gate(settings)
        for _ in range(3):
            gate.may_send("cust-1", "email", "marketing", NOW)
        count, _ = gate.limiter.current_count("cust-1", "email", "marketing", NOW)
        assert count == 0
