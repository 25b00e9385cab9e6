"""Dispatcher — the poll cycle that moves due notifications through their lifecycle.

One coordinating thread selects, claims and transitions records; a bounded
thread pool runs only the blocking adapter calls. Every write happens on
the coordinating thread, against a record it claimed in this cycle.

Cycle, per due record (urgent first, then oldest due first):

    claim (version check)  →  lost: skip
    still dispatching      →  lease ran out mid-send: retryable failure
    expired                →  cancelled
    consent gate denies    →  cancelled (permanent) or deferred (retry_after)
    rate limiter denies    →  deferred to the window end
    otherwise              →  dispatching, attempt += 1, adapter.send()
                              → sent / retry_scheduled / failed,
                                or cancelled if it expired meanwhile

A record written by someone else after the claim (a cancellation request,
usually) fails the version check on save and is skipped until the next poll.
Any other storage error aborts the cycle. Records already claimed but not yet
settled stay ``dispatching`` until their lease runs out and are then picked
up as abandoned.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import asdict, dataclass

import structlog
from protean.exceptions import ExpectedVersionError
from protean.utils.globals import current_domain

from courier.channel import ChannelRegistry, Outcome
from courier.consent.gate import ConsentGate, DenialReason
from courier.notification.notification import (
    EXPIRED,
    RETRIES_EXHAUSTED,
    Notification,
    NotificationStatus,
)
from courier.notification.retry import RetryPolicy
from courier.ratelimit.limiter import RateLimiter
from courier.settings import EngineSettings, load_settings
from courier.tracking.delivery_event import DeliveryEventKind
from courier.tracking.tracker import DeliveryTracker
from courier.utils.time import ensure_utc, utcnow

logger = structlog.get_logger(__name__)

DISPATCH_ABANDONED = "DispatchAbandoned"
TIMEOUT = "Timeout"


@dataclass
class CycleSummary:
    selected: int = 0
    claimed: int = 0
    skipped: int = 0
    dispatched: int = 0
    sent: int = 0
    deferred: int = 0
    retried: int = 0
    failed: int = 0
    cancelled: int = 0

    def as_dict(self):
        return asdict(self)


@dataclass
class _InFlight:
    notification: Notification
    future: object
    deadline: float


class Dispatcher:
    def __init__(
        self,
        channels: ChannelRegistry,
        settings: EngineSettings | None = None,
        retry_policy: RetryPolicy | None = None,
        limiter: RateLimiter | None = None,
        gate: ConsentGate | None = None,
        tracker: DeliveryTracker | None = None,
        executor: ThreadPoolExecutor | None = None,
    ):
        self.channels = channels
        self.settings = settings or load_settings()
        self.retry_policy = retry_policy or RetryPolicy(self.settings)
        self.limiter = limiter or RateLimiter(self.settings)
        self.gate = gate or ConsentGate(self.limiter)
        self.tracker = tracker or DeliveryTracker()

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.settings.worker_count,
            thread_name_prefix="courier-send",
        )

    def __enter__(self):
        return self
    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    @property
    def _repo(self):
        return current_domain.repository_for(Notification)

    def select_due(self, as_of):
        return self._repo.find_due(as_of, limit=self.settings.batch_size)

    def run_cycle(self, as_of=None) -> CycleSummary:
        """Run one poll cycle and return what happened to the selected records."""
        now = ensure_utc(as_of) or utcnow()
        summary = CycleSummary()

        due = self.select_due(now)
        summary.selected = len(due)

        in_flight: list[_InFlight] = []
        for notification in due:
            claimed = self._repo.claim(notification, now, self.settings.dispatch_lease_seconds)
            if claimed is None:
                summary.skipped += 1
                logger.debug("Claim lost, skipping", notification_id=str(notification.id))
                continue
            summary.claimed += 1

            # Keep the pool queue empty so a channel timeout measures the call itself
            if len(in_flight) >= self.settings.worker_count:
                self._settle(in_flight.pop(0), now, summary)

            try:
                submitted = self._process(claimed, now, summary)
            except ExpectedVersionError:
                self._skip_changed(claimed, summary)
                continue
            if submitted is not None:
                in_flight.append(submitted)

        for pending in in_flight:
            self._settle(pending, now, summary)

        logger.info("Dispatch cycle complete", as_of=now.isoformat(), **summary.as_dict())
        return summary

    # -------------------------------------------------------------------
    # Per-record decisions
    # -------------------------------------------------------------------
    def _process(self, notification, now, summary):
        if notification.status == NotificationStatus.DISPATCHING.value:
            logger.warning(
                "Dispatch lease expired without an outcome",
                notification_id=str(notification.id),
                attempt_count=notification.attempt_count,
            )
            self._apply_failure(notification, Outcome.transient(DISPATCH_ABANDONED), now, summary)
            return None

        if notification.is_expired(now):
            self._cancel(notification, EXPIRED, now, summary)
            return None

        decision = self.gate.may_send(
            notification.recipient_id,
            notification.channel,
            notification.category,
            now,
            timezone=notification.recipient_timezone,
        )
        if not decision.allow:
            if decision.is_permanent:
                self._cancel(notification, decision.reason, now, summary)
            else:
                self._defer(notification, decision.retry_after, decision.reason, now, summary)
            return None

        reservation = self.limiter.try_reserve(
            notification.recipient_id, notification.channel, notification.category, now
        )
        if not reservation.allowed:
            self._defer(notification, reservation.retry_after, DenialReason.RATE_LIMITED.value, now, summary)
            return None

        notification.start_attempt(now, self.settings.dispatch_lease_seconds)
        self._repo.add(notification)
        self.tracker.record(
            notification.id,
            DeliveryEventKind.ATTEMPT,
            {"attempt": notification.attempt_count, "channel": notification.channel},
            now=now,
        )
        summary.dispatched += 1

        try:
            adapter = self.channels.get(notification.channel)
        except LookupError as exc:
            self._apply_outcome(notification, Outcome.permanent(str(exc)), now, summary)
            return None

        timeout = self.settings.timeout_for(notification.channel)
        future = self._executor.submit(adapter.send, notification)
        return _InFlight(notification, future, time.monotonic() + timeout)

    def _settle(self, pending: _InFlight, now, summary):
        outcome = self._await(pending)

        # Reload: a cancellation may have been saved while the call was in flight
        notification = self._repo.get(pending.notification.id)
        if notification.claim_version != pending.notification.claim_version:
            summary.skipped += 1
            logger.warning(
                "Claim taken over during send, outcome dropped",
                notification_id=str(notification.id),
                accepted=outcome.accepted,
            )
            return

        try:
            self._apply_outcome(notification, outcome, now, summary)
        except ExpectedVersionError:
            # Stays dispatching; the lease expiry path settles it
            self._skip_changed(notification, summary)

    def _skip_changed(self, notification, summary):
        summary.skipped += 1
        logger.info("Record changed after claim, skipping", notification_id=str(notification.id))

    def _await(self, pending: _InFlight) -> Outcome:
        notification = pending.notification
        try:
            outcome = pending.future.result(timeout=max(0.0, pending.deadline - time.monotonic()))
        except FutureTimeout:
            pending.future.cancel()
            logger.warning(
                "Adapter call timed out",
                notification_id=str(notification.id),
                channel=notification.channel,
            )
            return Outcome.transient(TIMEOUT)
        except Exception as exc:
            logger.error(
                "Adapter raised",
                notification_id=str(notification.id),
                channel=notification.channel,
                error=str(exc),
                exc_info=True,
            )
            return Outcome.transient(f"AdapterError: {exc}")

        return outcome

    # -------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------
    def _apply_outcome(self, notification, outcome: Outcome, now, summary):
        if not outcome.accepted:
            self._apply_failure(notification, outcome, now, summary)
            return

        notification.mark_sent(outcome.external_ref, now)
        self._repo.add(notification)
        self.tracker.record(
            notification.id,
            DeliveryEventKind.SENT,
            {"external_ref": outcome.external_ref, "attempt": notification.attempt_count},
            now=now,
        )
        summary.sent += 1
        logger.info(
            "Notification sent",
            notification_id=str(notification.id),
            channel=notification.channel,
            external_ref=outcome.external_ref,
            attempt_count=notification.attempt_count,
        )

    def _apply_failure(self, notification, outcome: Outcome, now, summary):
        detail = outcome.error_detail or "Unknown error"

        # Expiry wins over retry budget and error class
        if notification.is_expired(now):
            self._cancel(notification, EXPIRED, now, summary, last_error=detail)
            return

        if self.retry_policy.should_retry(notification.attempt_count, outcome.retryable):
            next_attempt_at = self.retry_policy.next_attempt_at(notification.attempt_count, now)
            notification.schedule_retry(next_attempt_at, detail, now)
            self._repo.add(notification)
            self.tracker.record(
                notification.id,
                DeliveryEventKind.RETRY_SCHEDULED,
                {
                    "error": detail,
                    "attempt": notification.attempt_count,
                    "next_attempt_at": next_attempt_at.isoformat(),
                },
                now=now,
            )
            summary.retried += 1
            logger.info(
                "Retry scheduled",
                notification_id=str(notification.id),
                channel=notification.channel,
                error=detail,
                attempt_count=notification.attempt_count,
                next_attempt_at=next_attempt_at.isoformat(),
            )
            return

        error = RETRIES_EXHAUSTED if outcome.retryable else detail
        notification.mark_failed(error, now, last_error=detail)
        self._repo.add(notification)
        self.tracker.record(
            notification.id,
            DeliveryEventKind.FAILED,
            {"error": error, "last_error": detail, "attempt": notification.attempt_count},
            now=now,
        )
        summary.failed += 1
        logger.warning(
            "Notification failed",
            notification_id=str(notification.id),
            channel=notification.channel,
            error=error,
            last_error=detail,
            attempt_count=notification.attempt_count,
        )

    def _cancel(self, notification, reason, now, summary, last_error=None):
        notification.cancel(reason, now, last_error=last_error)
        self._repo.add(notification)
        payload = {"reason": reason}
        if last_error:
            payload["last_error"] = last_error
        self.tracker.record(notification.id, DeliveryEventKind.CANCELLED, payload, now=now)
        summary.cancelled += 1
        logger.info(
            "Notification cancelled",
            notification_id=str(notification.id),
            channel=notification.channel,
            reason=reason,
        )

    def _defer(self, notification, until, reason, now, summary):
        notification.defer(until, reason, now)
        self._repo.add(notification)
        self.tracker.record(
            notification.id,
            DeliveryEventKind.DEFERRED,
            {"reason": reason, "retry_after": until.isoformat()},
            now=now,
        )
        summary.deferred += 1
        logger.info(
            "Notification deferred",
            notification_id=str(notification.id),
            channel=notification.channel,
            reason=reason,
            retry_after=until.isoformat(),
        )
