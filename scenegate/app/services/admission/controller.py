"""Admission controller: the single entry point of the rate limiter.

A request is admitted only if all four buckets have a token, checked in
this order::

    user/minute -> user/day -> global/minute -> global/day

The first empty bucket denies the request and the remaining buckets are not
touched. After the gated operation succeeds the caller spends one token from
every bucket with ``consume()``.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable, MutableMapping, Optional, Tuple

from scenegate.app.core.logging import get_logger, get_log_context
from scenegate.app.exceptions import ConfigurationError
from scenegate.app.services.admission.checker import QuotaChecker
from scenegate.app.services.admission.file_store import GlobalBucketStore
from scenegate.app.services.admission.models import (
    Bucket,
    Decision,
    Granularity,
    QuotaLimits,
    Scope,
)
from scenegate.app.services.admission.refill import refill_bucket
from scenegate.app.services.admission.session_store import SessionBucketStore

logger = get_logger(__name__)

CHECK_ORDER: Tuple[Tuple[Scope, Granularity], ...] = (
    (Scope.USER, Granularity.MINUTE),
    (Scope.USER, Granularity.DAY),
    (Scope.GLOBAL, Granularity.MINUTE),
    (Scope.GLOBAL, Granularity.DAY),
)

MINUTE_RETRY_AFTER = 30


def retry_after_seconds(code: str, now: Optional[float] = None) -> int:
    """Retry-After hint for a deny code.

    Minute limits suggest 30 seconds; day limits point at the next local
    midnight.
    """
    if code.endswith("_minute"):
        return MINUTE_RETRY_AFTER

    if now is None:
        now = time.time()
    # Local midnight converted back to a timestamp, so DST days count 23 or 25 hours
    tomorrow = datetime.combine(
        datetime.fromtimestamp(now).date() + timedelta(days=1), datetime.min.time()
    )
    return max(1, int(tomorrow.timestamp() - now))


class AdmissionController:
    """Decides whether a request may reach the expensive generation call.

    User buckets live in the caller's session; global buckets live in the
    shared ``GlobalBucketStore``. Limits are read from ``limits_provider``
    once per ``check()``/``consume()`` so they can change between requests.
    """

    def __init__(
        self,
        global_store: GlobalBucketStore,
        limits_provider: Callable[[], QuotaLimits],
        clock: Callable[[], float] = time.time,
        disabled: bool = False,
        environment: str = "development",
        global_check_spends_token: bool = False,
    ):
        """Initialize the controller.

        Args:
            global_store: Shared storage for the global buckets
            limits_provider: Returns the current bucket capacities
            clock: Wall clock used for refill timestamps
            disabled: Admit everything and never spend (development only)
            environment: Deployment environment name
            global_check_spends_token: Spend a global token on every check

        Raises:
            ConfigurationError: If rate limiting is disabled in production
        """
        if disabled and environment == "production":
            raise ConfigurationError("Rate limiting cannot be disabled in production")
        if disabled:
            logger.warning("Rate limiting is DISABLED - every request will be admitted")

        self.global_store = global_store
        self.limits_provider = limits_provider
        self.disabled = disabled
        self.global_check_spends_token = global_check_spends_token
        self._clock = clock

    @classmethod
    def from_settings(cls, settings) -> "AdmissionController":
        store = GlobalBucketStore(
            settings.rate_limit_data_dir,
            lock_timeout=settings.rate_limit_lock_timeout,
            retry_interval=settings.rate_limit_lock_retry_interval,
        )
        return cls(
            global_store=store,
            limits_provider=lambda: QuotaLimits.from_settings(settings),
            disabled=settings.rate_limit_disabled,
            environment=settings.environment,
            global_check_spends_token=settings.rate_limit_global_check_spends_token,
        )

    def _now(self) -> int:
        return int(self._clock())

    def check(
        self,
        session: MutableMapping[str, Any],
        session_id: Optional[str] = None,
    ) -> Decision:
        """Run the four quota checks in order.

        Args:
            session: The client's session mapping
            session_id: Client identifier used only for logging

        Returns:
            The first deny decision, or admit
        """
        if self.disabled:
            return Decision.admit()

        limits = self.limits_provider()
        session_store = SessionBucketStore(session)
        checker = QuotaChecker(
            session_store,
            self.global_store,
            limits,
            now=self._now(),
            global_check_spends_token=self.global_check_spends_token,
        )

        decision = Decision.admit()
        for scope, granularity in CHECK_ORDER:
            if scope is Scope.USER:
                decision = checker.check_user(granularity)
            else:
                decision = checker.check_global(granularity)
            if not decision.allowed:
                logger.info(
                    f"Request denied: {decision.code}",
                    extra=get_log_context(
                        session_id=session_id,
                        scope=scope.value,
                        granularity=granularity.value,
                        reason_code=decision.code,
                    ),
                )
                break

        self._log_bucket_state(session_store, limits, "After refill", session_id)
        return decision

    def consume(
        self,
        session: MutableMapping[str, Any],
        session_id: Optional[str] = None,
    ) -> None:
        """Spend one token from every bucket after a successful request.

        Not idempotent: each call spends another token. Call it once per
        admitted request.
        """
        if self.disabled:
            return

        limits = self.limits_provider()
        now = self._now()
        session_store = SessionBucketStore(session)

        for granularity in (Granularity.MINUTE, Granularity.DAY):
            max_tokens = limits.max_for(Scope.USER, granularity)
            bucket = session_store.load(granularity, max_tokens, now)
            if bucket.tokens > 0:
                session_store.save(
                    granularity, Bucket(tokens=bucket.tokens - 1, last_refill=bucket.last_refill)
                )

        for granularity in (Granularity.MINUTE, Granularity.DAY):
            self.global_store.get_and_consume(
                granularity, limits.max_for(Scope.GLOBAL, granularity)
            )

        self._log_bucket_state(session_store, limits, "After consumption", session_id)

    def user_status(self, session: MutableMapping[str, Any]) -> dict:
        """Snapshot of the caller's buckets, refilled but not persisted."""
        limits = self.limits_provider()
        now = self._now()
        session_store = SessionBucketStore(session)
        status = {}
        for granularity in (Granularity.MINUTE, Granularity.DAY):
            max_tokens = limits.max_for(Scope.USER, granularity)
            bucket = session_store.peek(granularity) or Bucket.full(max_tokens, now)
            bucket = refill_bucket(bucket, now, max_tokens, granularity.window)
            status[granularity.value] = {"remaining": bucket.tokens, "limit": max_tokens}
        return status

    def _log_bucket_state(
        self,
        session_store: SessionBucketStore,
        limits: QuotaLimits,
        message: str,
        session_id: Optional[str],
    ) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        parts = []
        for granularity in (Granularity.MINUTE, Granularity.DAY):
            bucket = session_store.peek(granularity)
            max_tokens = limits.max_for(Scope.USER, granularity)
            if bucket is None:
                parts.append(f"{granularity.value.capitalize()}: tokens=undefined/{max_tokens}")
                continue
            last_refill = datetime.fromtimestamp(bucket.last_refill).strftime("%Y-%m-%d %H:%M:%S")
            parts.append(
                f"{granularity.value.capitalize()}: tokens={bucket.tokens}/{max_tokens}, "
                f"last_refill={last_refill}"
            )
        logger.debug(
            f"{message} - {' | '.join(parts)}",
            extra=get_log_context(session_id=session_id, scope="user"),
        )
