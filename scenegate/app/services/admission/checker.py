"""Quota checks for one (scope, granularity) bucket at a time."""

from scenegate.app.services.admission.file_store import GlobalBucketStore
from scenegate.app.services.admission.models import (
    Decision,
    Granularity,
    QuotaLimits,
    Scope,
)
from scenegate.app.services.admission.refill import refill_bucket
from scenegate.app.services.admission.session_store import SessionBucketStore


class QuotaChecker:
    """Refills a bucket and tells whether a token is left.

    User checks never spend. Global checks spend only when
    ``global_check_spends_token`` is set; the global store then refills and
    decrements in the same critical section, and the request is denied when
    nothing is left after the decrement.
    """

    def __init__(
        self,
        session_store: SessionBucketStore,
        global_store: GlobalBucketStore,
        limits: QuotaLimits,
        now: int,
        global_check_spends_token: bool = False,
    ):
        self.session_store = session_store
        self.global_store = global_store
        self.limits = limits
        self.now = now
        self.global_check_spends_token = global_check_spends_token

    def check_user(self, granularity: Granularity) -> Decision:
        max_tokens = self.limits.max_for(Scope.USER, granularity)
        bucket = self.session_store.load(granularity, max_tokens, self.now)
        bucket = refill_bucket(bucket, self.now, max_tokens, granularity.window)
        self.session_store.save(granularity, bucket)

        if bucket.tokens < 1:
            return Decision.deny(Scope.USER, granularity)
        return Decision.admit()

    def check_global(self, granularity: Granularity) -> Decision:
        max_tokens = self.limits.max_for(Scope.GLOBAL, granularity)
        if self.global_check_spends_token:
            bucket = self.global_store.get_and_consume(granularity, max_tokens)
        else:
            bucket = self.global_store.peek(granularity, max_tokens)

        if bucket.tokens < 1:
            return Decision.deny(Scope.GLOBAL, granularity)
        return Decision.admit()
