"""Per-client bucket storage backed by the client session."""

from typing import Any, MutableMapping, Optional

from scenegate.app.core.logging import get_logger
from scenegate.app.services.admission.models import Bucket, Granularity

logger = get_logger(__name__)

SESSION_KEY = "token_buckets"


class SessionBucketStore:
    """Stores one client's minute and day buckets inside its session.

    The session is any mutable mapping that survives between requests of
    the same client (Starlette's ``request.session`` in the app). Values are
    kept as plain dicts so the session stays JSON serializable.

    No locking: a session is only touched by its own request.
    """

    def __init__(self, session: MutableMapping[str, Any]):
        self._session = session

    def _buckets(self) -> dict:
        buckets = self._session.get(SESSION_KEY)
        if not isinstance(buckets, dict):
            buckets = {}
            self._session[SESSION_KEY] = buckets
        return buckets

    def peek(self, granularity: Granularity) -> Optional[Bucket]:
        """Return the stored bucket without initializing it."""
        return Bucket.from_dict(self._buckets().get(granularity.value))

    def load(self, granularity: Granularity, max_tokens: int, now: int) -> Bucket:
        """Return the stored bucket, creating it full on first touch.

        Only the requested bucket is initialized; a missing or malformed
        minute bucket never resets the day bucket and vice versa.
        """
        bucket = self.peek(granularity)
        if bucket is None:
            if granularity.value in self._buckets():
                logger.warning(
                    "Invalid session bucket - rebuilding",
                    extra={"scope": "user", "granularity": granularity.value},
                )
            bucket = Bucket.full(max_tokens, now)
            self.save(granularity, bucket)
        return bucket

    def save(self, granularity: Granularity, bucket: Bucket) -> None:
        buckets = self._buckets()
        buckets[granularity.value] = bucket.to_dict()
        # Reassign so session backends that track top-level writes notice
        self._session[SESSION_KEY] = buckets
