"""Token bucket admission control for the scene generation endpoint.

Two scopes (per-session user buckets, shared global buckets) times two
windows (minute, day). See ``controller`` for the check/consume flow.
"""

from scenegate.app.services.admission.checker import QuotaChecker
from scenegate.app.services.admission.controller import (
    CHECK_ORDER,
    AdmissionController,
    retry_after_seconds,
)
from scenegate.app.services.admission.file_store import GlobalBucketStore, ensure_data_dir
from scenegate.app.services.admission.models import (
    Bucket,
    Decision,
    Granularity,
    QuotaLimits,
    Scope,
)
from scenegate.app.services.admission.refill import refill, refill_bucket
from scenegate.app.services.admission.session_store import SessionBucketStore

__all__ = [
    # Models
    "Bucket",
    "Decision",
    "Granularity",
    "QuotaLimits",
    "Scope",
    # Refill
    "refill",
    "refill_bucket",
    # Stores
    "SessionBucketStore",
    "GlobalBucketStore",
    "ensure_data_dir",
    # Checks
    "QuotaChecker",
    "AdmissionController",
    "CHECK_ORDER",
    "retry_after_seconds",
]
