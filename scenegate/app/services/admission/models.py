"""Data models for admission control."""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class Scope(str, Enum):
    USER = "user"
    GLOBAL = "global"


class Granularity(str, Enum):
    MINUTE = "minute"
    DAY = "day"

    @property
    def window(self) -> int:
        """Window length in seconds. Fixed, not configurable."""
        return WINDOW_SECONDS[self]


WINDOW_SECONDS = {
    Granularity.MINUTE: 60,
    Granularity.DAY: 86400,
}

# Deny reason codes, keyed by (scope, granularity)
REASON_CODES = {
    (Scope.USER, Granularity.MINUTE): "user_rate_limit_minute",
    (Scope.USER, Granularity.DAY): "user_rate_limit_day",
    (Scope.GLOBAL, Granularity.MINUTE): "global_rate_limit_minute",
    (Scope.GLOBAL, Granularity.DAY): "global_rate_limit_day",
}

DENY_MESSAGES = {
    "user_rate_limit_minute": "Whoa whoa, slow down there! Please wait a minute before trying again.",
    "user_rate_limit_day": (
        "Daily limit reached; we're glad you like it so much! "
        "Please come back tomorrow to make more scenes."
    ),
    "global_rate_limit_minute": "Our system is really, really busy. Please come back in a few minutes.",
    "global_rate_limit_day": "Our system has reached its daily limit. Please come back again tomorrow.",
}


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


@dataclass
class Bucket:
    """Token bucket state.

    Attributes:
        tokens: Admissions currently available
        last_refill: Unix timestamp (seconds) of the last top-up
    """
    tokens: int
    last_refill: int

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {"tokens": self.tokens, "last_refill": self.last_refill}

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Bucket"]:
        """Create from dictionary, or None if the data is not a valid bucket."""
        if not isinstance(data, dict):
            return None
        tokens = data.get("tokens")
        last_refill = data.get("last_refill")
        if not _is_number(tokens) or not _is_number(last_refill):
            return None
        return cls(tokens=max(0, int(tokens)), last_refill=int(last_refill))

    @classmethod
    def full(cls, max_tokens: int, now: int) -> "Bucket":
        return cls(tokens=max_tokens, last_refill=now)

    @classmethod
    def conservative(cls, max_tokens: int, now: int) -> "Bucket":
        """Fallback bucket used when the shared state is unavailable."""
        return cls(tokens=int(max_tokens * 0.5), last_refill=now)


@dataclass(frozen=True)
class QuotaLimits:
    """Configured bucket capacities for both scopes and windows."""
    user_per_minute: int
    user_per_day: int
    global_per_minute: int
    global_per_day: int

    def max_for(self, scope: Scope, granularity: Granularity) -> int:
        if scope is Scope.USER:
            if granularity is Granularity.MINUTE:
                return self.user_per_minute
            return self.user_per_day
        if granularity is Granularity.MINUTE:
            return self.global_per_minute
        return self.global_per_day

    @classmethod
    def from_settings(cls, settings) -> "QuotaLimits":
        return cls(
            user_per_minute=settings.rate_limit_user_per_minute,
            user_per_day=settings.rate_limit_user_per_day,
            global_per_minute=settings.rate_limit_global_per_minute,
            global_per_day=settings.rate_limit_global_per_day,
        )


@dataclass(frozen=True)
class Decision:
    """Result of an admission check."""
    allowed: bool
    code: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def admit(cls) -> "Decision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, scope: Scope, granularity: Granularity) -> "Decision":
        code = REASON_CODES[(scope, granularity)]
        return cls(allowed=False, code=code, message=DENY_MESSAGES[code])

    @property
    def is_daily(self) -> bool:
        return self.code is not None and self.code.endswith("_day")
