"""Lazy token refill shared by the user and global buckets."""

from typing import Tuple

from scenegate.app.services.admission.models import Bucket


def refill(
    tokens: int,
    last_refill: int,
    now: int,
    max_tokens: int,
    window: int,
) -> Tuple[int, int]:
    """Top up a bucket for the time elapsed since its last refill.

    Accrual is in whole tokens: ``floor(elapsed * max_tokens / window)``.
    The fractional remainder is dropped, and ``last_refill`` only moves
    forward when at least one token was added. The result is always clamped
    to ``max_tokens`` so a bucket saved under a larger limit shrinks to the
    current one.

    Args:
        tokens: Tokens currently in the bucket
        last_refill: Timestamp of the last refill
        now: Current timestamp
        max_tokens: Current bucket capacity
        window: Window length in seconds

    Returns:
        Tuple of (new_tokens, new_last_refill)
    """
    elapsed = now - last_refill
    if elapsed > 0:
        tokens_to_add = (elapsed * max_tokens) // window
        if tokens_to_add > 0:
            tokens = min(max_tokens, tokens + tokens_to_add)
            last_refill = now

    return min(tokens, max_tokens), last_refill


def refill_bucket(bucket: Bucket, now: int, max_tokens: int, window: int) -> Bucket:
    tokens, last_refill = refill(bucket.tokens, bucket.last_refill, now, max_tokens, window)
    return Bucket(tokens=tokens, last_refill=last_refill)
