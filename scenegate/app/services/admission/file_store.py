"""Global bucket storage shared by every worker through the filesystem.

Each granularity has one JSON file holding the whole bucket::

    {"tokens": 498, "last_refill": 1760000000}

Every read-modify-write happens under an exclusive ``flock`` on that file.
When the lock cannot be taken in time, or the file cannot be opened, the
store answers with a conservative bucket (half the capacity) and leaves the
file alone, so lock trouble loosens the global limit instead of failing
requests.
"""

import errno
import fcntl
import json
import os
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, Optional, Union

from scenegate.app.core.logging import get_logger, get_log_context
from scenegate.app.services.admission.models import Bucket, Granularity
from scenegate.app.services.admission.refill import refill_bucket

logger = get_logger(__name__)

FALLBACK_DIR_NAME = "scenegate_rate_limits"


def ensure_data_dir(data_dir: Union[str, Path]) -> Path:
    """Create the bucket directory, falling back to the temp dir on failure."""
    path = Path(data_dir)
    try:
        path.mkdir(parents=True, exist_ok=True)
        return path
    except OSError as e:
        fallback = Path(tempfile.gettempdir()) / FALLBACK_DIR_NAME
        logger.warning(
            f"Failed to create rate limit data directory {path}: {e}. Using {fallback}"
        )
        fallback.mkdir(parents=True, exist_ok=True)
        return fallback


class GlobalBucketStore:
    """File-backed global buckets guarded by advisory locks.

    Lock acquisition is a bounded spin: non-blocking ``flock`` attempts
    every ``retry_interval`` seconds until ``lock_timeout`` has passed.
    """

    def __init__(
        self,
        data_dir: Union[str, Path],
        lock_timeout: float = 2.0,
        retry_interval: float = 0.05,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the store.

        Args:
            data_dir: Directory holding the bucket files
            lock_timeout: Total seconds to wait for the file lock
            retry_interval: Seconds to sleep between lock attempts
            clock: Wall clock used for refill timestamps
            sleep: Sleep function used between lock attempts
        """
        self.data_dir = ensure_data_dir(data_dir)
        self.lock_timeout = lock_timeout
        self.retry_interval = retry_interval
        self._clock = clock
        self._sleep = sleep

    def bucket_path(self, granularity: Granularity) -> Path:
        return self.data_dir / f"global_bucket_{granularity.value}.json"

    def get_and_consume(
        self,
        granularity: Granularity,
        max_tokens: int,
        window: Optional[int] = None,
    ) -> Bucket:
        """Refill the global bucket, take one token if any, and persist it.

        Read, refill, decrement and write all happen under one lock.

        Returns:
            The bucket as written (after the decrement), or the conservative
            default when the file is unavailable
        """
        return self._update(granularity, max_tokens, window, consume=True)

    def peek(
        self,
        granularity: Granularity,
        max_tokens: int,
        window: Optional[int] = None,
    ) -> Bucket:
        """Return the refilled global bucket without spending or writing."""
        return self._update(granularity, max_tokens, window, consume=False)

    def _update(
        self,
        granularity: Granularity,
        max_tokens: int,
        window: Optional[int],
        consume: bool,
    ) -> Bucket:
        window = window or granularity.window
        now = int(self._clock())
        path = self.bucket_path(granularity)
        log_extra = get_log_context(
            scope="global", granularity=granularity.value, bucket_file=str(path)
        )

        with self._locked_bucket_file(path) as fp:
            if fp is None:
                return Bucket.conservative(max_tokens, now)

            bucket = self._read_bucket(fp, path)
            if bucket is None:
                bucket = Bucket.conservative(max_tokens, now)
            else:
                bucket = refill_bucket(bucket, now, max_tokens, window)

            if not consume:
                return bucket

            if bucket.tokens > 0:
                bucket.tokens -= 1

            self._write_bucket(fp, bucket, log_extra)
            return bucket

    @contextmanager
    def _locked_bucket_file(self, path: Path) -> Iterator[Optional[BinaryIO]]:
        """Open ``path`` and hold an exclusive lock on it for the block.

        Yields None, holding nothing, when the file cannot be opened, the
        lock is not acquired within ``lock_timeout``, or locking fails. The lock is released
        and the file closed on every exit path.
        """
        log_extra = get_log_context(scope="global", bucket_file=str(path))
        try:
            fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            logger.warning(f"Could not open global bucket file {path}: {e}", extra=log_extra)
            yield None
            return

        fp = os.fdopen(fd, "r+b")
        try:
            if not self._acquire(fp):
                logger.warning(
                    f"Could not acquire lock on bucket file {path} - high load detected",
                    extra=log_extra,
                )
                yield None
                return
            try:
                yield fp
            finally:
                fcntl.flock(fp.fileno(), fcntl.LOCK_UN)
        finally:
            fp.close()

    def _acquire(self, fp: BinaryIO) -> bool:
        deadline = time.monotonic() + self.lock_timeout
        while True:
            try:
                fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                return True
            except OSError as e:
                if e.errno not in (errno.EAGAIN, errno.EWOULDBLOCK, errno.EACCES):
                    logger.warning(
                        f"flock failed on global bucket file: {e}",
                        extra=get_log_context(scope="global"),
                    )
                    return False
            if time.monotonic() >= deadline:
                return False
            self._sleep(self.retry_interval)

    def _read_bucket(self, fp: BinaryIO, path: Path) -> Optional[Bucket]:
        """Parse the bucket file; None if it is empty or malformed."""
        try:
            fp.seek(0)
            raw = fp.read()
        except OSError as e:
            logger.warning(
                f"Failed to read global bucket file {path}: {e}",
                extra=get_log_context(scope="global", bucket_file=str(path)),
            )
            return None

        if not raw.strip():
            logger.info(
                f"Initializing global bucket file {path}",
                extra=get_log_context(scope="global", bucket_file=str(path)),
            )
            return None

        # Undecodable bytes count as malformed content
        try:
            data = json.loads(raw.decode("utf-8"))
        except ValueError:
            data = None

        bucket = Bucket.from_dict(data)
        if bucket is None:
            logger.warning(
                f"Invalid bucket structure in file {path} - rebuilding",
                extra=get_log_context(scope="global", bucket_file=str(path)),
            )
        return bucket

    def _write_bucket(self, fp: BinaryIO, bucket: Bucket, log_extra: dict) -> None:
        try:
            fp.seek(0)
            fp.truncate()
            fp.write(json.dumps(bucket.to_dict()).encode("utf-8"))
            fp.flush()
        except OSError as e:
            logger.warning(f"Failed to write global bucket: {e}", extra=log_extra)
