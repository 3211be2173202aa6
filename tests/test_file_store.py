"""Tests for the file-backed global bucket store."""

import errno
import fcntl
import json
from unittest.mock import patch

import pytest

from scenegate.app.services.admission import (
    Bucket,
    GlobalBucketStore,
    Granularity,
    ensure_data_dir,
)


def write_bucket(store, granularity, tokens, last_refill):
    store.bucket_path(granularity).write_text(
        json.dumps({"tokens": tokens, "last_refill": last_refill})
    )


def read_bucket(store, granularity):
    return json.loads(store.bucket_path(granularity).read_text())


class TestGetAndConsume:
    """Tests for GlobalBucketStore.get_and_consume()."""

    def test_new_file_starts_at_half_capacity(self, global_store, clock):
        """A missing bucket is created at the conservative default, minus one token."""
        bucket = global_store.get_and_consume(Granularity.MINUTE, 500)

        assert bucket == Bucket(tokens=249, last_refill=clock.start)
        assert read_bucket(global_store, Granularity.MINUTE) == {
            "tokens": 249,
            "last_refill": clock.start,
        }

    def test_decrements_persisted_bucket(self, global_store, clock):
        write_bucket(global_store, Granularity.MINUTE, 7, clock.start)

        bucket = global_store.get_and_consume(Granularity.MINUTE, 10)

        assert bucket.tokens == 6
        assert read_bucket(global_store, Granularity.MINUTE)["tokens"] == 6

    def test_refills_before_decrement(self, global_store, clock):
        write_bucket(global_store, Granularity.MINUTE, 0, clock.start)
        clock.advance(12)

        bucket = global_store.get_and_consume(Granularity.MINUTE, 10)

        assert bucket == Bucket(tokens=1, last_refill=clock.start + 12)

    def test_empty_bucket_stays_at_zero(self, global_store, clock):
        write_bucket(global_store, Granularity.DAY, 0, clock.start)

        bucket = global_store.get_and_consume(Granularity.DAY, 100)

        assert bucket.tokens == 0
        assert read_bucket(global_store, Granularity.DAY)["tokens"] == 0

    def test_clamps_to_lowered_max(self, global_store, clock):
        write_bucket(global_store, Granularity.MINUTE, 100, clock.start)

        bucket = global_store.get_and_consume(Granularity.MINUTE, 10)

        assert bucket.tokens == 9

    @pytest.mark.parametrize(
        "content",
        [
            b"not json at all",
            b"[]",
            b'{"tokens": 5}',
            b'{"tokens": "five", "last_refill": 1}',
            b'{"tokens": true, "last_refill": 1}',
            b'\xff\xfe{"tokens": 5}',
            b"\x80\x81",
        ],
    )
    def test_malformed_content_is_rebuilt(self, global_store, clock, content):
        global_store.bucket_path(Granularity.MINUTE).write_bytes(content)

        bucket = global_store.get_and_consume(Granularity.MINUTE, 10)

        assert bucket == Bucket(tokens=4, last_refill=clock.start)
        assert read_bucket(global_store, Granularity.MINUTE) == {
            "tokens": 4,
            "last_refill": clock.start,
        }

    def test_granularities_use_separate_files(self, global_store):
        global_store.get_and_consume(Granularity.MINUTE, 10)
        global_store.get_and_consume(Granularity.DAY, 100)

        assert global_store.bucket_path(Granularity.MINUTE).name == "global_bucket_minute.json"
        assert global_store.bucket_path(Granularity.DAY).name == "global_bucket_day.json"
        assert read_bucket(global_store, Granularity.MINUTE)["tokens"] == 4
        assert read_bucket(global_store, Granularity.DAY)["tokens"] == 49

    def test_lock_is_released_after_call(self, global_store):
        global_store.get_and_consume(Granularity.MINUTE, 10)

        with open(global_store.bucket_path(Granularity.MINUTE), "r+") as fp:
            fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            fcntl.flock(fp.fileno(), fcntl.LOCK_UN)

    def test_lock_is_released_when_write_raises(self, global_store, clock):
        write_bucket(global_store, Granularity.MINUTE, 5, clock.start)

        with patch.object(GlobalBucketStore, "_write_bucket", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                global_store.get_and_consume(Granularity.MINUTE, 10)

        with open(global_store.bucket_path(Granularity.MINUTE), "r+") as fp:
            fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)


class TestLockContention:
    """Behaviour when another holder keeps the bucket file locked."""

    def test_returns_conservative_default_without_writing(self, global_store, clock):
        write_bucket(global_store, Granularity.MINUTE, 7, clock.start - 30)
        path = global_store.bucket_path(Granularity.MINUTE)
        before = path.read_bytes()

        with open(path, "r+") as holder:
            fcntl.flock(holder.fileno(), fcntl.LOCK_EX)
            bucket = global_store.get_and_consume(Granularity.MINUTE, 11)

        assert bucket == Bucket(tokens=5, last_refill=clock.start)
        assert path.read_bytes() == before

    def test_retries_until_timeout(self, tmp_path, clock):
        sleeps = []
        store = GlobalBucketStore(
            tmp_path, lock_timeout=0.05, retry_interval=0.01, clock=clock,
            sleep=sleeps.append,
        )
        path = store.bucket_path(Granularity.DAY)
        path.touch()

        with open(path, "r+") as holder:
            fcntl.flock(holder.fileno(), fcntl.LOCK_EX)
            store.peek(Granularity.DAY, 100)

        assert sleeps
        assert all(s == 0.01 for s in sleeps)

    def test_unsupported_locking_returns_default(self, global_store, clock):
        write_bucket(global_store, Granularity.MINUTE, 7, clock.start)
        path = global_store.bucket_path(Granularity.MINUTE)
        before = path.read_bytes()

        with patch(
            "scenegate.app.services.admission.file_store.fcntl.flock",
            side_effect=OSError(errno.ENOLCK, "No locks available"),
        ) as mock_flock:
            bucket = global_store.get_and_consume(Granularity.MINUTE, 10)

        assert bucket == Bucket(tokens=5, last_refill=clock.start)
        assert mock_flock.call_count == 1
        assert path.read_bytes() == before

    def test_unopenable_file_returns_default(self, global_store, clock):
        global_store.bucket_path(Granularity.MINUTE).mkdir()

        bucket = global_store.get_and_consume(Granularity.MINUTE, 10)

        assert bucket == Bucket(tokens=5, last_refill=clock.start)


class TestPeek:
    """Tests for the read-only path."""

    def test_peek_refills_without_writing(self, global_store, clock):
        write_bucket(global_store, Granularity.MINUTE, 2, clock.start)
        before = global_store.bucket_path(Granularity.MINUTE).read_bytes()
        clock.advance(30)

        bucket = global_store.peek(Granularity.MINUTE, 10)

        assert bucket == Bucket(tokens=7, last_refill=clock.start + 30)
        assert global_store.bucket_path(Granularity.MINUTE).read_bytes() == before

    def test_peek_missing_bucket(self, global_store, clock):
        assert global_store.peek(Granularity.DAY, 100) == Bucket(tokens=50, last_refill=clock.start)

    def test_peek_undecodable_bucket(self, global_store, clock):
        global_store.bucket_path(Granularity.DAY).write_bytes(b"\x80\x81")

        bucket = global_store.peek(Granularity.DAY, 100)

        assert bucket == Bucket(tokens=50, last_refill=clock.start)
        assert global_store.bucket_path(Granularity.DAY).read_bytes() == b"\x80\x81"


class TestEnsureDataDir:
    """Tests for data directory creation."""

    def test_creates_nested_directory(self, tmp_path):
        target = tmp_path / "a" / "b"
        assert ensure_data_dir(target) == target
        assert target.is_dir()

    def test_falls_back_to_temp_dir(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")

        with patch("scenegate.app.services.admission.file_store.tempfile.gettempdir",
                   return_value=str(tmp_path)):
            path = ensure_data_dir(blocker / "data")

        assert path == tmp_path / "scenegate_rate_limits"
        assert path.is_dir()
