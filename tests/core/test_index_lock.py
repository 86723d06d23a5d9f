"""Tests for the index lock file."""

import os

import pytest

from gitmem.core.index_lock import LOCK_FILE, index_lock
from gitmem.errors import LockError


class TestIndexLock:
    def test_lock_file_holds_pid(self, temp_dir):
        with index_lock(temp_dir) as lock_path:
            assert lock_path == temp_dir / LOCK_FILE
            assert lock_path.read_text().strip() == str(os.getpid())

        assert not (temp_dir / LOCK_FILE).exists()

    def test_second_holder_is_rejected(self, temp_dir):
        with index_lock(temp_dir):
            with pytest.raises(LockError) as exc_info:
                with index_lock(temp_dir):
                    pass

        assert exc_info.value.exit_code == 6
        assert exc_info.value.code == "lock_error"

    def test_stale_lock_blocks_until_removed(self, temp_dir):
        (temp_dir / LOCK_FILE).write_text("12345\n")

        with pytest.raises(LockError):
            with index_lock(temp_dir):
                pass

        (temp_dir / LOCK_FILE).unlink()
        with index_lock(temp_dir):
            pass

    def test_released_on_error(self, temp_dir):
        with pytest.raises(RuntimeError):
            with index_lock(temp_dir):
                raise RuntimeError("boom")

        assert not (temp_dir / LOCK_FILE).exists()
