"""Exclusive lock held while a command writes to the index."""

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..errors import LockError

logger = logging.getLogger(__name__)

LOCK_FILE = "index.lock"


@contextmanager
def index_lock(gitmem_dir: Path) -> Iterator[Path]:
    """Hold ``.gitmem/index.lock`` for the duration of the block.

    The lock file is created exclusively and holds the owner's pid.

    Raises:
        LockError: If the lock file already exists
    """
    lock_path = Path(gitmem_dir) / LOCK_FILE
    try:
        fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    except FileExistsError as e:
        raise LockError(lock_path) from e

    with os.fdopen(fd, "w") as f:
        f.write(f"{os.getpid()}\n")
    logger.debug(f"Acquired {lock_path}")

    try:
        yield lock_path
    finally:
        lock_path.unlink(missing_ok=True)
        logger.debug(f"Released {lock_path}")
