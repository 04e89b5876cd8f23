"""Storage utilities for atomic operations and safe file handling."""

import fcntl
import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)


def atomic_write(path: str | Path, content: bytes) -> None:
    """Write file atomically using temp file + rename.

    This ensures that readers never see partial writes or corrupted files.
    The file is written to a temporary location then atomically renamed.

    Args:
        path: Target file path
        content: Bytes to write

    Raises:
        OSError: If write or rename fails
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    # Create temp file in same directory for atomic rename
    with tempfile.NamedTemporaryFile(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
    ) as tmp:
        tmp_path = Path(tmp.name)
        try:
            tmp.write(content)
            tmp.flush()
            os.fsync(tmp.fileno())

            tmp_path.replace(path)
            logger.debug(f"Atomically wrote {len(content)} bytes to {path}")

        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise


def safe_read(path: str | Path) -> bytes | None:
    """Read file safely, returning None if not found.

    Args:
        path: File path to read

    Returns:
        File contents as bytes or None if not found
    """
    path = Path(path)
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None
    except Exception as e:
        logger.error(f"Failed to read {path}: {e}")
        raise


@contextmanager
def file_lock(lock_path: str | Path, shared: bool = False) -> Iterator[None]:
    """Hold an advisory flock on lock_path for the duration of the block.

    Args:
        lock_path: Lock file, created if missing
        shared: Take a shared (reader) lock instead of an exclusive one
    """
    lock_path = Path(lock_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock_path.touch(exist_ok=True)

    with open(lock_path, "r+") as lock:
        fcntl.flock(lock.fileno(), fcntl.LOCK_SH if shared else fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock.fileno(), fcntl.LOCK_UN)
