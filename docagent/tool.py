"""General helpers: hashing, random strings, ULIDs and the upload-directory cleaner."""

from __future__ import annotations

import hashlib
import logging
import os
import random
import secrets
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional, Tuple, Union

log = logging.getLogger(__name__)

LETTERS = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
LETTERS_DIGITS = LETTERS + "0123456789"
ALL_CHARS = LETTERS_DIGITS + "!@#$%^&*()-_=+[]{}|;:,.<>?/`~"

_CROCKFORD = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENTROPY_BITS = 80
_ENTROPY_LIMIT = 1 << _ENTROPY_BITS


def md5_by_string(text: str) -> str:
    """Return the lower-case hex MD5 digest of a UTF-8 string."""
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def md5_by_bytes(data: bytes) -> str:
    """Return the lower-case hex MD5 digest of raw bytes."""
    return hashlib.md5(data).hexdigest()


def random_string(length: int, charset: str = LETTERS_DIGITS) -> str:
    """Return a random string of ``length`` characters drawn from ``charset``."""
    if length <= 0:
        return ""
    if not charset:
        raise ValueError("charset must not be empty")
    return "".join(random.choices(charset, k=length))


class _MonotonicUlid:
    """ULID source whose values strictly increase within the process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last_ms = -1
        self._last_entropy = 0

    def next(self) -> str:
        with self._lock:
            ms = time.time_ns() // 1_000_000
            if ms <= self._last_ms:
                ms = self._last_ms
                entropy = self._last_entropy + 1
                if entropy >= _ENTROPY_LIMIT:
                    ms += 1
                    entropy = secrets.randbits(_ENTROPY_BITS)
            else:
                entropy = secrets.randbits(_ENTROPY_BITS)
            self._last_ms, self._last_entropy = ms, entropy
        value = ((ms & ((1 << 48) - 1)) << _ENTROPY_BITS) | entropy
        return "".join(_CROCKFORD[(value >> (5 * i)) & 31] for i in reversed(range(26)))


_ulid_source = _MonotonicUlid()


def generate_ulid() -> str:
    """Return a new 26-character ULID that sorts by creation time."""
    return _ulid_source.next()


def byte_count_iec(size: int) -> str:
    """Format a byte count with binary (KiB, MiB, ...) units."""
    unit = 1024
    if size < unit:
        return f"{size} B"
    div, exp = unit, 0
    n = size // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{size / div:.1f} {'KMGTPE'[exp]}iB"


@dataclass
class FileCleanerConfig:
    """Where to clean, how long files live and the largest size kept (0 means no limit)."""

    directory: str
    retention: timedelta
    max_size_bytes: int = 0


def clean_once(
    config: FileCleanerConfig,
    on_deleted: Optional[Callable[[str], None]] = None,
) -> Tuple[int, int, int]:
    """Delete expired or oversized files under the directory.

    ``on_deleted`` receives the base name of every removed file. Returns
    ``(scanned, deleted, freed_bytes)``.
    """
    now = time.time()
    retention = config.retention.total_seconds()
    scanned = deleted = freed = 0

    def _walk_error(err: OSError) -> None:
        log.error("walk err: %s", err)

    for root, _dirs, names in os.walk(config.directory, onerror=_walk_error):
        for name in names:
            path = os.path.join(root, name)
            try:
                info = os.lstat(path)
            except OSError as err:
                log.error("walk err: %s", err)
                continue
            scanned += 1

            expired = now - info.st_mtime > retention
            oversize = config.max_size_bytes > 0 and info.st_size > config.max_size_bytes
            if not (expired or oversize):
                continue
            try:
                os.remove(path)
            except OSError as err:
                log.error("delete %s failed: %s", path, err)
                continue
            deleted += 1
            freed += info.st_size
            log.info("deleted: %s", path)

            if on_deleted is not None:
                stored_name = os.path.basename(path)
                try:
                    on_deleted(stored_name)
                except Exception as err:  # the record store is external; keep sweeping
                    log.error("deleting record failed stored_name=%s: %s", stored_name, err)
                else:
                    log.info("record deleted stored_name=%s", stored_name)

    log.info(
        "FileCleaner: scanned=%d, deleted=%d, freed=%s",
        scanned,
        deleted,
        byte_count_iec(freed),
    )
    return scanned, deleted, freed


def start_file_cleaner(
    config: FileCleanerConfig,
    interval: Union[timedelta, float],
    on_deleted: Optional[Callable[[str], None]] = None,
    stop_event: Optional[threading.Event] = None,
) -> None:
    """Clean once now, then again every ``interval`` until ``stop_event`` is set."""
    seconds = interval.total_seconds() if isinstance(interval, timedelta) else float(interval)
    if seconds <= 0:
        raise ValueError("interval must be positive")
    if stop_event is None:
        stop_event = threading.Event()

    clean_once(config, on_deleted)
    while not stop_event.wait(seconds):
        clean_once(config, on_deleted)