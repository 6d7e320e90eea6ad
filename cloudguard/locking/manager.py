"""Filesystem-backed lock manager.

Each held lock is one file in the lock directory. The file is written in full
to a private temp file first and then hard-linked to its final name; the link
fails if the name already exists, which makes creation atomic and
create-if-absent. That single primitive is what gives mutual exclusion between
independent processes.

Layout:
    ~/.cloudguard/locks/
        AWS%3A%3AEC2%3A%3AVolume%2Fvol-001.lock
        AWS%3A%3AEC2%3A%3AInstance%2Fi-001.lock
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional
from urllib.parse import quote

from filelock import FileLock, Timeout

from cloudguard.config import Config
from cloudguard.exceptions import LockNotFoundError, LockNotOwnerError, LockTimeoutError, StateIOError
from cloudguard.locking.liveness import START_TIME_TOLERANCE, current_identity, is_process_alive
from cloudguard.models.lock import LockInfo
from cloudguard.models.resource import ResourceId
from cloudguard.utils.timeutil import utc_now

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lock"
MAX_ENTRY_NAME = 200
RECLAIM_GUARD = ".reclaim.guard"


class LockManager:
    """Named mutual-exclusion locks shared between processes.

    Locks are not reentrant: a second acquire of the same resource by the
    owning process waits like any other caller.

    Attributes:
        lock_dir: Directory holding lock entries
        default_timeout: Seconds acquire() waits when no timeout is given
        poll_interval: Seconds between attempts while the lock is held
    """

    def __init__(self, config: Config) -> None:
        """Initialize lock manager.

        Args:
            config: Runtime configuration (lock_dir, lock_timeout, lock_poll_interval)
        """
        self.lock_dir = Path(config.lock_dir)
        self.default_timeout = config.lock_timeout
        self.poll_interval = config.lock_poll_interval
        self.lock_dir.mkdir(parents=True, exist_ok=True, mode=0o750)

    def acquire(
        self,
        resource: ResourceId,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> bool:
        """Acquire the lock on a resource, waiting up to timeout.

        Stale entries (owner provably dead) are reclaimed on the way.

        Args:
            resource: Resource to lock
            timeout: Seconds to wait (default: configured lock_timeout)
            poll_interval: Seconds between attempts (default: configured interval)

        Returns:
            True if the lock was acquired, False if the timeout elapsed

        Raises:
            ValueError: If the resource identity is invalid
            StateIOError: If the lock entry cannot be written
        """
        resource.validate()
        timeout = self.default_timeout if timeout is None else timeout
        poll_interval = self.poll_interval if poll_interval is None else poll_interval
        deadline = time.monotonic() + timeout
        path = self._entry_path(resource)
        attempts = 0

        while True:
            attempts += 1
            if self._try_create(path, resource):
                logger.debug(f"Acquired lock on {resource.key} (attempt {attempts})")
                return True

            observed = self._read_raw(path)
            if observed is not None:
                holder = self._parse(observed)
                if holder is None or self.is_stale(holder):
                    owner = holder.label if holder else "unreadable entry"
                    if self._reclaim(path, observed, owner) and self._try_create(path, resource):
                        logger.info(f"Acquired lock on {resource.key} after reclaiming it from {owner}")
                        return True

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(f"Timed out after {timeout:.1f}s waiting for lock on {resource.key}")
                return False

            # Entry vanished between the create attempt and the read: retry at once
            if observed is not None:
                time.sleep(min(poll_interval, remaining))

    def release(self, resource: ResourceId) -> None:
        """Release a lock held by the calling process.

        Args:
            resource: Locked resource

        Raises:
            LockNotFoundError: If no lock entry exists
            LockNotOwnerError: If the entry belongs to another process
        """
        path = self._entry_path(resource)
        observed = self._read_raw(path)
        if observed is None:
            logger.error(f"Cannot release lock on {resource.key}: no lock entry exists")
            raise LockNotFoundError(f"No lock held on {resource.key}", resource=resource)

        holder = self._parse(observed)
        if holder is None or not self._owned_by_me(holder):
            me = current_identity()
            owner = holder.label if holder else "unreadable entry"
            logger.error(f"Refusing to release lock on {resource.key}: owned by {owner}, not {me.label}")
            raise LockNotOwnerError(
                f"Lock on {resource.key} is owned by {owner}, not {me.label}",
                resource=resource,
                details={"holder": holder.to_dict() if holder else None},
            )

        try:
            path.unlink()
        except FileNotFoundError:
            raise LockNotFoundError(f"Lock on {resource.key} vanished during release", resource=resource)

        logger.debug(f"Released lock on {resource.key}")

    def release_all(self) -> list[ResourceId]:
        """Release every lock owned by the calling process.

        Returns:
            Resources whose locks were released
        """
        released = []
        for info in self.list_locks():
            if not self._owned_by_me(info):
                continue
            try:
                self.release(info.resource)
                released.append(info.resource)
            except LockNotFoundError:
                logger.debug(f"Lock on {info.resource.key} already gone")

        if released:
            logger.info(f"Released {len(released)} lock(s) held by this process")
        return released

    @contextmanager
    def locked(self, resource: ResourceId, timeout: Optional[float] = None) -> Iterator[ResourceId]:
        """Hold the lock on a resource for the duration of a with-block.

        Raises:
            LockTimeoutError: If the lock is not acquired in time
        """
        timeout = self.default_timeout if timeout is None else timeout
        if not self.acquire(resource, timeout=timeout):
            raise LockTimeoutError(resource, timeout, holder=self.get_lock(resource))
        try:
            yield resource
        finally:
            self.release(resource)

    def get_lock(self, resource: ResourceId) -> Optional[LockInfo]:
        """Current lock entry for a resource, or None if unlocked or unreadable."""
        observed = self._read_raw(self._entry_path(resource))
        if observed is None:
            return None
        return self._parse(observed)

    def list_locks(self) -> list[LockInfo]:
        """All readable lock entries, sorted by resource key."""
        locks = []
        for path in sorted(self.lock_dir.glob(f"*{LOCK_SUFFIX}")):
            observed = self._read_raw(path)
            if observed is None:
                continue
            info = self._parse(observed)
            if info is None:
                logger.warning(f"Skipping unreadable lock entry {path.name}")
                continue
            locks.append(info)
        return sorted(locks, key=lambda i: i.resource.key)

    def is_stale(self, info: LockInfo) -> bool:
        """True if the recorded owner is provably no longer running."""
        return not is_process_alive(info.pid, info.start_time, info.host)

    def reclaim_if_stale(self, resource: ResourceId) -> bool:
        """Remove the lock entry on a resource if its owner is dead.

        Returns:
            True if the resource is now unlocked (stale entry removed or none
            existed), False if a live owner still holds it
        """
        path = self._entry_path(resource)
        observed = self._read_raw(path)
        if observed is None:
            return True

        holder = self._parse(observed)
        if holder is not None and not self.is_stale(holder):
            return False

        owner = holder.label if holder else "unreadable entry"
        return self._reclaim(path, observed, owner)

    def _entry_path(self, resource: ResourceId) -> Path:
        name = quote(resource.key, safe="")
        if len(name) > MAX_ENTRY_NAME:
            name = hashlib.sha256(resource.key.encode("utf-8")).hexdigest()
        return self.lock_dir / f"{name}{LOCK_SUFFIX}"

    def _try_create(self, path: Path, resource: ResourceId) -> bool:
        me = current_identity()
        info = LockInfo(
            resource=resource,
            pid=me.pid,
            label=me.label,
            host=me.host,
            start_time=me.start_time,
            acquired_at=utc_now(),
        )

        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.lock_dir, prefix=".", suffix=".tmp")
        except OSError as e:
            raise StateIOError(f"Cannot create lock entry in {self.lock_dir}: {e}", resource=resource) from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(info.to_dict(), f)
                f.flush()
                os.fsync(f.fileno())
            try:
                os.link(tmp_name, path)
            except FileExistsError:
                return False
            return True
        except OSError as e:
            raise StateIOError(f"Cannot write lock entry {path.name}: {e}", resource=resource) from e
        finally:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass

    def _reclaim(self, path: Path, observed: bytes, owner: str) -> bool:
        """Atomically remove a stale entry.

        Reclaimers are serialized by a guard file whose lock the kernel drops
        when its holder exits. Under the guard the entry is re-read and moved
        aside only if it still holds the bytes judged stale, so a live entry is
        never taken off its path.

        Returns:
            True if the stale entry is gone
        """
        guard = FileLock(str(self.lock_dir / RECLAIM_GUARD), timeout=self.poll_interval)
        try:
            with guard:
                current = self._read_raw(path)
                if current is None:
                    return True
                if current != observed:
                    logger.debug(f"Lock entry {path.name} changed since it was judged stale")
                    return False

                # Only a dead owner's entry gets here; nobody else may touch it while the guard is held
                aside = path.with_name(f".{path.name}.stale.{uuid.uuid4().hex[:8]}")
                try:
                    os.rename(path, aside)
                except FileNotFoundError:
                    return True
                aside.unlink()
        except Timeout:
            logger.debug(f"Another process is reclaiming {path.name}")
            return False

        logger.warning(f"Reclaimed stale lock {path.name} held by {owner}")
        return True

    @staticmethod
    def _read_raw(path: Path) -> Optional[bytes]:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    @staticmethod
    def _parse(raw: bytes) -> Optional[LockInfo]:
        try:
            return LockInfo.from_dict(json.loads(raw.decode("utf-8")))
        except (ValueError, UnicodeDecodeError, AttributeError):
            return None

    @staticmethod
    def _owned_by_me(info: LockInfo) -> bool:
        me = current_identity()
        return (
            info.pid == me.pid
            and info.host == me.host
            and abs(info.start_time - me.start_time) <= START_TIME_TOLERANCE
        )
