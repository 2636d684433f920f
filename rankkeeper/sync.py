"""
Sync orchestrator: decides when to merge and persists the result.

One cycle:
  1. take a snapshot of the local collection
  2. read and decode the remote collection (failures ⇒ no remote data)
  3. merge the two, then drop anything tombstoned on either side
  4. hand the result back to the collection owner (which saves locally)
  5. write the result to the remote store and stamp the sync time

Cycles never overlap.  A sync requested while one is running is skipped;
local changes made meanwhile are picked up by the next cycle.
"""

import enum
import logging
import threading
from dataclasses import dataclass, field

from django.utils import timezone

from .domain import encode_datetime
from .exceptions import CapacityError, CollectionDecodeError, StoreError
from .merge import apply_tombstones, merge_collections, merge_tombstones
from .stores import (
    APPS_KEY,
    COUNTRY_KEY,
    LAST_SYNC_KEY,
    TOMBSTONES_KEY,
    dump_apps,
    dump_tombstones,
    load_apps,
    load_tombstones,
)

logger = logging.getLogger(__name__)


class SyncState(enum.Enum):
    IDLE = "idle"
    SYNCING = "syncing"


class SyncTrigger(enum.Enum):
    STARTUP = "startup"
    REMOTE_CHANGE = "remote_change"
    LOCAL_CHANGE = "local_change"
    MANUAL = "manual"


@dataclass
class SyncResult:
    trigger: SyncTrigger
    skipped: bool = False
    remote_available: bool = False
    remote_written: bool = False
    quota_exceeded: bool = False
    app_count: int = 0
    warnings: list = field(default_factory=list)
    finished_at: object = None

    def to_dict(self) -> dict:
        return {
            "trigger": self.trigger.value,
            "skipped": self.skipped,
            "remote_available": self.remote_available,
            "remote_written": self.remote_written,
            "quota_exceeded": self.quota_exceeded,
            "app_count": self.app_count,
            "warnings": list(self.warnings),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class SyncOrchestrator:
    """
    Reconciles the local collection with the remote store.

    ``remote_store`` may be None, in which case a cycle only persists the
    local collection; the tracker is fully usable without a remote.
    """

    def __init__(self, collection, remote_store=None, merge=merge_collections):
        self.collection = collection
        self.remote_store = remote_store
        self.merge = merge
        self.status = collection.status
        self._cycle_lock = threading.Lock()
        self._state = SyncState.IDLE
        self.last_result = None

    @property
    def state(self) -> SyncState:
        return self._state

    def _warn(self, result: SyncResult, message: str):
        logger.warning(message)
        result.warnings.append(message)
        self.status.report_error(message)

    def _read_remote(self, result: SyncResult):
        """
        Return ``(remote, overwrite_ok)``.

        ``remote`` is ``(apps, tombstones)``, or None when the read failed
        or the data could not be decoded: both mean "no remote data this
        cycle".  ``overwrite_ok`` tells the caller whether it is safe to
        write the merge result over the remote copy.
        """
        try:
            apps = load_apps(self.remote_store.get(APPS_KEY))
        except StoreError as e:
            self._warn(result, f"Could not read remote data: {e}")
            return None, False
        except CollectionDecodeError as e:
            # The remote copy is unusable; overwriting it with the local
            # collection repairs it.
            self._warn(result, f"Remote data could not be decoded: {e}")
            return None, True

        try:
            tombstones = load_tombstones(self.remote_store.get(TOMBSTONES_KEY))
        except StoreError as e:
            self._warn(result, f"Could not read remote data: {e}")
            return None, False
        except CollectionDecodeError as e:
            logger.warning(f"Ignoring unreadable remote tombstones: {e}")
            tombstones = {}

        return (apps, tombstones), True

    def _write_remote(self, snapshot, result: SyncResult):
        try:
            self.remote_store.set(APPS_KEY, dump_apps(snapshot.apps))
            self.remote_store.set(TOMBSTONES_KEY, dump_tombstones(snapshot.tombstones))
            self.remote_store.set(COUNTRY_KEY, snapshot.country)
            self.remote_store.set(LAST_SYNC_KEY, encode_datetime(result.finished_at))
        except CapacityError as e:
            result.quota_exceeded = True
            message = (
                f"Cloud storage is full ({e.used_bytes:,} of {e.quota_bytes:,} bytes). "
                "Changes are saved on this device only."
            )
            logger.warning(message)
            result.warnings.append(message)
            self.status.report_error(message)
            self.status.update(quota_exceeded=True)
            return
        except StoreError as e:
            self._warn(result, f"Could not write remote data: {e}")
            return
        result.remote_written = True
        self.status.update(quota_exceeded=False)

    def sync(self, trigger: SyncTrigger = SyncTrigger.MANUAL) -> SyncResult:
        """Run one sync cycle.  Never raises for remote or storage failures."""
        result = SyncResult(trigger=trigger)
        if not self._cycle_lock.acquire(blocking=False):
            logger.info(f"Sync ({trigger.value}) skipped: a sync is already running.")
            result.skipped = True
            return result

        self._state = SyncState.SYNCING
        self.status.update(syncing=True)
        try:
            snapshot = self.collection.snapshot()
            merged = snapshot.apps
            tombstones = snapshot.tombstones
            write_remote = self.remote_store is not None

            if self.remote_store is not None:
                remote, write_remote = self._read_remote(result)
                if remote is not None:
                    remote_apps, remote_tombstones = remote
                    result.remote_available = True
                    tombstones = merge_tombstones(tombstones, remote_tombstones)
                    merged = apply_tombstones(
                        self.merge(
                            apply_tombstones(snapshot.apps, tombstones),
                            apply_tombstones(remote_apps, tombstones),
                        ),
                        tombstones,
                    )

            adopted = self.collection.adopt(merged, tombstones, snapshot.version)
            result.app_count = len(adopted.apps)
            result.finished_at = timezone.now()

            if write_remote:
                self._write_remote(adopted, result)

            try:
                self.collection.store.set(LAST_SYNC_KEY, encode_datetime(result.finished_at))
            except StoreError as e:
                logger.error(f"Could not record sync time: {e}")

            self.status.update(last_sync_at=result.finished_at.isoformat())
            logger.info(
                f"Sync ({trigger.value}) finished: {result.app_count} apps, "
                f"remote {'read' if result.remote_available else 'unavailable'}, "
                f"{'written' if result.remote_written else 'not written'}."
            )
        finally:
            self._state = SyncState.IDLE
            self.status.update(syncing=False)
            self._cycle_lock.release()

        self.last_result = result
        return result

    def sync_in_background(self, trigger: SyncTrigger = SyncTrigger.MANUAL) -> bool:
        """Start a cycle on a worker thread.  Returns False if one is running."""
        if self._state is SyncState.SYNCING:
            return False

        def run():
            try:
                self.sync(trigger)
            except Exception as e:
                logger.error(f"Sync ({trigger.value}) failed: {e}")
                self.status.report_error(str(e))

        threading.Thread(target=run, daemon=True, name="rankkeeper-sync").start()
        return True
