"""
Key-value stores used as transport for the tracked-app collection.

Two stores hold the same layout:
  - ``trackedApps``      the serialized collection (one JSON list)
  - ``selectedCountry``  the preferred country code
  - ``removedItems``     removal tombstones (local id or catalog id → removed at)
  - ``lastSyncDate``     when this store last received a merged result

The local store is a table in the project database.  The remote store is
a folder that a cloud drive keeps in sync across devices; like the cloud
key-value stores it stands in for, it has a total byte quota.
"""

import json
import logging
import threading
from pathlib import Path

from django.db import DatabaseError

from .domain import decode_apps, decode_datetime, encode_apps, encode_datetime
from .exceptions import CapacityError, CollectionDecodeError, StoreError

logger = logging.getLogger(__name__)

APPS_KEY = "trackedApps"
COUNTRY_KEY = "selectedCountry"
TOMBSTONES_KEY = "removedItems"
LAST_SYNC_KEY = "lastSyncDate"


# --------------------------------------------------------------------------- #
# Codec
# --------------------------------------------------------------------------- #


def dump_apps(apps) -> str:
    return json.dumps(encode_apps(apps), ensure_ascii=False, separators=(",", ":"))


def load_apps(raw: str | None) -> tuple:
    """Decode a stored collection.  ``None`` or an empty value is empty."""
    if not raw:
        return ()
    try:
        payload = json.loads(raw)
    except (ValueError, RecursionError) as e:
        raise CollectionDecodeError(f"Stored collection is not valid JSON: {e}") from e
    return decode_apps(payload)


def dump_tombstones(tombstones: dict) -> str:
    return json.dumps(
        {item_id: encode_datetime(removed_at) for item_id, removed_at in tombstones.items()},
        separators=(",", ":"),
    )


def load_tombstones(raw: str | None) -> dict:
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except (ValueError, RecursionError) as e:
        raise CollectionDecodeError(f"Stored tombstones are not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise CollectionDecodeError("Stored tombstones must be an object")
    return {str(item_id): decode_datetime(value) for item_id, value in payload.items()}


# --------------------------------------------------------------------------- #
# Stores
# --------------------------------------------------------------------------- #


class KeyValueStore:
    """String key → string value.  Implementations raise StoreError."""

    name = "store"

    def get(self, key: str) -> str | None:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def fingerprint(self):
        """A value that changes whenever the contents change.  Remote stores only."""
        raise NotImplementedError


class DatabaseKeyValueStore(KeyValueStore):
    """Local store backed by the ``StoredValue`` table."""

    name = "local"

    def get(self, key):
        from .models import StoredValue

        try:
            row = StoredValue.objects.filter(key=key).first()
        except DatabaseError as e:
            raise StoreError(f"Could not read '{key}' from the local store: {e}") from e
        return row.value if row else None

    def set(self, key, value):
        from .models import StoredValue

        try:
            StoredValue.objects.update_or_create(key=key, defaults={"value": value})
        except DatabaseError as e:
            raise StoreError(f"Could not write '{key}' to the local store: {e}") from e

    def delete(self, key):
        from .models import StoredValue

        try:
            StoredValue.objects.filter(key=key).delete()
        except DatabaseError as e:
            raise StoreError(f"Could not delete '{key}' from the local store: {e}") from e


class FileKeyValueStore(KeyValueStore):
    """
    Remote store: one JSON file per key inside a cloud-synced folder.

    Writes are atomic (temp file + rename) so the sync client never
    uploads a half-written collection.  A write that would push the
    folder's total size past ``quota_bytes`` raises CapacityError and
    leaves the old value in place.
    """

    name = "remote"

    def __init__(self, directory, quota_bytes: int | None = None):
        self.directory = Path(directory)
        self.quota_bytes = quota_bytes

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def _used_bytes(self, excluding: str) -> int:
        total = 0
        for path in self.directory.glob("*.json"):
            if path.name != f"{excluding}.json":
                total += path.stat().st_size
        return total

    def get(self, key):
        """Raises CollectionDecodeError when the file is not UTF-8 text."""
        path = self._path(key)
        try:
            if not path.exists():
                return None
            return path.read_text("utf-8")
        except UnicodeDecodeError as e:
            raise CollectionDecodeError(f"{path} is not UTF-8 text: {e}") from e
        except OSError as e:
            raise StoreError(f"Could not read {path}: {e}") from e

    def set(self, key, value):
        data = value.encode("utf-8")
        path = self._path(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            if self.quota_bytes is not None:
                used = self._used_bytes(excluding=key) + len(data)
                if used > self.quota_bytes:
                    raise CapacityError(used, self.quota_bytes)
            tmp = path.with_suffix(path.suffix + ".tmp")
            tmp.write_bytes(data)
            tmp.replace(path)
        except OSError as e:
            raise StoreError(f"Could not write {path}: {e}") from e

    def delete(self, key):
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StoreError(f"Could not delete {self._path(key)}: {e}") from e

    def fingerprint(self):
        try:
            if not self.directory.exists():
                return ()
            return tuple(sorted(
                (p.name, p.stat().st_mtime_ns, p.stat().st_size)
                for p in self.directory.glob("*.json")
            ))
        except OSError as e:
            raise StoreError(f"Could not scan {self.directory}: {e}") from e


class MemoryKeyValueStore(KeyValueStore):
    """In-process store, optionally with a quota.  Thread-safe."""

    def __init__(self, name: str = "memory", quota_bytes: int | None = None):
        self.name = name
        self.quota_bytes = quota_bytes
        self._data = {}
        self._version = 0
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            return self._data.get(key)

    def set(self, key, value):
        with self._lock:
            if self.quota_bytes is not None:
                used = sum(
                    len(v.encode("utf-8")) for k, v in self._data.items() if k != key
                ) + len(value.encode("utf-8"))
                if used > self.quota_bytes:
                    raise CapacityError(used, self.quota_bytes)
            self._data[key] = value
            self._version += 1

    def delete(self, key):
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._version += 1

    def fingerprint(self):
        with self._lock:
            return self._version
