import pytest

from rankkeeper.exceptions import CapacityError, CollectionDecodeError
from rankkeeper.stores import (
    APPS_KEY,
    DatabaseKeyValueStore,
    FileKeyValueStore,
    MemoryKeyValueStore,
    dump_apps,
    dump_tombstones,
    load_apps,
    load_tombstones,
)

from .factories import app, at, keyword, ranking


def test_codec_round_trip() -> None:
    apps = (app("A1", 111, keywords=[keyword("K1", rankings=[ranking("r1", 2, 1)])]),)
    assert load_apps(dump_apps(apps)) == apps
    assert load_tombstones(dump_tombstones({"K1": at(4)})) == {"K1": at(4)}


def test_empty_values_decode_as_empty() -> None:
    assert load_apps(None) == ()
    assert load_apps("") == ()
    assert load_tombstones(None) == {}


def test_invalid_json_raises_decode_error() -> None:
    with pytest.raises(CollectionDecodeError):
        load_apps("{not json")
    with pytest.raises(CollectionDecodeError):
        load_tombstones("[1, 2]")


def test_file_store_reads_and_writes(tmp_path) -> None:
    store = FileKeyValueStore(tmp_path / "remote")
    assert store.get(APPS_KEY) is None
    assert store.fingerprint() == ()

    store.set(APPS_KEY, "[]")
    assert store.get(APPS_KEY) == "[]"
    assert (tmp_path / "remote" / "trackedApps.json").read_text() == "[]"
    assert not list((tmp_path / "remote").glob("*.tmp"))

    store.delete(APPS_KEY)
    assert store.get(APPS_KEY) is None


def test_file_store_fingerprint_changes_on_write(tmp_path) -> None:
    store = FileKeyValueStore(tmp_path)
    store.set("a", "1")
    before = store.fingerprint()
    store.set("a", "12")
    assert store.fingerprint() != before


def test_file_store_quota_keeps_old_value(tmp_path) -> None:
    store = FileKeyValueStore(tmp_path, quota_bytes=10)
    store.set("a", "12345")
    with pytest.raises(CapacityError) as excinfo:
        store.set("b", "123456")
    assert excinfo.value.used_bytes == 11
    assert excinfo.value.quota_bytes == 10
    assert store.get("b") is None

    # Replacing a key only counts its new size.
    store.set("a", "1234567890")
    assert store.get("a") == "1234567890"


def test_memory_store_quota_and_version() -> None:
    store = MemoryKeyValueStore(quota_bytes=4)
    store.set("a", "1234")
    version = store.fingerprint()
    with pytest.raises(CapacityError):
        store.set("b", "x")
    assert store.fingerprint() == version
    store.delete("a")
    assert store.fingerprint() == version + 1


@pytest.mark.django_db
def test_database_store_upserts() -> None:
    from rankkeeper.models import StoredValue

    store = DatabaseKeyValueStore()
    assert store.get(APPS_KEY) is None
    store.set(APPS_KEY, "[]")
    store.set(APPS_KEY, "[1]")
    assert store.get(APPS_KEY) == "[1]"
    assert StoredValue.objects.count() == 1
    store.delete(APPS_KEY)
    assert store.get(APPS_KEY) is None


def test_file_store_rejects_non_utf8_files(tmp_path) -> None:
    (tmp_path / f"{APPS_KEY}.json").write_bytes(b"\xff")
    with pytest.raises(CollectionDecodeError):
        FileKeyValueStore(tmp_path).get(APPS_KEY)
