"""
The tracked-app collection and its single owner.

``TrackedAppCollection`` is the only place the collection is mutated.
User actions, the refresher and the sync orchestrator all go through it.
Entities are immutable, so every mutation builds a new tuple under a
short lock and readers get a consistent value without waiting on network
or storage work.

Each mutation is persisted to the local store right away; listeners are
told so the sync loop can push the change out on its next cycle.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta

from django.utils import timezone

from .domain import (
    KeywordRanking,
    RatingSnapshot,
    TrackedApp,
    TrackedKeyword,
    normalize_country,
    normalize_keyword,
)
from .exceptions import CollectionDecodeError, StoreError
from .history import append
from .merge import (
    app_tombstone_key,
    apply_tombstones,
    merge_collections,
    merge_tombstones,
    prune_tombstones,
)
from .status import ActivityStatus
from .stores import (
    APPS_KEY,
    COUNTRY_KEY,
    TOMBSTONES_KEY,
    dump_apps,
    dump_tombstones,
    load_apps,
    load_tombstones,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CollectionSnapshot:
    """A consistent view of the collection at one version."""

    apps: tuple
    country: str
    version: int
    tombstones: dict = field(default_factory=dict)


def _advance(previous: datetime, now: datetime) -> datetime:
    """Return a timestamp strictly later than ``previous``."""
    if now > previous:
        return now
    return previous + timedelta(microseconds=1)


class TrackedAppCollection:
    def __init__(
        self, store, default_country: str = "us", status: ActivityStatus | None = None,
        tombstone_retention_days: int | None = 90,
    ):
        self.store = store
        self.tombstone_retention_days = tombstone_retention_days
        self.status = status or ActivityStatus()
        self._lock = threading.RLock()
        self._persist_lock = threading.Lock()
        self._apps = ()
        self._tombstones = {}
        self._country = normalize_country(default_country) or "us"
        self._version = 0
        self._listeners = []

    # ── Loading / persistence ─────────────────────────────────────────────

    def load(self):
        """
        Read the collection from the local store.

        A stored collection that cannot be decoded is kept aside under a
        backup key and the tracker starts empty, so one bad record never
        blocks the app.
        """
        try:
            raw_apps = self.store.get(APPS_KEY)
            raw_country = self.store.get(COUNTRY_KEY)
            raw_tombstones = self.store.get(TOMBSTONES_KEY)
        except (StoreError, CollectionDecodeError) as e:
            logger.error(f"Could not load tracked apps: {e}")
            self.status.report_error(str(e))
            return

        try:
            apps = load_apps(raw_apps)
        except CollectionDecodeError as e:
            logger.error(f"Stored collection is unreadable, starting empty: {e}")
            self.status.report_error(f"Stored data could not be read: {e}")
            try:
                self.store.set(f"{APPS_KEY}.unreadable", raw_apps or "")
            except StoreError as backup_error:
                logger.error(f"Could not back up unreadable collection: {backup_error}")
            apps = ()

        try:
            tombstones = load_tombstones(raw_tombstones)
        except CollectionDecodeError as e:
            logger.warning(f"Ignoring unreadable tombstones: {e}")
            tombstones = {}

        with self._lock:
            self._apps = apply_tombstones(apps, tombstones)
            self._tombstones = tombstones
            if raw_country:
                self._country = normalize_country(raw_country)
            self._version += 1

        logger.info(f"Loaded {len(apps)} tracked apps from the {self.store.name} store.")

    def _save(self):
        with self._persist_lock:
            snapshot = self.snapshot()
            try:
                self.store.set(APPS_KEY, dump_apps(snapshot.apps))
                self.store.set(TOMBSTONES_KEY, dump_tombstones(snapshot.tombstones))
                self.store.set(COUNTRY_KEY, snapshot.country)
            except StoreError as e:
                # The in-memory collection stays authoritative; the next
                # successful save writes everything.
                logger.error(f"Could not save tracked apps: {e}")
                self.status.report_error(str(e))

    def add_listener(self, callback):
        """Register ``callback(reason)`` to run after every local mutation."""
        self._listeners.append(callback)

    def _notify(self, reason: str):
        for callback in list(self._listeners):
            try:
                callback(reason)
            except Exception as e:
                logger.error(f"Change listener failed for '{reason}': {e}")

    def _commit(self, reason: str):
        self._save()
        self._notify(reason)

    # ── Reads ─────────────────────────────────────────────────────────────

    def snapshot(self) -> CollectionSnapshot:
        with self._lock:
            return CollectionSnapshot(
                apps=self._apps,
                country=self._country,
                version=self._version,
                tombstones=dict(self._tombstones),
            )

    @property
    def apps(self) -> tuple:
        with self._lock:
            return self._apps

    @property
    def country(self) -> str:
        with self._lock:
            return self._country

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def find_app(self, app_id: str) -> TrackedApp | None:
        for app in self.apps:
            if app.id == app_id:
                return app
        return None

    def is_tracking(self, track_id: int) -> bool:
        return any(app.track_id == track_id for app in self.apps)

    def statistics(self) -> dict:
        apps = self.apps
        latest = [app.latest_rating for app in apps]
        latest = [snapshot for snapshot in latest if snapshot is not None]
        return {
            "app_count": len(apps),
            "total_keywords": sum(len(app.keywords) for app in apps),
            "total_rankings": sum(len(k.rankings) for app in apps for k in app.keywords),
            "total_rating_snapshots": sum(len(app.rating_snapshots) for app in apps),
            "average_rating": (
                sum(s.rating for s in latest) / len(latest) if latest else None
            ),
            "total_reviews": sum(s.rating_count for s in latest),
        }

    # ── Mutations ─────────────────────────────────────────────────────────

    def _replace_app(self, app_id: str, update) -> TrackedApp | None:
        """Apply ``update(app) -> app`` to one app.  Caller holds the lock."""
        for index, app in enumerate(self._apps):
            if app.id == app_id:
                updated = update(app)
                if updated is not app:
                    self._apps = self._apps[:index] + (updated,) + self._apps[index + 1:]
                    self._version += 1
                return updated
        return None

    def add_app(self, entry: dict, now=None) -> TrackedApp | None:
        """Start tracking a catalog entry.  Already-tracked ids are ignored."""
        with self._lock:
            if any(app.track_id == entry.get("trackId") for app in self._apps):
                return None
            app = TrackedApp.from_catalog_entry(entry, now=now)
            self._apps = self._apps + (app,)
            self._version += 1
        logger.info(f"Tracking app '{app.track_name}' ({app.track_id}).")
        self._commit("add_app")
        return app

    def remove_app(self, app_id: str) -> bool:
        with self._lock:
            remaining = tuple(app for app in self._apps if app.id != app_id)
            if len(remaining) == len(self._apps):
                return False
            now = timezone.now()
            for app in self._apps:
                if app.id == app_id:
                    self._tombstones[app_tombstone_key(app.track_id)] = now
            self._apps = remaining
            self._tombstones[app_id] = now
            self._version += 1
        self._commit("remove_app")
        return True

    def remove_all(self) -> int:
        """Delete all data.  Returns the number of apps removed."""
        with self._lock:
            count = len(self._apps)
            if not count:
                return 0
            now = timezone.now()
            for app in self._apps:
                self._tombstones[app.id] = now
                self._tombstones[app_tombstone_key(app.track_id)] = now
            self._apps = ()
            self._version += 1
        self._commit("remove_all")
        return count

    def add_keywords(self, app_id: str, texts, country_code: str, now=None) -> list:
        """
        Add keywords to an app.

        Each text is trimmed and case-folded before checking uniqueness
        against the app's existing (text, country) pairs and the rest of
        the batch.  Returns the keywords that were actually created.
        """
        country = normalize_country(country_code)
        created = []

        def update(app):
            keywords = app.keywords
            for text in texts:
                keyword_text = normalize_keyword(text)
                if not keyword_text:
                    continue
                if any(k.matches(keyword_text, country) for k in keywords):
                    continue
                keyword = TrackedKeyword.create(keyword_text, country, now=now)
                keywords = keywords + (keyword,)
                created.append(keyword)
            if not created:
                return app
            return replace(
                app,
                keywords=keywords,
                last_updated=_advance(app.last_updated, now or timezone.now()),
            )

        with self._lock:
            if self._replace_app(app_id, update) is None:
                return []
        if created:
            self._commit("add_keyword")
        return created

    def add_keyword(self, app_id: str, text: str, country_code: str, now=None) -> TrackedKeyword | None:
        created = self.add_keywords(app_id, [text], country_code, now=now)
        return created[0] if created else None

    def remove_keyword(self, app_id: str, keyword_id: str) -> bool:
        removed = False

        def update(app):
            nonlocal removed
            keywords = tuple(k for k in app.keywords if k.id != keyword_id)
            if len(keywords) == len(app.keywords):
                return app
            removed = True
            return replace(
                app,
                keywords=keywords,
                last_updated=_advance(app.last_updated, timezone.now()),
            )

        with self._lock:
            self._replace_app(app_id, update)
            if removed:
                self._tombstones[keyword_id] = timezone.now()
        if removed:
            self._commit("remove_keyword")
        return removed

    def append_ranking(
        self, app_id: str, keyword_id: str, rank, timestamp=None, impressions=None, touch: bool = True,
    ) -> KeywordRanking | None:
        """
        Append one ranking observation.

        Returns None when the app or keyword no longer exists (for
        instance, removed while a refresh was running).
        """
        ranking = KeywordRanking.create(rank, timestamp=timestamp, impressions=impressions)
        appended = False

        def update(app):
            nonlocal appended
            keyword = app.find_keyword(keyword_id)
            if keyword is None:
                return app
            appended = True
            keywords = tuple(
                replace(k, rankings=append(k.rankings, ranking)) if k.id == keyword_id else k
                for k in app.keywords
            )
            if touch:
                return replace(
                    app,
                    keywords=keywords,
                    last_updated=_advance(app.last_updated, ranking.timestamp),
                )
            return replace(app, keywords=keywords)

        with self._lock:
            self._replace_app(app_id, update)
        if not appended:
            return None
        self._commit("append_ranking")
        return ranking

    def append_rating(
        self, app_id: str, rating, rating_count, timestamp=None, touch: bool = True,
    ) -> RatingSnapshot | None:
        snapshot = RatingSnapshot.create(rating, rating_count, timestamp=timestamp)

        def update(app):
            updated = replace(app, rating_snapshots=append(app.rating_snapshots, snapshot))
            if touch:
                updated = replace(updated, last_updated=_advance(app.last_updated, snapshot.timestamp))
            return updated

        with self._lock:
            found = self._replace_app(app_id, update)
        if found is None:
            return None
        self._commit("append_rating")
        return snapshot

    def touch(self, app_ids, now=None) -> int:
        """Advance ``last_updated`` once for each given app."""
        app_ids = set(app_ids)
        if not app_ids:
            return 0
        now = now or timezone.now()
        touched = 0
        with self._lock:
            for app_id in app_ids:
                if self._replace_app(
                    app_id, lambda app: replace(app, last_updated=_advance(app.last_updated, now))
                ) is not None:
                    touched += 1
        if touched:
            self._commit("touch")
        return touched

    def set_country(self, country_code: str):
        code = normalize_country(country_code)
        with self._lock:
            if code == self._country:
                return
            self._country = code
            self._version += 1
        self._commit("set_country")

    # ── Sync ──────────────────────────────────────────────────────────────

    def adopt(self, merged_apps, tombstones: dict, based_on_version: int) -> CollectionSnapshot:
        """
        Install a merge result produced from the snapshot at ``based_on_version``.

        Mutations that landed while the merge was running are not lost:
        if the version moved on, the current collection is merged with
        the result instead of being replaced by it.  Listeners are not
        notified, since this is the sync cycle finishing, not a new
        local change.

        Removals older than the retention window are forgotten here, after
        they have been applied.
        """
        with self._lock:
            all_tombstones = merge_tombstones(self._tombstones, tombstones)
            if self._version == based_on_version:
                apps = tuple(merged_apps)
            else:
                logger.info("Collection changed during sync; folding in the merge result.")
                apps = merge_collections(apply_tombstones(self._apps, all_tombstones), merged_apps)
            self._apps = apply_tombstones(apps, all_tombstones)
            if self.tombstone_retention_days is not None:
                cutoff = timezone.now() - timedelta(days=self.tombstone_retention_days)
                kept = prune_tombstones(all_tombstones, cutoff)
                if len(kept) != len(all_tombstones):
                    logger.info(
                        f"Forgot {len(all_tombstones) - len(kept)} removals older than "
                        f"{self.tombstone_retention_days} days."
                    )
                all_tombstones = kept
            self._tombstones = all_tombstones
            self._version += 1
        self._save()
        return self.snapshot()
