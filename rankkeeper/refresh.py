"""
Ranking refresh driver.

A sweep is an explicit list of tasks consumed one at a time:
  - one rank lookup per tracked (app, keyword) pair
  - one rating lookup per app

Lookups are sequential with a pause between them to respect the App
Store's informal rate limits.  A failing task is logged and skipped; the
rest of the sweep carries on.  Cancelling stops before the next external
call and keeps everything already appended.
"""

import logging
import threading
from dataclasses import dataclass, field

from django.conf import settings
from django.utils import timezone

from .sync import SyncTrigger

logger = logging.getLogger(__name__)

RANK = "rank"
RATING = "rating"


class CancelToken:
    """Cooperative cancellation flag checked before every external call."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if cancelled meanwhile."""
        return self._event.wait(seconds)


@dataclass(frozen=True)
class RefreshTask:
    kind: str
    app_id: str
    track_id: int
    app_name: str
    country: str
    keyword_id: str | None = None
    keyword: str = ""

    @property
    def label(self) -> str:
        if self.kind == RANK:
            return f"{self.keyword} ({self.country.upper()})"
        return f"{self.app_name} rating"


@dataclass
class RefreshReport:
    planned: int = 0
    attempted: int = 0
    rankings_added: int = 0
    ratings_added: int = 0
    not_found: int = 0
    cancelled: bool = False
    failures: list = field(default_factory=list)
    touched_app_ids: set = field(default_factory=set)

    def to_dict(self) -> dict:
        return {
            "planned": self.planned,
            "attempted": self.attempted,
            "rankings_added": self.rankings_added,
            "ratings_added": self.ratings_added,
            "not_found": self.not_found,
            "cancelled": self.cancelled,
            "failures": [{"task": label, "error": error} for label, error in self.failures],
        }


class RankingRefresher:
    """
    Produces new ranking and rating observations for tracked apps.

    ``wait`` replaces the rate-limit pause (tests pass a recorder); it is
    called with ``(token, seconds)`` and returns True when cancelled.
    """

    def __init__(self, collection, client, orchestrator=None, delay=None, rank_limit=None, wait=None):
        self.collection = collection
        self.client = client
        self.orchestrator = orchestrator
        self.status = collection.status
        self.delay = (
            delay if delay is not None
            else getattr(settings, "RANKKEEPER_REQUEST_DELAY", 0.5)
        )
        self.rank_limit = rank_limit or getattr(settings, "RANKKEEPER_RANK_SEARCH_LIMIT", 200)
        self._wait = wait or (lambda token, seconds: token.wait(seconds))
        self._run_lock = threading.Lock()
        self._token = None

    # ── Planning ──────────────────────────────────────────────────────────

    def plan(self, app_ids=None, keyword_ids=None) -> list:
        """
        Build the task list from a snapshot of the collection.

        ``keyword_ids`` limits the sweep to those keywords (used right
        after keywords are added) and skips rating lookups.
        """
        snapshot = self.collection.snapshot()
        app_ids = set(app_ids) if app_ids else None
        keyword_ids = set(keyword_ids) if keyword_ids else None

        tasks = []
        for app in snapshot.apps:
            if app_ids is not None and app.id not in app_ids:
                continue
            for keyword in app.keywords:
                if keyword_ids is not None and keyword.id not in keyword_ids:
                    continue
                tasks.append(RefreshTask(
                    kind=RANK,
                    app_id=app.id,
                    track_id=app.track_id,
                    app_name=app.track_name,
                    country=keyword.country_code,
                    keyword_id=keyword.id,
                    keyword=keyword.keyword,
                ))
            if keyword_ids is None:
                tasks.append(RefreshTask(
                    kind=RATING,
                    app_id=app.id,
                    track_id=app.track_id,
                    app_name=app.track_name,
                    country=snapshot.country,
                ))
        return tasks

    # ── Execution ─────────────────────────────────────────────────────────

    def _execute(self, task: RefreshTask, report: RefreshReport):
        if task.kind == RANK:
            rank = self.client.find_app_rank(
                task.keyword, task.track_id, country=task.country, limit=self.rank_limit
            )
            if rank is None:
                # Absence is not recorded; only sightings are stored.
                report.not_found += 1
                return
            ranking = self.collection.append_ranking(
                task.app_id, task.keyword_id, rank, touch=False
            )
            if ranking is not None:
                report.rankings_added += 1
                report.touched_app_ids.add(task.app_id)
            return

        entry = self.client.lookup_by_id(task.track_id, country=task.country)
        if not entry:
            report.not_found += 1
            return
        rating = entry.get("averageUserRating")
        count = entry.get("userRatingCount")
        if rating is None or count is None:
            return
        snapshot = self.collection.append_rating(task.app_id, rating, count, touch=False)
        if snapshot is not None:
            report.ratings_added += 1
            report.touched_app_ids.add(task.app_id)

    def run(self, app_ids=None, keyword_ids=None, token: CancelToken | None = None) -> RefreshReport | None:
        """
        Run one sweep.  Returns None if another sweep is already running.

        Every app that received a new observation has ``last_updated``
        advanced once at the end, then the result is handed to the sync
        orchestrator.
        """
        if not self._run_lock.acquire(blocking=False):
            logger.info("Refresh skipped: a refresh is already running.")
            return None

        token = token or CancelToken()
        self._token = token
        report = RefreshReport()
        try:
            tasks = self.plan(app_ids=app_ids, keyword_ids=keyword_ids)
            report.planned = len(tasks)
            self.status.update(
                refreshing=True,
                total=len(tasks),
                completed=0,
                current_keyword="",
                started_at=timezone.now().isoformat(),
            )
            logger.info(f"Refresh starting: {len(tasks)} lookups.")

            for i, task in enumerate(tasks):
                if token.cancelled:
                    report.cancelled = True
                    break
                if i > 0 and self.delay and self._wait(token, self.delay):
                    report.cancelled = True
                    break

                self.status.update(current_keyword=task.label, completed=i)
                try:
                    self._execute(task, report)
                except Exception as e:
                    logger.warning(f"Refresh failed for {task.label}: {e}")
                    report.failures.append((task.label, str(e)))
                    self.status.report_error(f"Refresh failed for {task.label}: {e}")
                report.attempted += 1

            self.collection.touch(report.touched_app_ids)
        finally:
            self._token = None
            self.status.update(
                refreshing=False,
                completed=report.attempted,
                current_keyword="",
                last_completed_at=timezone.now().isoformat(),
            )
            self._run_lock.release()

        logger.info(
            f"Refresh {'cancelled' if report.cancelled else 'complete'}: "
            f"{report.rankings_added} rankings, {report.ratings_added} ratings, "
            f"{len(report.failures)} failures."
        )

        if self.orchestrator is not None and report.touched_app_ids:
            self.orchestrator.sync(SyncTrigger.LOCAL_CHANGE)
        return report

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    def cancel(self) -> bool:
        token = self._token
        if token is None:
            return False
        token.cancel()
        return True

    def start(self, app_ids=None, keyword_ids=None) -> bool:
        """Run a sweep on a worker thread.  Returns False if one is running."""
        if self.running:
            return False

        def run():
            try:
                self.run(app_ids=app_ids, keyword_ids=keyword_ids)
            except Exception as e:
                logger.error(f"Refresh failed: {e}")
                self.status.report_error(str(e))

        threading.Thread(target=run, daemon=True, name="rankkeeper-refresh").start()
        return True
