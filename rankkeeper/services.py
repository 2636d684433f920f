"""
Service classes for the App Store catalog API, keyword scores and
download estimates.

All API calls are made from the user's local machine; no central
server is involved.
"""

import hashlib
import logging
import re

import requests
from django.conf import settings

from .exceptions import (
    DecodingError,
    MalformedRequestError,
    ProtocolError,
    TransportError,
)

logger = logging.getLogger(__name__)

_COUNTRY_RE = re.compile(r"^[a-z]{2}$")


# --------------------------------------------------------------------------- #
# Keyword Scores
# --------------------------------------------------------------------------- #


class KeywordScorer:
    """
    Assigns fixed popularity and difficulty labels to a keyword.

    There is no live search-volume source behind these numbers.  They are
    stand-ins for a real ASO metrics provider, derived from a hash of the
    keyword text so the same keyword always receives the same values and
    tests are reproducible.

    Ranges match what the tracker has always shown:
      - popularity: 20–80
      - difficulty: 10–90
    """

    POPULARITY_RANGE = (20, 80)
    DIFFICULTY_RANGE = (10, 90)

    def _seeded(self, salt: str, keyword: str, low: int, high: int) -> int:
        digest = hashlib.sha256(f"{salt}:{keyword}".encode("utf-8")).digest()
        value = int.from_bytes(digest[:8], "big")
        return low + value % (high - low + 1)

    def popularity(self, keyword: str, country: str = "") -> int:
        low, high = self.POPULARITY_RANGE
        return self._seeded("popularity", keyword, low, high)

    def difficulty(self, keyword: str, country: str = "") -> int:
        low, high = self.DIFFICULTY_RANGE
        return self._seeded("difficulty", keyword, low, high)


# --------------------------------------------------------------------------- #
# Download Estimator
# --------------------------------------------------------------------------- #


class DownloadEstimator:
    """
    Estimates monthly installs a keyword can drive.

    Popularity buckets map to an assumed monthly search volume; the volume
    is multiplied by a fixed click-through rate and a fixed install rate.
    The result is floored at 1 so every tracked keyword shows something.

    The bucket table is a step function, so the estimate never decreases
    as popularity rises.
    """

    # (lower bound of popularity bucket, assumed monthly searches)
    _POP_TO_MONTHLY_SEARCHES = [
        (0, 100),
        (15, 500),
        (30, 2_000),
        (50, 10_000),
        (70, 50_000),
        (85, 200_000),
        (95, 1_000_000),
    ]

    CLICK_THROUGH_RATE = 0.42
    INSTALL_RATE = 0.05

    def monthly_searches(self, popularity: int) -> int:
        popularity = max(0, min(100, popularity or 0))
        searches = self._POP_TO_MONTHLY_SEARCHES[0][1]
        for lower, volume in self._POP_TO_MONTHLY_SEARCHES:
            if popularity >= lower:
                searches = volume
        return searches

    def monthly_downloads(self, popularity: int) -> int:
        searches = self.monthly_searches(popularity)
        return max(1, int(searches * self.CLICK_THROUGH_RATE * self.INSTALL_RATE))


# --------------------------------------------------------------------------- #
# App Store Catalog API
# --------------------------------------------------------------------------- #


class AppStoreClient:
    """
    Thin client for the public iTunes Search, Lookup and reviews RSS APIs.

    No authentication required.  Unlike a fire-and-forget UI call, every
    failure is raised as a distinguishable exception so that callers can
    decide the granularity at which to swallow it:

      - MalformedRequestError: the request could not be built
      - TransportError: network unreachable / timeout
      - ProtocolError: non-200 status (code preserved)
      - DecodingError: payload was not the expected JSON shape
    """

    BASE_URL = "https://itunes.apple.com"
    SEARCH_URL = f"{BASE_URL}/search"
    LOOKUP_URL = f"{BASE_URL}/lookup"
    REVIEWS_URL = BASE_URL + "/{country}/rss/customerreviews/page={page}/id={track_id}/sortby=mostrecent/json"

    MAX_LIMIT = 200

    def __init__(self, session: requests.Session | None = None, timeout: int | None = None):
        self.session = session or requests.Session()
        self.timeout = timeout or getattr(settings, "RANKKEEPER_HTTP_TIMEOUT", 30)

    # ── Requests ──────────────────────────────────────────────────────────

    def _get_json(self, url: str, params: dict | None = None):
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"Request to {url} failed: {e}") from e

        if response.status_code != 200:
            raise ProtocolError(response.status_code, url)

        try:
            return response.json()
        except ValueError as e:
            raise DecodingError(f"Response from {url} is not valid JSON") from e

    def _results(self, payload) -> list[dict]:
        if not isinstance(payload, dict) or not isinstance(payload.get("results"), list):
            raise DecodingError("Expected an object with a 'results' list")
        apps = []
        for result in payload["results"]:
            if not isinstance(result, dict):
                raise DecodingError("Result entries must be objects")
            if result.get("trackId") is None:
                continue
            apps.append(self._parse_app(result))
        return apps

    @staticmethod
    def _check_country(country: str) -> str:
        code = (country or "").strip().lower()
        if not _COUNTRY_RE.match(code):
            raise MalformedRequestError(f"Invalid country code: {country!r}")
        return code

    # ── Search / lookup ───────────────────────────────────────────────────

    def search_apps(self, term: str, country: str = "us", limit: int = 50) -> list[dict]:
        """
        Search for iOS apps matching a term.

        Results keep the store's relevance order.  A blank term returns an
        empty list without a request.
        """
        term = (term or "").strip()
        if not term:
            return []
        country = self._check_country(country)
        if not 1 <= limit <= self.MAX_LIMIT:
            raise MalformedRequestError(f"limit must be within 1–{self.MAX_LIMIT}, got {limit}")

        payload = self._get_json(
            self.SEARCH_URL,
            params={
                "term": term,
                "country": country,
                "media": "software",
                "entity": "software",
                "limit": limit,
            },
        )
        return self._results(payload)

    def lookup_by_id(self, track_id: int, country: str = "us") -> dict | None:
        """Look up a single app by its trackId.  Returns app dict or None."""
        try:
            track_id = int(track_id)
        except (TypeError, ValueError) as e:
            raise MalformedRequestError(f"Invalid track id: {track_id!r}") from e
        if track_id <= 0:
            raise MalformedRequestError(f"Invalid track id: {track_id!r}")
        country = self._check_country(country)
        results = self._results(
            self._get_json(self.LOOKUP_URL, params={"id": track_id, "country": country})
        )
        return results[0] if results else None

    def lookup_by_bundle_id(self, bundle_id: str, country: str = "us") -> dict | None:
        bundle_id = (bundle_id or "").strip()
        if not bundle_id:
            raise MalformedRequestError("Bundle id is required")
        country = self._check_country(country)
        results = self._results(
            self._get_json(self.LOOKUP_URL, params={"bundleId": bundle_id, "country": country})
        )
        return results[0] if results else None

    def find_app_rank(
        self, keyword: str, track_id: int, country: str = "us", limit: int = MAX_LIMIT
    ) -> int | None:
        """
        Find where a specific app ranks for a keyword.

        Returns the 1-based position of the app, or None if it is not
        within the first ``limit`` results.
        """
        results = self.search_apps(keyword, country=country, limit=limit)
        for i, app in enumerate(results):
            if app.get("trackId") == track_id:
                return i + 1
        return None

    # ── Reviews ───────────────────────────────────────────────────────────

    def fetch_reviews(self, track_id: int, country: str = "us", page: int = 1) -> list[dict]:
        """
        Fetch one page of customer reviews, most recent first.

        The feed's dates are not trustworthy, so none are returned; the
        list order is the only recency signal.
        """
        country = self._check_country(country)
        if page < 1:
            raise MalformedRequestError(f"Invalid page: {page}")
        url = self.REVIEWS_URL.format(country=country, page=page, track_id=int(track_id))
        payload = self._get_json(url)
        if not isinstance(payload, dict) or not isinstance(payload.get("feed"), dict):
            raise DecodingError("Expected an object with a 'feed' object")
        return self._parse_reviews(payload["feed"], country)

    @staticmethod
    def _label(entry: dict, key: str):
        node = entry.get(key)
        if isinstance(node, dict):
            return node.get("label")
        return None

    def _parse_reviews(self, feed: dict, country: str) -> list[dict]:
        entries = feed.get("entry") or []
        # A feed with a single entry is delivered as an object, not a list.
        if isinstance(entries, dict):
            entries = [entries]

        reviews = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            author = entry.get("author")
            author_name = self._label(author, "name") if isinstance(author, dict) else None
            rating = self._label(entry, "im:rating")
            title = self._label(entry, "title")
            content = self._label(entry, "content")
            review_id = self._label(entry, "id")
            if None in (author_name, rating, title, content, review_id):
                # The app's own metadata entry carries no rating; skip it
                # along with anything else that is incomplete.
                continue
            try:
                rating = int(rating)
            except (TypeError, ValueError):
                continue
            if not 1 <= rating <= 5:
                continue
            reviews.append({
                "id": review_id,
                "author": author_name,
                "rating": rating,
                "title": title,
                "content": content,
                "version": self._label(entry, "im:version"),
                "country": country,
            })
        return reviews

    @staticmethod
    def _parse_app(result: dict) -> dict:
        """Parse an iTunes API result into a standardized app dict."""
        return {
            "trackId": result.get("trackId"),
            "trackName": result.get("trackName", ""),
            "bundleId": result.get("bundleId", ""),
            "sellerName": result.get("sellerName", ""),
            "primaryGenreName": result.get("primaryGenreName", ""),
            "artworkUrl100": result.get("artworkUrl100", ""),
            "artworkUrl512": result.get("artworkUrl512"),
            "averageUserRating": result.get("averageUserRating"),
            "userRatingCount": result.get("userRatingCount"),
            "price": result.get("price"),
            "formattedPrice": result.get("formattedPrice", "Free"),
            "trackViewUrl": result.get("trackViewUrl", ""),
        }
