"""
Tracked-app data model.

Every entity is a frozen dataclass: the collection owner swaps whole
values instead of mutating them in place, so a snapshot handed to the
merge engine or to a network call can never change underneath it.

Wire format is the camelCase JSON the apps have always been stored in.
Decoding tolerates older records that lack newer fields and fills in
documented defaults instead of failing the whole collection.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone as dt_timezone

from django.utils import timezone
from django.utils.dateparse import parse_datetime

from .exceptions import CollectionDecodeError
from .history import latest_two, sorted_by_timestamp
from .services import DownloadEstimator, KeywordScorer

logger = logging.getLogger(__name__)

# The earliest stored collections wrote dates as seconds since Apple's
# Foundation reference date, 2001-01-01.
_REFERENCE_DATE = datetime(2001, 1, 1, tzinfo=dt_timezone.utc)

_scorer = KeywordScorer()
_downloads = DownloadEstimator()


def new_id() -> str:
    return str(uuid.uuid4()).upper()


def normalize_keyword(text: str) -> str:
    """Trim surrounding whitespace and case-fold keyword text."""
    return (text or "").strip().casefold()


def normalize_country(code: str) -> str:
    return (code or "").strip().lower()


def encode_datetime(value: datetime) -> str:
    return value.astimezone(dt_timezone.utc).isoformat().replace("+00:00", "Z")


def decode_datetime(value, default: datetime | None = None) -> datetime:
    """
    Parse an ISO-8601 string or a Foundation reference-date number.

    Naive values are taken as UTC.  Missing or unparseable values fall
    back to ``default`` (or the epoch of the reference date).
    """
    fallback = default if default is not None else _REFERENCE_DATE
    if value is None:
        return fallback
    if isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        try:
            return _REFERENCE_DATE + timedelta(seconds=value)
        except (OverflowError, ValueError):
            return fallback
    if isinstance(value, str):
        try:
            parsed = parse_datetime(value.strip())
        except ValueError:
            parsed = None
        if parsed is None:
            return fallback
        if timezone.is_naive(parsed):
            parsed = parsed.replace(tzinfo=dt_timezone.utc)
        return parsed
    return fallback


def _require_mapping(data, kind: str) -> dict:
    if not isinstance(data, dict):
        raise CollectionDecodeError(f"{kind} must be an object, got {type(data).__name__}")
    return data


def _list_field(data: dict, key: str) -> list:
    items = data.get(key)
    if items is None:
        return []
    if not isinstance(items, list):
        raise CollectionDecodeError(f"{key} must be a list, got {type(items).__name__}")
    return items


def _optional_int(value):
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


# --------------------------------------------------------------------------- #
# Observations
# --------------------------------------------------------------------------- #


@dataclass(frozen=True)
class KeywordRanking:
    """One rank sighting.  ``rank`` of None means "not in the top N"."""

    id: str
    rank: int | None
    timestamp: datetime
    impressions: int | None = None

    @classmethod
    def create(cls, rank, timestamp=None, impressions=None) -> "KeywordRanking":
        return cls(
            id=new_id(),
            rank=rank,
            timestamp=timestamp or timezone.now(),
            impressions=impressions,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "rank": self.rank,
            "date": encode_datetime(self.timestamp),
            "impressions": self.impressions,
        }

    @classmethod
    def from_dict(cls, data) -> "KeywordRanking":
        data = _require_mapping(data, "ranking")
        if not data.get("id"):
            raise CollectionDecodeError("ranking is missing its id")
        return cls(
            id=str(data["id"]),
            rank=_optional_int(data.get("rank")),
            timestamp=decode_datetime(data.get("date")),
            impressions=_optional_int(data.get("impressions")),
        )


@dataclass(frozen=True)
class RatingSnapshot:
    id: str
    rating: float
    rating_count: int
    timestamp: datetime

    @classmethod
    def create(cls, rating, rating_count, timestamp=None) -> "RatingSnapshot":
        return cls(
            id=new_id(),
            rating=float(rating),
            rating_count=int(rating_count),
            timestamp=timestamp or timezone.now(),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "rating": self.rating,
            "ratingCount": self.rating_count,
            "date": encode_datetime(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data) -> "RatingSnapshot":
        data = _require_mapping(data, "rating snapshot")
        if not data.get("id"):
            raise CollectionDecodeError("rating snapshot is missing its id")
        try:
            rating = float(data.get("rating") or 0)
        except (TypeError, ValueError):
            rating = 0.0
        return cls(
            id=str(data["id"]),
            rating=rating,
            rating_count=_optional_int(data.get("ratingCount")) or 0,
            timestamp=decode_datetime(data.get("date")),
        )


# --------------------------------------------------------------------------- #
# Keyword
# --------------------------------------------------------------------------- #


@dataclass(frozen=True)
class TrackedKeyword:
    """
    A (keyword text, country) pair tracked for one app.

    ``popularity`` and ``difficulty`` are fixed labels assigned when the
    keyword is created.  They are seeded from the keyword text, so the
    same keyword always gets the same numbers; they are not live
    measurements.
    """

    id: str
    keyword: str
    country_code: str
    date_added: datetime
    popularity: int
    difficulty: int
    rankings: tuple = field(default_factory=tuple)

    @classmethod
    def create(cls, text: str, country_code: str, now=None) -> "TrackedKeyword":
        keyword = normalize_keyword(text)
        country = normalize_country(country_code)
        return cls(
            id=new_id(),
            keyword=keyword,
            country_code=country,
            date_added=now or timezone.now(),
            popularity=_scorer.popularity(keyword, country),
            difficulty=_scorer.difficulty(keyword, country),
        )

    def matches(self, text: str, country_code: str) -> bool:
        return (
            self.keyword.lower() == normalize_keyword(text)
            and self.country_code == normalize_country(country_code)
        )

    @property
    def sorted_rankings(self) -> list:
        """Rankings oldest first."""
        return sorted_by_timestamp(self.rankings)

    @property
    def current_rank(self) -> int | None:
        current, _ = latest_two(self.rankings)
        return current.rank if current else None

    @property
    def previous_rank(self) -> int | None:
        _, previous = latest_two(self.rankings)
        return previous.rank if previous else None

    @property
    def rank_change(self) -> int | None:
        """Positive when the app moved up (toward #1)."""
        current, previous = self.current_rank, self.previous_rank
        if current is None or previous is None:
            return None
        return previous - current

    @property
    def estimated_downloads(self) -> int:
        return _downloads.monthly_downloads(self.popularity)

    def with_ranking(self, ranking: KeywordRanking) -> "TrackedKeyword":
        return replace(self, rankings=self.rankings + (ranking,))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "keyword": self.keyword,
            "countryCode": self.country_code,
            "dateAdded": encode_datetime(self.date_added),
            "popularity": self.popularity,
            "difficulty": self.difficulty,
            "rankings": [r.to_dict() for r in self.rankings],
        }

    @classmethod
    def from_dict(cls, data) -> "TrackedKeyword":
        data = _require_mapping(data, "keyword")
        if not data.get("id"):
            raise CollectionDecodeError("keyword is missing its id")
        keyword = normalize_keyword(str(data.get("keyword", "")))
        country = normalize_country(str(data.get("countryCode", "us"))) or "us"

        # Records written before the scores were stored get the same
        # seeded values they would have received at creation.
        popularity = _optional_int(data.get("popularity"))
        if popularity is None:
            popularity = _scorer.popularity(keyword, country)
        difficulty = _optional_int(data.get("difficulty"))
        if difficulty is None:
            difficulty = _scorer.difficulty(keyword, country)

        return cls(
            id=str(data["id"]),
            keyword=keyword,
            country_code=country,
            date_added=decode_datetime(data.get("dateAdded")),
            popularity=max(0, min(100, popularity)),
            difficulty=max(0, min(100, difficulty)),
            rankings=tuple(
                KeywordRanking.from_dict(r) for r in _list_field(data, "rankings")
            ),
        )


# --------------------------------------------------------------------------- #
# App
# --------------------------------------------------------------------------- #


@dataclass(frozen=True)
class TrackedApp:
    """An App Store app under observation, with its keywords and ratings."""

    id: str
    track_id: int
    track_name: str
    bundle_id: str = ""
    seller_name: str = ""
    artwork_url: str = ""
    primary_genre_name: str = ""
    date_added: datetime = _REFERENCE_DATE
    last_updated: datetime = _REFERENCE_DATE
    keywords: tuple = field(default_factory=tuple)
    rating_snapshots: tuple = field(default_factory=tuple)

    @classmethod
    def from_catalog_entry(cls, entry: dict, now=None) -> "TrackedApp":
        """
        Build a new tracked app from a parsed catalog entry.

        An initial rating snapshot is recorded when the entry carries
        both an average rating and a rating count.
        """
        now = now or timezone.now()
        snapshots = ()
        rating = entry.get("averageUserRating")
        count = entry.get("userRatingCount")
        if rating is not None and count is not None:
            snapshots = (RatingSnapshot.create(rating, count, timestamp=now),)
        return cls(
            id=new_id(),
            track_id=int(entry["trackId"]),
            track_name=entry.get("trackName", ""),
            bundle_id=entry.get("bundleId", ""),
            seller_name=entry.get("sellerName", ""),
            artwork_url=entry.get("artworkUrl512") or entry.get("artworkUrl100", ""),
            primary_genre_name=entry.get("primaryGenreName", ""),
            date_added=now,
            last_updated=now,
            rating_snapshots=snapshots,
        )

    @property
    def latest_rating(self) -> RatingSnapshot | None:
        current, _ = latest_two(self.rating_snapshots)
        return current

    def find_keyword(self, keyword_id: str) -> TrackedKeyword | None:
        for keyword in self.keywords:
            if keyword.id == keyword_id:
                return keyword
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "trackId": self.track_id,
            "trackName": self.track_name,
            "bundleId": self.bundle_id,
            "sellerName": self.seller_name,
            "artworkUrl": self.artwork_url,
            "primaryGenreName": self.primary_genre_name,
            "dateAdded": encode_datetime(self.date_added),
            "lastUpdated": encode_datetime(self.last_updated),
            "keywords": [k.to_dict() for k in self.keywords],
            "ratingSnapshots": [s.to_dict() for s in self.rating_snapshots],
        }

    @classmethod
    def from_dict(cls, data) -> "TrackedApp":
        data = _require_mapping(data, "app")
        track_id = _optional_int(data.get("trackId"))
        if not data.get("id") or track_id is None:
            raise CollectionDecodeError("app is missing its id or trackId")
        date_added = decode_datetime(data.get("dateAdded"))
        return cls(
            id=str(data["id"]),
            track_id=track_id,
            track_name=str(data.get("trackName", "")),
            bundle_id=str(data.get("bundleId", "")),
            seller_name=str(data.get("sellerName", "")),
            artwork_url=str(data.get("artworkUrl", "")),
            primary_genre_name=str(data.get("primaryGenreName", "")),
            date_added=date_added,
            last_updated=decode_datetime(data.get("lastUpdated"), default=date_added),
            keywords=tuple(
                TrackedKeyword.from_dict(k) for k in _list_field(data, "keywords")
            ),
            rating_snapshots=tuple(
                RatingSnapshot.from_dict(s) for s in _list_field(data, "ratingSnapshots")
            ),
        )


def encode_apps(apps) -> list[dict]:
    return [app.to_dict() for app in apps]


def decode_apps(payload) -> tuple:
    """Decode a list of app dicts.  Raises CollectionDecodeError on bad shape."""
    if payload is None:
        return ()
    if not isinstance(payload, list):
        raise CollectionDecodeError(
            f"collection must be a list, got {type(payload).__name__}"
        )
    return tuple(TrackedApp.from_dict(item) for item in payload)
