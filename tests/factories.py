"""Builders for domain values with fixed ids and timestamps."""

from datetime import datetime, timedelta, timezone

from rankkeeper.domain import KeywordRanking, RatingSnapshot, TrackedApp, TrackedKeyword

T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def at(minutes: float) -> datetime:
    return T0 + timedelta(minutes=minutes)


def ranking(id, rank, minutes=0, impressions=None):
    return KeywordRanking(id=id, rank=rank, timestamp=at(minutes), impressions=impressions)


def rating(id, value=4.5, count=100, minutes=0):
    return RatingSnapshot(id=id, rating=value, rating_count=count, timestamp=at(minutes))


def keyword(id, text="photo editor", country="us", rankings=(), popularity=50, difficulty=50):
    return TrackedKeyword(
        id=id,
        keyword=text,
        country_code=country,
        date_added=T0,
        popularity=popularity,
        difficulty=difficulty,
        rankings=tuple(rankings),
    )


def app(id, track_id, name="Snapshot", updated=0, keywords=(), snapshots=(), added=0):
    return TrackedApp(
        id=id,
        track_id=track_id,
        track_name=name,
        bundle_id=f"com.example.{track_id}",
        seller_name="Example Ltd",
        artwork_url="https://example.com/art.png",
        primary_genre_name="Photo & Video",
        date_added=at(added),
        last_updated=at(updated),
        keywords=tuple(keywords),
        rating_snapshots=tuple(snapshots),
    )


def catalog_entry(track_id=284882215, name="Snapshot", rating=4.6, count=12_345):
    return {
        "trackId": track_id,
        "trackName": name,
        "bundleId": f"com.example.{track_id}",
        "sellerName": "Example Ltd",
        "primaryGenreName": "Photo & Video",
        "artworkUrl100": "https://example.com/100.png",
        "artworkUrl512": "https://example.com/512.png",
        "averageUserRating": rating,
        "userRatingCount": count,
        "price": 0.0,
        "formattedPrice": "Free",
        "trackViewUrl": f"https://apps.apple.com/us/app/id{track_id}",
    }
