from datetime import datetime, timezone

import pytest

from rankkeeper.domain import (
    TrackedApp,
    TrackedKeyword,
    decode_apps,
    decode_datetime,
    encode_datetime,
    normalize_keyword,
)
from rankkeeper.exceptions import CollectionDecodeError
from rankkeeper.history import append, latest_two, union_by_id
from rankkeeper.services import DownloadEstimator, KeywordScorer

from .factories import T0, at, catalog_entry, keyword, ranking


def test_current_and_previous_rank_from_latest_two() -> None:
    kw = keyword("K1", rankings=[ranking("r1", 12, 1), ranking("r2", 8, 2), ranking("r3", 8, 3)])
    assert kw.current_rank == 8
    assert kw.previous_rank == 8
    assert kw.rank_change == 0


def test_derived_ranks_ignore_storage_order() -> None:
    kw = keyword("K1", rankings=[ranking("r3", 4, 3), ranking("r1", 20, 1), ranking("r2", 9, 2)])
    assert kw.current_rank == 4
    assert kw.previous_rank == 9
    assert kw.rank_change == 5
    assert [r.id for r in kw.sorted_rankings] == ["r1", "r2", "r3"]


def test_rank_change_needs_two_observations() -> None:
    assert keyword("K1").current_rank is None
    single = keyword("K1", rankings=[ranking("r1", 7, 1)])
    assert single.current_rank == 7
    assert single.previous_rank is None
    assert single.rank_change is None


def test_unranked_observation_is_current() -> None:
    kw = keyword("K1", rankings=[ranking("r1", 7, 1), ranking("r2", None, 2)])
    assert kw.current_rank is None
    assert kw.rank_change is None


def test_same_timestamp_ties_break_on_id() -> None:
    first, second = ranking("b", 1, 0), ranking("a", 2, 0)
    assert latest_two([first, second]) == (first, second)
    assert latest_two([second, first]) == (first, second)


@pytest.mark.parametrize("boundary", [0, 15, 30, 50, 70, 85, 95, 100])
def test_estimated_downloads_non_decreasing_at_boundaries(boundary) -> None:
    estimator = DownloadEstimator()
    below = estimator.monthly_downloads(max(0, boundary - 1))
    assert estimator.monthly_downloads(boundary) >= below


def test_estimated_downloads_over_full_range() -> None:
    estimator = DownloadEstimator()
    values = [estimator.monthly_downloads(p) for p in range(0, 101)]
    assert values == sorted(values)
    assert values[0] >= 1
    assert estimator.monthly_downloads(95) == int(1_000_000 * 0.42 * 0.05)


def test_keyword_scores_are_seeded_and_in_range() -> None:
    scorer = KeywordScorer()
    assert scorer.popularity("photo editor") == scorer.popularity("photo editor")
    for text in ["a", "photo editor", "calorie counter", "vpn"]:
        assert 20 <= scorer.popularity(text) <= 80
        assert 10 <= scorer.difficulty(text) <= 90


def test_normalize_keyword_trims_and_case_folds() -> None:
    assert normalize_keyword("MyApp ") == "myapp"
    assert normalize_keyword("  Straße") == "strasse"


def test_keyword_create_normalizes_and_scores() -> None:
    kw = TrackedKeyword.create("  Photo Editor ", "US", now=T0)
    assert kw.keyword == "photo editor"
    assert kw.country_code == "us"
    assert kw.popularity == KeywordScorer().popularity("photo editor")
    assert kw.matches("PHOTO EDITOR", "us")
    assert not kw.matches("photo editor", "gb")


def test_app_from_catalog_entry_records_first_rating() -> None:
    tracked = TrackedApp.from_catalog_entry(catalog_entry(), now=T0)
    assert tracked.track_id == 284882215
    assert tracked.artwork_url == "https://example.com/512.png"
    assert tracked.last_updated == T0
    assert len(tracked.rating_snapshots) == 1
    assert tracked.latest_rating.rating_count == 12_345


def test_app_from_catalog_entry_without_rating() -> None:
    entry = catalog_entry()
    entry["averageUserRating"] = None
    entry["artworkUrl512"] = None
    tracked = TrackedApp.from_catalog_entry(entry, now=T0)
    assert tracked.rating_snapshots == ()
    assert tracked.artwork_url == "https://example.com/100.png"


def test_app_dict_round_trip_keeps_history() -> None:
    tracked = TrackedApp.from_catalog_entry(catalog_entry(), now=T0)
    kw = keyword("K1", rankings=[ranking("r1", 3, 1, impressions=40)])
    tracked = TrackedApp(**{**tracked.__dict__, "keywords": (kw,)})
    assert TrackedApp.from_dict(tracked.to_dict()) == tracked


def test_decoding_tolerates_older_records() -> None:
    payload = [{
        "id": "A1",
        "trackId": 111,
        "trackName": "Old",
        "dateAdded": 700_000_000,
        "keywords": [{
            "id": "K1",
            "keyword": "Photo Editor",
            "countryCode": "US",
            "dateAdded": "2024-05-01T10:00:00Z",
            "rankings": [{"id": "r1", "rank": 4, "date": "2024-05-02T10:00:00"}],
        }],
    }]
    (tracked,) = decode_apps(payload)
    assert tracked.last_updated == tracked.date_added
    assert tracked.rating_snapshots == ()
    kw = tracked.keywords[0]
    assert kw.keyword == "photo editor"
    assert kw.country_code == "us"
    assert kw.popularity == KeywordScorer().popularity("photo editor")
    assert kw.rankings[0].timestamp == datetime(2024, 5, 2, 10, 0, tzinfo=timezone.utc)


def test_decoding_rejects_wrong_shapes() -> None:
    with pytest.raises(CollectionDecodeError):
        decode_apps({"id": "A1"})
    with pytest.raises(CollectionDecodeError):
        decode_apps([{"trackName": "no ids"}])
    assert decode_apps(None) == ()


def test_reference_date_numbers_decode() -> None:
    assert decode_datetime(0) == datetime(2001, 1, 1, tzinfo=timezone.utc)
    assert decode_datetime(86_400.5) == datetime(2001, 1, 2, 0, 0, 0, 500_000, tzinfo=timezone.utc)


def test_out_of_range_reference_date_numbers_fall_back() -> None:
    assert decode_datetime(1e300, default=T0) == T0
    assert decode_datetime(-1e12, default=T0) == T0
    assert decode_datetime(float("nan"), default=T0) == T0
    assert decode_datetime(float("inf"), default=T0) == T0


def test_datetime_encoding_is_utc_z() -> None:
    assert encode_datetime(at(0)) == "2025-01-01T12:00:00Z"
    assert decode_datetime(encode_datetime(at(3))) == at(3)
    assert decode_datetime("garbage", default=T0) == T0


def test_history_append_skips_known_ids() -> None:
    series = (ranking("r1", 5, 1),)
    assert append(series, ranking("r1", 9, 4)) == series
    assert len(append(series, ranking("r2", 9, 4))) == 2


def test_union_by_id_sorts_oldest_first() -> None:
    merged = union_by_id([ranking("r2", 3, 2)], [ranking("r1", 5, 1), ranking("r2", 3, 2)])
    assert [r.id for r in merged] == ["r1", "r2"]
