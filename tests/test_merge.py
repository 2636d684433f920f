import pytest

from rankkeeper.merge import (
    app_tombstone_key,
    apply_tombstones,
    merge_app,
    merge_collections,
    merge_tombstones,
    prune_tombstones,
)

from .factories import T0, app, at, keyword, ranking, rating


def _ids(apps):
    """Every identifier in a collection, grouped by level."""
    return {
        "apps": {a.id for a in apps},
        "keywords": {k.id for a in apps for k in a.keywords},
        "rankings": {r.id for a in apps for k in a.keywords for r in k.rankings},
        "snapshots": {s.id for a in apps for s in a.rating_snapshots},
    }


def _side_a():
    return (
        app("A1", 111, name="Local Name", updated=10, keywords=[
            keyword("K1", "photo editor", rankings=[ranking("r1", 5, 1)]),
            keyword("K2", "collage", rankings=[ranking("r3", 40, 2)]),
        ], snapshots=[rating("s1", 4.4, 90, 1)]),
        app("A2", 222, name="Only Local"),
    )


def _side_b():
    return (
        app("B1", 111, name="Remote Name", updated=5, keywords=[
            keyword("K1", "photo editor", rankings=[ranking("r2", 3, 2)]),
            keyword("K3", "filters", rankings=[ranking("r4", 17, 3)]),
        ], snapshots=[rating("s2", 4.5, 95, 2)]),
        app("B3", 333, name="Only Remote"),
    )


def test_empty_remote_returns_local_unchanged() -> None:
    local = (app("A1", 111, updated=0),)
    assert merge_collections(local, ()) == local


def test_empty_local_returns_remote() -> None:
    remote = _side_b()
    assert merge_collections((), remote) == remote


def test_both_empty() -> None:
    assert merge_collections((), ()) == ()
    assert merge_collections(None, None) == ()


def test_merge_is_idempotent() -> None:
    merged = merge_collections(_side_a(), _side_b())
    assert merge_collections(merged, merged) == merged


def test_membership_is_commutative() -> None:
    assert _ids(merge_collections(_side_a(), _side_b())) == _ids(
        merge_collections(_side_b(), _side_a())
    )


def _pair(local_updated, remote_updated):
    local = (
        app("A1", 111, name="Local", updated=local_updated, added=1, keywords=[
            keyword("K1", rankings=[ranking("r1", 5, 1)]),
        ], snapshots=[rating("s1", 4.4, 90, 1)]),
    )
    remote = (
        app("B1", 111, name="Remote", updated=remote_updated, added=0, keywords=[
            keyword("K1", rankings=[ranking("r2", 3, 2)]),
            keyword("K3", "filters"),
        ], snapshots=[rating("s2", 4.5, 95, 2)]),
        app("B3", 333),
    )
    return local, remote


@pytest.mark.parametrize(
    "local_updated, remote_updated",
    [(10, 5), (5, 20), (7, 7)],
    ids=["local-newer", "remote-newer", "tie"],
)
def test_merge_laws_hold_whichever_side_wins(local_updated, remote_updated) -> None:
    local, remote = _pair(local_updated, remote_updated)
    merged = merge_collections(local, remote)

    assert merge_collections(merged, merged) == merged
    assert merge_collections(merged, remote) == merged
    assert _ids(merged) == _ids(merge_collections(remote, local))
    assert _ids(merged)["apps"] == {"B1", "B3"}


def test_union_is_lossless_and_without_duplicates() -> None:
    merged = merge_collections(_side_a(), _side_b())
    ranking_ids = [r.id for a in merged for k in a.keywords for r in k.rankings]
    assert sorted(ranking_ids) == ["r1", "r2", "r3", "r4"]
    snapshot_ids = [s.id for a in merged for s in a.rating_snapshots]
    assert sorted(snapshot_ids) == ["s1", "s2"]


def test_shared_keyword_rankings_are_unioned() -> None:
    merged = merge_collections(_side_a(), _side_b())
    k1 = next(a for a in merged if a.track_id == 111).find_keyword("K1")
    assert [r.id for r in k1.rankings] == ["r1", "r2"]
    assert k1.current_rank == 3
    assert k1.previous_rank == 5


def test_newer_copy_supplies_scalars() -> None:
    merged = merge_collections(_side_a(), _side_b())
    x = next(a for a in merged if a.track_id == 111)
    assert x.track_name == "Local Name"

    newer_remote = (app("B1", 111, name="Renamed", updated=20),)
    x = merge_collections(_side_a(), newer_remote)[0]
    assert x.track_name == "Renamed"
    assert x.last_updated == at(20)


def test_tie_on_last_updated_keeps_local_scalars() -> None:
    local = app("A1", 111, name="Local", updated=7)
    remote = app("B1", 111, name="Remote", updated=7)
    assert merge_app(local, remote).track_name == "Local"


def test_first_added_copy_supplies_identity() -> None:
    local = app("A1", 111, name="Local", updated=1, added=0)
    remote = app("B1", 111, name="Remote", updated=9, added=5)
    for merged in (merge_app(local, remote), merge_app(remote, local)):
        assert merged.id == "A1"
        assert merged.date_added == T0
        assert merged.track_name == "Remote"


def test_same_app_added_on_two_devices_converges_on_one_id() -> None:
    local = (app("B1", 111, updated=10, added=3),)
    remote = (app("A1", 111, updated=5, added=3),)
    forward = merge_collections(local, remote)
    backward = merge_collections(remote, local)
    assert _ids(forward) == _ids(backward) == {
        "apps": {"A1"}, "keywords": set(), "rankings": set(), "snapshots": set(),
    }


def test_child_union_does_not_depend_on_scalar_winner() -> None:
    local = app("A1", 111, updated=1, keywords=[keyword("K1")])
    remote = app("B1", 111, updated=9, keywords=[keyword("K2", "collage")])
    merged = merge_app(local, remote)
    assert {k.id for k in merged.keywords} == {"K1", "K2"}


def test_order_follows_local_then_remote_only() -> None:
    merged = merge_collections(_side_a(), _side_b())
    assert [a.track_id for a in merged] == [111, 222, 333]


def test_one_sided_apps_are_carried_unchanged() -> None:
    a, b = _side_a(), _side_b()
    merged = merge_collections(a, b)
    assert merged[1] is a[1]
    assert merged[2] is b[1]


def test_same_text_keywords_with_different_ids_are_kept_apart() -> None:
    local = (app("A1", 111, keywords=[keyword("K1", "photo editor")]),)
    remote = (app("B1", 111, keywords=[keyword("K9", "photo editor")]),)
    merged = merge_collections(local, remote)
    texts = [k.keyword for k in merged[0].keywords]
    assert texts == ["photo editor", "photo editor"]


def test_merge_does_not_mutate_inputs() -> None:
    a, b = _side_a(), _side_b()
    before = (a, b)
    merge_collections(a, b)
    assert (a, b) == before


def test_merge_tombstones_keeps_latest_removal() -> None:
    merged = merge_tombstones({"K1": at(5), "A2": at(1)}, {"K1": at(3), "B3": at(9)})
    assert merged == {"K1": at(5), "A2": at(1), "B3": at(9)}


def test_apply_tombstones_drops_apps_and_keywords() -> None:
    merged = merge_collections(_side_a(), _side_b())
    pruned = apply_tombstones(merged, {"A2": at(1), "K2": at(2)})
    assert [a.track_id for a in pruned] == [111, 333]
    assert {k.id for k in pruned[0].keywords} == {"K1", "K3"}


def test_apply_tombstones_without_tombstones_is_identity() -> None:
    merged = merge_collections(_side_a(), _side_b())
    assert apply_tombstones(merged, {}) == merged


def test_catalog_id_tombstone_removes_every_earlier_copy() -> None:
    apps = (
        app("A1", 111, added=0),
        app("B1", 111, added=2),
        app("C1", 222, added=0),
    )
    kept = apply_tombstones(apps, {app_tombstone_key(111): at(2)})
    assert [a.id for a in kept] == ["C1"]


def test_catalog_id_tombstone_spares_a_later_re_add() -> None:
    readded = app("A9", 111, added=10)
    assert apply_tombstones((readded,), {app_tombstone_key(111): at(5)}) == (readded,)


def test_prune_tombstones_drops_old_removals() -> None:
    assert prune_tombstones({"K1": at(1), "K2": at(10)}, cutoff=at(5)) == {"K2": at(10)}
