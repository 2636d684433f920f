"""
Merge engine: reconcile two copies of the tracked-app collection.

``merge_collections(local, remote)`` is a pure function.  It never
mutates its inputs and never raises; given the same inputs it returns the
same output, and merging a result with itself returns it unchanged.

Levels:
  - Apps are unioned by catalog id (``track_id``).  When both sides have
    the app, the copy with the strictly newer ``last_updated`` supplies
    the scalar fields; on a tie the local copy does.  The merged app keeps
    the id and ``date_added`` of whichever copy was added first, so two
    devices that added the same app converge on one id.
  - Keywords are unioned by local id.  A keyword on both sides keeps the
    scalar fields of the copy that belongs to the base app, with its
    rankings recomputed as a union.
  - Rankings and rating snapshots are unioned by observation id and
    stored oldest first.

Two keywords with the same (text, country) but different ids are *not*
collapsed; they stay as separate entries.
"""

import logging
from dataclasses import replace

from .history import union_by_id

logger = logging.getLogger(__name__)


def _index(items, key) -> dict:
    """Explicit id → entity map; the first occurrence of an id wins."""
    mapping = {}
    for item in items:
        mapping.setdefault(key(item), item)
    return mapping


def _ordered_union(base_items, other_items, key) -> list:
    """Ids in base order, then ids only the other side has, in its order."""
    order = list(_index(base_items, key))
    seen = set(order)
    for item in other_items:
        item_key = key(item)
        if item_key not in seen:
            seen.add(item_key)
            order.append(item_key)
    return order


def merge_keyword(base, other):
    """Merge two copies of one keyword; ``base`` supplies scalar fields."""
    return replace(base, rankings=union_by_id(base.rankings, other.rankings))


def merge_keywords(base_keywords, other_keywords) -> tuple:
    base_by_id = _index(base_keywords, lambda k: k.id)
    other_by_id = _index(other_keywords, lambda k: k.id)

    merged = []
    for keyword_id in _ordered_union(base_keywords, other_keywords, lambda k: k.id):
        base = base_by_id.get(keyword_id)
        other = other_by_id.get(keyword_id)
        if base is not None and other is not None:
            merged.append(merge_keyword(base, other))
        else:
            merged.append(base if base is not None else other)
    return tuple(merged)


def merge_app(local, remote):
    """
    Merge two copies of one app (same catalog id).

    Scalar selection and child merging are independent: the newer copy
    supplies name, artwork and the rest, while keywords and rating
    snapshots are always unioned from both.  The id and creation date are
    identity, not scalars: they come from the copy added first (lowest id
    on a tie), which gives the same answer whichever side is local.
    """
    if remote.last_updated > local.last_updated:
        base, other = remote, local
    else:
        base, other = local, remote
    identity = min(local, remote, key=lambda a: (a.date_added, a.id))

    return replace(
        base,
        id=identity.id,
        date_added=identity.date_added,
        keywords=merge_keywords(base.keywords, other.keywords),
        rating_snapshots=union_by_id(base.rating_snapshots, other.rating_snapshots),
    )


def merge_collections(local, remote) -> tuple:
    """
    Merge the local and remote collections into one.

    An app present on one side only is carried through unchanged.  Order
    follows the local collection, then apps only the remote has.
    """
    local = tuple(local or ())
    remote = tuple(remote or ())
    if not remote:
        return local
    if not local:
        return remote

    local_by_track = _index(local, lambda a: a.track_id)
    remote_by_track = _index(remote, lambda a: a.track_id)

    merged = []
    for track_id in _ordered_union(local, remote, lambda a: a.track_id):
        left = local_by_track.get(track_id)
        right = remote_by_track.get(track_id)
        if left is not None and right is not None:
            merged.append(merge_app(left, right))
        else:
            merged.append(left if left is not None else right)

    logger.debug(
        f"Merged {len(local)} local and {len(remote)} remote apps into {len(merged)}."
    )
    return tuple(merged)


# --------------------------------------------------------------------------- #
# Removal tombstones
# --------------------------------------------------------------------------- #


def app_tombstone_key(track_id) -> str:
    """Tombstone key that removes an app by catalog id, whatever its local id."""
    return f"track:{track_id}"


def merge_tombstones(left: dict, right: dict) -> dict:
    """
    Union two ``key → removed_at`` maps, keeping the latest removal.

    A catalog-id key removes every copy added up to its time, so the most
    recent removal is the one that counts.
    """
    merged = dict(left or {})
    for key, removed_at in (right or {}).items():
        current = merged.get(key)
        if current is None or removed_at > current:
            merged[key] = removed_at
    return merged


def prune_tombstones(tombstones: dict, cutoff) -> dict:
    """Drop removals older than ``cutoff``."""
    return {key: removed_at for key, removed_at in tombstones.items() if removed_at >= cutoff}


def apply_tombstones(apps, tombstones: dict) -> tuple:
    """
    Drop removed apps and keywords.

    An app goes when its id is tombstoned, or when its catalog id was
    removed at or after the time it was added (a later re-add survives).
    Keywords go by id.  Apply to each side before merging and to the
    result after; the union itself stays a pure union.
    """
    if not tombstones:
        return tuple(apps)

    kept = []
    for app in apps:
        if app.id in tombstones:
            continue
        removed_at = tombstones.get(app_tombstone_key(app.track_id))
        if removed_at is not None and app.date_added <= removed_at:
            continue
        keywords = tuple(k for k in app.keywords if k.id not in tombstones)
        if len(keywords) != len(app.keywords):
            app = replace(app, keywords=keywords)
        kept.append(app)
    return tuple(kept)
