"""
Append-only observation series.

Rankings and rating snapshots are stored as tuples of immutable
observations keyed by ``id``.  Nothing here assumes the tuple is ordered:
readers sort by timestamp, with the id as a tie-break so two observations
recorded in the same instant still sort the same way everywhere.
"""


def _order_key(observation):
    return (observation.timestamp, observation.id)


def sorted_by_timestamp(observations, newest_first: bool = False) -> list:
    return sorted(observations, key=_order_key, reverse=newest_first)


def latest_two(observations):
    """Return ``(most_recent, second_most_recent)``; either may be None."""
    ordered = sorted_by_timestamp(observations, newest_first=True)
    current = ordered[0] if ordered else None
    previous = ordered[1] if len(ordered) > 1 else None
    return current, previous


def append(observations: tuple, observation) -> tuple:
    """Append one observation, ignoring it if its id is already present."""
    if any(existing.id == observation.id for existing in observations):
        return observations
    return observations + (observation,)


def union_by_id(left, right) -> tuple:
    """
    Lossless set union of two series, stored oldest first.

    Ids are generated once and never reused, so two observations with the
    same id are the same observation; the left copy is kept.
    """
    by_id = {}
    for observation in left:
        by_id.setdefault(observation.id, observation)
    for observation in right:
        by_id.setdefault(observation.id, observation)
    return tuple(sorted_by_timestamp(by_id.values()))
