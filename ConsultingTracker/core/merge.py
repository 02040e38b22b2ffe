"""Per-record last-write-wins merge of a local and a remote snapshot.

Records are compared whole by their ``updated_at`` timestamp; fields are never merged
individually and invoice id lists are never spliced. The merge is a union on ids, so it
never deletes: a record hard-deleted on one device comes back from the other device's
copy. There are no tombstones, and this is a known gap.
"""
import logging
from typing import Dict, List, TypeVar

from .models import Collection, Snapshot, parse_timestamp

R = TypeVar('R')


def merge_records(local: List[R], remote: List[R]) -> List[R]:
    """Merge two versions of one collection.

    The result is seeded from ``remote`` and every local record is laid over it. A local
    record replaces the remote one when its ``updated_at`` is greater than or equal to
    the remote ``updated_at``; ties go to local, the device doing the merge.

    Args:
        local: Records of this device.
        remote: Records read back from the remote document.

    Returns:
        list: Remote order first, followed by records that only exist locally.
    """
    merged: Dict[str, R] = {r.id: r for r in remote}
    for record in local:
        other = merged.get(record.id)
        if other is None or parse_timestamp(record.updated_at) >= parse_timestamp(other.updated_at):
            merged[record.id] = record
    return list(merged.values())


def merge(local: Snapshot, remote: Snapshot) -> Snapshot:
    """Reconcile a local and a remote snapshot into one.

    Each collection is merged independently with :func:`merge_records`. The profile is
    excluded: the merged snapshot always carries the local profile.

    Args:
        local: The snapshot of this device's entity store.
        remote: The snapshot read from the remote document.

    Returns:
        Snapshot: The reconciled snapshot.
    """
    result = Snapshot(profile=local.profile)
    for collection in Collection:
        records = merge_records(local.get(collection), remote.get(collection))
        setattr(result, collection.value, records)

    logging.debug(
        f'Merged snapshot: local={local.counts()}, remote={remote.counts()}, merged={result.counts()}'
    )
    return result
