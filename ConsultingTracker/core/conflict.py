"""Detect whether the remote document changed since this device last synced."""
import dataclasses
import logging
from typing import Any, Optional

from .models import Snapshot, parse_timestamp


@dataclasses.dataclass(frozen=True)
class ConflictResult:
    """Outcome of a conflict check.

    ``remote_snapshot`` is only populated when ``has_conflict`` is set.
    """
    has_conflict: bool
    remote_snapshot: Optional[Snapshot] = None


def check_for_conflict(gateway: Any, document_id: str, last_sync: Optional[str]) -> ConflictResult:
    """Compare the local last-sync time against the remote ``lastModified`` marker.

    Read failures are not caught here. They propagate to the caller, which must fail the
    push instead of overwriting a document it could not inspect.

    Args:
        gateway: The remote gateway.
        document_id: The remote document to check.
        last_sync: This device's last successful sync timestamp, if any.

    Returns:
        ConflictResult: Whether another device pushed since ``last_sync``, with the full
        remote snapshot when it did.
    """
    if not last_sync:
        logging.debug('No local sync timestamp recorded; first sync, nothing to compare against.')
        return ConflictResult(False)

    last_modified = gateway.read_metadata(document_id)
    if not last_modified:
        logging.info('Remote document has no lastModified marker; treating it as a legacy document.')
        return ConflictResult(False)

    if parse_timestamp(last_modified) > parse_timestamp(last_sync):
        logging.info(f'Remote changed since last sync (remote={last_modified}, local={last_sync}).')
        return ConflictResult(True, gateway.pull_snapshot(document_id)[0])

    logging.debug(f'Remote unchanged since last sync (remote={last_modified}, local={last_sync}).')
    return ConflictResult(False)
