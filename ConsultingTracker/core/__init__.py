"""
Core package for ConsultingTracker providing the sync subsystem.

This package includes:

- :mod:`ConsultingTracker.core.models` – Record types, snapshots and timestamp helpers.
- :mod:`ConsultingTracker.core.database` – Local SQLite entity store.
- :mod:`ConsultingTracker.core.mapper` – Conversion between records and spreadsheet tables.
- :mod:`ConsultingTracker.core.auth` – Google OAuth2 authentication and credential management.
- :mod:`ConsultingTracker.core.service` – Google Sheets remote gateway and asynchronous call helpers.
- :mod:`ConsultingTracker.core.conflict` – Detection of remote changes made since the last sync.
- :mod:`ConsultingTracker.core.merge` – Per-record last-write-wins merge.
- :mod:`ConsultingTracker.core.sync` – Debounced, conflict-aware push and pull orchestration.
"""
