"""
ConsultingTracker: local-first consulting records with a Google Sheets backup.

This package provides:

- :mod:`ConsultingTracker.core` – The entity store, the remote mapper and gateway, conflict detection, merging and the sync service.
- :mod:`ConsultingTracker.settings` – Settings management, app-data paths and schema validation.
- :mod:`ConsultingTracker.status` – Status codes and the exceptions raised across the package.
- :mod:`ConsultingTracker.log` – Logging setup and the in-memory log tank.
- :mod:`ConsultingTracker.ui` – Application-wide signals.

Use :func:`ConsultingTracker.app.exec_` to run a sync command.
"""

import sys

# Fail on Python < 3.11
if not (sys.version_info.major == 3 and sys.version_info.minor >= 11):
    raise RuntimeError('ConsultingTracker requires Python 3.11 or higher.')

__version__ = '0.1.0'
__author__ = 'ConsultingTracker contributors'
__license__ = 'GPL-3.0'
__copyright__ = 'Copyright (C) 2026 ConsultingTracker contributors'
__description__ = 'ConsultingTracker: local-first consulting records backed up to Google Sheets.'

from .log import log

log.setup_logging()
