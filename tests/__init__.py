"""Test suite for ConsultingTracker.

Qt test mode is switched on before any package module is imported, so the settings
created at import time live under the Qt test location instead of the real app data.
"""
from PySide6 import QtCore

QtCore.QStandardPaths.setTestModeEnabled(True)
