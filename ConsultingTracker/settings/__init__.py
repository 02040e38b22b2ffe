"""
Settings package: configuration API.

This package provides:

- :mod:`ConsultingTracker.settings.lib` – Core settings management, app-data paths and schema validation.
"""
