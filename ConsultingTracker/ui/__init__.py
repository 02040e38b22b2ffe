"""
UI package: application-wide signals and actions.

This package provides:

- :mod:`ConsultingTracker.ui.actions` – Application-wide Qt signals and utility slots.
"""
