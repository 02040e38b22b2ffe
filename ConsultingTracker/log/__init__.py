"""
Logging subsystem for application and sync logging.

Modules:

- :mod:`ConsultingTracker.log.log` – Root logger setup, Qt message routing and the in-memory log tank.
"""
