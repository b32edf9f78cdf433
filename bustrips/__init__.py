"""
Trip resolution and windowing for the bus passenger tracking service

Modules:
- trip_ids.py: trip reference encoding/decoding
- regime.py: live vs historical date classification
- providers.py: schedule, schedule history and event stores
- clustering.py: derived trips from passenger event timestamps
- resolver.py: the single trip resolver used by every read path
- windows.py: event attribution by trip window
"""
