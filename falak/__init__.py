"""
Falak Engine.

Ephemeris acquisition, hour-bucketed position caching and planetary
strength scoring for spiritual-timing guidance features.
"""

__version__ = "1.0.0"
