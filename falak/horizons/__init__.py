"""
JPL Horizons acquisition for the Falak Engine.

Fetches hour-window observer ephemerides over HTTP with bounded retries and
parses the marker-delimited CSV payload into positions.
"""
