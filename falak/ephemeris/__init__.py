"""
Celestial body model for the Falak Engine.

Planet identifiers, Horizons body codes and the zodiac partition of
ecliptic longitude.
"""
