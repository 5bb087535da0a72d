"""Strength, day-ruler and lunar scoring over planet positions."""
