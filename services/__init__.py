"""ALIGNWATCH computation services: geodesy, ephemeris, alignment search, event cache."""
