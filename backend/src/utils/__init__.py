"""
Utility modules for the booking engine.

Pure helpers shared across services: time-zone math, interval arithmetic and
request inspection.
"""
