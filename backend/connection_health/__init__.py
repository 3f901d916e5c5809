"""
OAuth connection health engine.

Keeps per-user, per-platform OAuth credentials truthful across two
independent user-record stores: token classification, single-flight
refresh, health/repair/migration reporting.
"""

__version__ = "0.1.0"
