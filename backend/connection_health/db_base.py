"""
SQLAlchemy declarative bases for the two user-record stores.

The primary and secondary stores are independent databases, so each
gets its own Base (and its own metadata). This module must not import
from models or repositories to avoid circular dependencies.
"""

from sqlalchemy.orm import declarative_base

# Nested-map schema (accounts JSON per user)
PrimaryBase = declarative_base()

# Flat-field schema (one column per platform field)
SecondaryBase = declarative_base()
