"""ORM Models — SQLAlchemy declarative models for persisted entities.

Invariants:
    - All models inherit from Base (db/base.py)
    - Only registered users are persisted; activity state and relations are always derived

Design Decisions:
    - All models imported here so Base.metadata is complete before create_all runs
"""

from gitpoke.models.user import User  # noqa: F401
