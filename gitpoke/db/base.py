"""SQLAlchemy Declarative Base — metadata shared by the registered-user tables.

Invariants:
    - Constraint and index names are deterministic (naming convention below), so the
      externally managed production schema and create_schema() agree on them

Design Decisions:
    - Base lives apart from models: models/ and infrastructure/database.py both import it
      without importing each other
"""

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)
