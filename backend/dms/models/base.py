"""Declarative base shared by every DMS table.

``scripts/create_schema.py`` and the test fixtures build the schema from this
metadata.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
