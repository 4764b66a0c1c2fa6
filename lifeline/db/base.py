from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Declarative base for every lifeline table.

    Identifiers are ``sqlalchemy.Uuid`` columns: native UUID on PostgreSQL,
    32-character hex on SQLite. Timestamps are naive UTC (see utils/clock.py).
    """
