"""Custom column types shared by the models."""

from sqlalchemy import String
from sqlalchemy.types import TypeDecorator


class Uint256(TypeDecorator):
    """Unsigned 256-bit integer stored as a decimal string.

    Wei amounts overflow BIGINT, and SQLite has no arbitrary precision numeric,
    so values travel as text and come back as Python ints.
    """

    impl = String(78)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = int(value)
        if value < 0:
            raise ValueError("Uint256 cannot store negative values")
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)
