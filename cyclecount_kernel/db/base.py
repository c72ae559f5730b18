"""
Module: cyclecount_kernel.db.base
Responsibility: Declarative base for all SQLAlchemy ORM models.  Provides the
    UUID primary key convention, the UTC datetime column type and the type
    annotation map that keeps column types consistent across the schema.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  ALL model files import from here.  This module MUST NOT import
    from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - UUID primary keys: every model inherits a uuid4-generated primary key.
    - Quantity precision: Decimal maps to ExactDecimal, NUMERIC(18, 4).
      Quantities and unit costs are never stored as float, on SQLite
      included.
    - Timezone-aware timestamps: UTCDateTime normalizes to UTC on write and
      re-attaches UTC on read, so SQLite (which drops tzinfo) round-trips
      the same aware values as PostgreSQL.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Context, Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import DateTime, Integer, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """
    UUID type stored as String(36) for cross-database portability.

    Guarantees:
        - process_bind_param: UUID -> str on INSERT/UPDATE.
        - process_result_value: str -> UUID on SELECT.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(str(value))
        return None


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime stored in UTC.

    Contract:
        Rejects naive datetimes on bind.  Values loaded without tzinfo
        (SQLite) are interpreted as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


QUANTITY_PRECISION = 18
QUANTITY_SCALE = 4
QUANTITY_INTEGER_DIGITS = QUANTITY_PRECISION - QUANTITY_SCALE


class ExactDecimal(TypeDecorator):
    """
    Fixed-point Decimal stored without loss on every backend.

    PostgreSQL keeps NUMERIC(precision, scale) natively.  pysqlite binds
    Decimal as float, so on SQLite the quantized value is stored as text
    and parsed back on load.

    Guarantees:
        - process_bind_param: rounds half-up to ``scale`` places and raises
          ValueError when the integer part exceeds ``precision - scale``
          digits, instead of storing a truncated or float-rounded value.
        - process_result_value: always returns Decimal.
    """

    impl = Numeric
    cache_ok = True

    def __init__(self, precision: int = QUANTITY_PRECISION, scale: int = QUANTITY_SCALE):
        super().__init__(precision, scale)
        self.precision = precision
        self.scale = scale

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(self.precision + 2))
        return dialect.type_descriptor(Numeric(self.precision, self.scale))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        integer_digits = self.precision - self.scale
        if value and value.adjusted() < integer_digits:
            value = value.quantize(
                Decimal(1).scaleb(-self.scale),
                rounding=ROUND_HALF_UP,
                context=Context(prec=self.precision + 1),
            )
        if value and value.adjusted() >= integer_digits:
            raise ValueError(
                f"{value} exceeds NUMERIC({self.precision}, {self.scale})"
            )
        if dialect.name == "sqlite":
            return str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(str(value))


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - Decimal maps to ExactDecimal (NUMERIC(18, 4)).
        - datetime maps to UTCDateTime.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: ExactDecimal(),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: Integer,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


# Re-export UUID for convenience
UUID = PyUUID
