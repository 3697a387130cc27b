"""
Declarative base shared by every catalog, recipe and ledger table.

Each row gets an integer id, a UUID that survives export/import, and
created_at/updated_at stamps. ``to_dict`` renders Numeric columns as
strings so money and quantities stay exact when handed to the CLI or JSON.
"""

import uuid as uuid_lib
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import declarative_base

from src.utils.datetime_utils import utc_now

Base = declarative_base()


class BaseModel(Base):
    """
    Abstract base model with the id, uuid and timestamp columns.

    Services return ``to_dict()`` snapshots rather than live instances, and
    apply edits through ``update_from_dict()`` with their own list of
    editable fields.
    """

    __abstract__ = True

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Stored as string for SQLite
    uuid = Column(
        String(36), unique=True, nullable=False, default=lambda: str(uuid_lib.uuid4()), index=True
    )

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    def to_dict(self, include_relationships: bool = False) -> Dict[str, Any]:
        """
        Convert model instance to dictionary.

        Datetimes become ISO strings and Decimals become strings, e.g. a
        material's cost_per_unit of Decimal('0.150000') is returned as
        '0.150000'.

        Args:
            include_relationships: If True, include related objects (default: False)

        Returns:
            Dictionary representation of the model
        """
        result = {}

        for column in self.__table__.columns:
            value = getattr(self, column.name)

            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, Decimal):
                value = str(value)

            result[column.name] = value

        if include_relationships:
            for relationship in self.__mapper__.relationships:
                rel_value = getattr(self, relationship.key)

                if rel_value is None:
                    result[relationship.key] = None
                elif isinstance(rel_value, list):
                    result[relationship.key] = [item.to_dict() for item in rel_value]
                else:
                    result[relationship.key] = rel_value.to_dict()

        return result

    def update_from_dict(self, data: Dict[str, Any], fields: Iterable[str]) -> List[str]:
        """
        Copy the editable fields present in ``data`` onto this row.

        Keys outside ``fields`` are left alone, so a service can pass a
        caller's dict straight through after validating it.

        Args:
            data: New values keyed by column name
            fields: Column names the caller is allowed to change

        Returns:
            Names of the columns that were assigned, in ``fields`` order
        """
        changed = []
        for name in fields:
            if name in data and name in self.__table__.columns:
                setattr(self, name, data[name])
                changed.append(name)

        if changed:
            self.updated_at = utc_now()
        return changed

    def __repr__(self) -> str:
        attrs = []
        if self.id is not None:
            attrs.append(f"id={self.id}")
        name = getattr(self, "name", None)
        if name is not None:
            attrs.append(f"name='{name}'")
        return f"{self.__class__.__name__}({', '.join(attrs)})"
