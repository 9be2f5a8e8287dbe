"""
Base repository with common CRUD operations.
"""

from typing import Any, Generic, Optional, Sequence, Type, TypeVar

from sqlalchemy import ColumnElement, Table
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from chatrelay.models.db import Base

ModelType = TypeVar("ModelType", bound=Base)


def build_upsert(
    session: Session,
    table: Table,
    values: dict[str, Any],
    index_elements: Sequence[str],
    update_columns: Sequence[str],
    where: Optional[ColumnElement[bool]] = None,
):
    """
    Build an INSERT ... ON CONFLICT DO UPDATE statement for the session's dialect.

    Args:
        session: Session whose bind decides the dialect
        table: Target table
        values: Column values for the insert
        index_elements: Columns of the unique constraint arbitrating the conflict
        update_columns: Columns to overwrite from the proposed row on conflict
        where: Optional condition on the existing row; when false the conflicting
            row is left untouched and no row is affected

    Raises:
        NotImplementedError: For dialects without native upsert
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(table).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite_insert(table).values(**values)
    else:
        raise NotImplementedError(f"Upsert not supported for dialect {dialect}")

    return stmt.on_conflict_do_update(
        index_elements=list(index_elements),
        set_={column: stmt.excluded[column] for column in update_columns},
        where=where,
    )


class BaseRepository(Generic[ModelType]):
    """Generic repository providing CRUD operations for a model."""

    def __init__(self, model: Type[ModelType], session: Session):
        self.model = model
        self.session = session

    def create(self, **kwargs: Any) -> ModelType:
        """
        Create a new record.

        Args:
            **kwargs: Model field values

        Returns:
            Created model instance
        """
        instance = self.model(**kwargs)
        self.session.add(instance)
        self.session.flush()
        self.session.refresh(instance)
        return instance

    def get(self, id: Any) -> Optional[ModelType]:
        """
        Get a record by primary key.

        Args:
            id: Primary key value

        Returns:
            Model instance or None
        """
        return self.session.get(self.model, id)

    def _upsert(
        self,
        values: dict[str, Any],
        index_elements: Sequence[str],
        update_columns: Sequence[str],
    ) -> None:
        """
        Insert a row or update it in place on a unique-key conflict.

        Issues a single INSERT ... ON CONFLICT DO UPDATE statement so that
        concurrent writers to the same key cannot lose each other's update.
        Supported on PostgreSQL and SQLite.

        Args:
            values: Column values for the insert
            index_elements: Columns of the unique constraint arbitrating the conflict
            update_columns: Columns to overwrite from the proposed row on conflict
        """
        stmt = build_upsert(
            self.session,
            self.model.__table__,
            values,
            index_elements,
            update_columns,
        )
        self.session.execute(stmt)
        self.session.flush()
