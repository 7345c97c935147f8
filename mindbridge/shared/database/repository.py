"""Base repository pattern for the pipeline's three stores.

Every repository runs against PostgreSQL when a ConnectionManager is
injected and against an in-process store otherwise (development and
tests). Subclasses supply row mapping and the in-memory behaviour.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Generic, List, Optional, Sequence, TypeVar

from .connection import ConnectionManager

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class NotFoundError(RepositoryError):
    """Entity not found in database."""
    pass


class DuplicateError(RepositoryError):
    """Duplicate entity already exists."""
    pass


class BaseRepository(ABC, Generic[T]):
    """Abstract base repository with shared query helpers.

    Subclasses implement entity-specific logic while inheriting:
    - Backend selection (PostgreSQL or in-memory)
    - Error wrapping into RepositoryError
    - Logging patterns
    """

    def __init__(
        self,
        connection_manager: Optional[ConnectionManager],
        table_name: str,
    ):
        """Initialize repository.

        Args:
            connection_manager: Database connection manager, or None for
                the in-memory backend
            table_name: Name of the database table
        """
        self.connection_manager = connection_manager
        self.table_name = table_name

        logger.info(
            "REPOSITORY_INITIALIZED",
            extra={
                "table_name": table_name,
                "backend": "postgresql" if connection_manager else "memory",
            }
        )

    @property
    def uses_database(self) -> bool:
        return self.connection_manager is not None

    @abstractmethod
    def _row_to_entity(self, row: tuple) -> T:
        """Convert database row to entity."""
        pass

    def _fetch_one(self, query: str, params: Sequence[Any]) -> Optional[T]:
        try:
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    row = cur.fetchone()
                    conn.commit()
        except Exception as e:
            logger.error(
                "REPOSITORY_QUERY_FAILED",
                extra={"table_name": self.table_name, "error": str(e)}
            )
            raise RepositoryError(f"Query on {self.table_name} failed: {e}") from e

        return self._row_to_entity(row) if row is not None else None

    def _fetch_all(self, query: str, params: Sequence[Any]) -> List[T]:
        try:
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    rows = cur.fetchall()
        except Exception as e:
            logger.error(
                "REPOSITORY_QUERY_FAILED",
                extra={"table_name": self.table_name, "error": str(e)}
            )
            raise RepositoryError(f"Query on {self.table_name} failed: {e}") from e

        return [self._row_to_entity(row) for row in rows]

    def _count(self, where: str = "", params: Sequence[Any] = ()) -> int:
        """Count rows, optionally filtered by a WHERE clause."""
        query = f"SELECT COUNT(*) FROM {self.table_name}"
        if where:
            query += f" WHERE {where}"

        try:
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    row = cur.fetchone()
        except Exception as e:
            raise RepositoryError(f"Count on {self.table_name} failed: {e}") from e

        return row[0] if row else 0
