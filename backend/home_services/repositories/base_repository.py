# backend/home_services/repositories/base_repository.py
"""
Base Repository Pattern for the booking and settlement ledger.

Provides the foundation for all repository classes with:
- Common lookup and create operations
- Type safety with generics
- Row locking helpers for dialects that support SELECT ... FOR UPDATE
- Transaction support (managed by services)

Repositories never commit. The owning service opens the unit of work and
decides whether it commits or rolls back.
"""

import logging
from typing import Any, Generic, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..database.session_utils import supports_row_locks

# Type variable for generic model support
T = TypeVar("T")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """
    Concrete base repository implementation with common data access patterns.

    Attributes:
        db: SQLAlchemy session
        model: SQLAlchemy model class
    """

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    def get_by_id(self, id: str) -> Optional[T]:
        """Retrieve an entity by its primary key."""
        try:
            return self.db.query(self.model).filter(self.model.id == id).first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting {self.model.__name__} by id {id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve {self.model.__name__}: {str(e)}")

    def get_for_update(self, id: str) -> Optional[T]:
        """
        Retrieve an entity and lock its row until the surrounding transaction ends.

        On dialects without row locks (SQLite) this degrades to a plain read, so
        status writes must still go through a compare-and-set.
        """
        try:
            query = self.db.query(self.model).filter(self.model.id == id)
            if supports_row_locks(self.db):
                query = query.with_for_update()
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking {self.model.__name__} {id}: {str(e)}")
            raise RepositoryException(f"Failed to lock {self.model.__name__}: {str(e)}")

    def create(self, **kwargs: Any) -> T:
        """
        Create a new entity.

        Note: Does NOT commit - transaction management is handled by service layer.
        Integrity errors propagate unchanged so the service can report a conflict.
        """
        try:
            entity = self.model(**kwargs)
            self.db.add(entity)
            self.db.flush()  # Get ID without committing
            return entity
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to create {self.model.__name__}: {str(e)}")

    def flush(self) -> None:
        """Flush pending ORM changes."""
        self.db.flush()

    def delete(self, entity: T) -> None:
        try:
            self.db.delete(entity)
            self.db.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Error deleting {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to delete {self.model.__name__}: {str(e)}")
