# backend/home_services/repositories/provider_repository.py
"""Data access for service providers and their rating aggregate."""

import logging
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.provider import ServiceProvider
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ProviderRepository(BaseRepository[ServiceProvider]):
    def __init__(self, db: Session):
        super().__init__(db, ServiceProvider)

    def list_active_ids(self) -> List[str]:
        """Ids of providers eligible for scheduled settlement, oldest first."""
        try:
            rows = (
                self.db.query(ServiceProvider.id)
                .filter(ServiceProvider.is_active.is_(True))
                .order_by(ServiceProvider.created_at.asc())
                .all()
            )
            return [row[0] for row in rows]
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing active providers: {e}")
            raise RepositoryException(f"Failed to list active providers: {e}")
