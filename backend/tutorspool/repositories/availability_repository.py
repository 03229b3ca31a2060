"""Read access to tutors' recurring weekly availability."""

import logging
from typing import List

from sqlalchemy.orm import Session

from ..models.availability import AvailabilityBlock
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class AvailabilityRepository(BaseRepository[AvailabilityBlock]):
    def __init__(self, db: Session):
        super().__init__(db, AvailabilityBlock)

    def get_blocks_for_tutor(self, tutor_id: str) -> List[AvailabilityBlock]:
        """All blocks of a tutor ordered by day then start time."""
        query = (
            self._build_query()
            .filter(AvailabilityBlock.tutor_id == tutor_id)
            .order_by(AvailabilityBlock.day_of_week, AvailabilityBlock.start_time)
        )
        return self._execute_query(query)
