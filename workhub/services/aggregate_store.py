"""
Optimistic-concurrency updates for mutable aggregates.

Every aggregate row carries ``row_version``. An update names the version the
caller last saw; the write is one conditional UPDATE that also bumps the
counter, so no other writer can slip in between the check and the write.
"""
from typing import Any, Dict, Optional, Type

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..db import Base
from ..errors import ConflictError, NotFoundError
from .clock import Clock


logger = structlog.get_logger(__name__)


class AggregateStore:
    """Compare-version-then-update over any model with ``id`` and ``row_version``.

    The store flushes but never commits: the caller's transaction decides, so
    an audit append made after the update commits or rolls back with it.
    """

    def __init__(self, db: Session, clock: Clock):
        self.db = db
        self.clock = clock

    def get(self, model: Type[Base], entity_id: Any, label: Optional[str] = None):
        row = self.db.get(model, entity_id)
        if row is None:
            raise NotFoundError(f"{label or model.__name__} not found")
        return row

    def update(
        self,
        model: Type[Base],
        entity_id: Any,
        expected_version: int,
        values: Dict[str, Any],
        label: Optional[str] = None,
    ):
        """
        Apply ``values`` if the stored row is still at ``expected_version``.

        Returns:
            The refreshed row, carrying the bumped version.

        Raises:
            NotFoundError: no row with ``entity_id``
            ConflictError: the row moved on; ``current`` holds the stored row
        """
        values = {k: v for k, v in values.items() if k not in ("id", "row_version")}
        if hasattr(model, "updated_at"):
            values.setdefault("updated_at", self.clock.now())

        stmt = (
            update(model)
            .where(model.id == entity_id, model.row_version == expected_version)
            .values(**values, row_version=model.row_version + 1)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)

        if result.rowcount == 0:
            current = self.db.get(model, entity_id, populate_existing=True)
            if current is None:
                raise NotFoundError(f"{label or model.__name__} not found")
            logger.info(
                "optimistic_update_conflict",
                entity=model.__tablename__,
                entity_id=str(entity_id),
                expected_version=expected_version,
                current_version=current.row_version,
            )
            raise ConflictError("Update conflict: the record was changed by someone else", current=current)

        row = self.db.get(model, entity_id, populate_existing=True)
        logger.info(
            "optimistic_update_applied",
            entity=model.__tablename__,
            entity_id=str(entity_id),
            row_version=row.row_version,
        )
        return row
