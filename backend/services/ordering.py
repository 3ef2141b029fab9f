"""
Dense integer ordering of rows inside a bucket.

A bucket is every row sharing the same values for the ledger's key columns:
(project, section) for task placements, (project,) for sections. After any
operation completes the positions in a bucket are exactly 0..n-1.

Renumbering is done with one UPDATE per operation covering only the affected
range, never row by row. Every operation first locks the row that owns the
bucket (the project, SELECT ... FOR UPDATE; a no-op on SQLite) and only then
reads the positions, so writers of one bucket run one at a time even when
the bucket is empty. Nothing here commits; callers own the transaction.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

import models
from exceptions import BadRequestError

logger = logging.getLogger(__name__)


class PositionLedger:
    def __init__(self, model, *key_columns, owner):
        self.model = model
        self.key_columns = key_columns
        # Primary key of the row the first key column points at
        self.owner = owner

    def _scope(self, key: Sequence) -> list:
        if len(key) != len(self.key_columns):
            raise ValueError(f"Bucket key {key!r} does not match {len(self.key_columns)} key column(s)")
        clauses = []
        for column, value in zip(self.key_columns, key):
            clauses.append(column.is_(None) if value is None else column == value)
        return clauses

    def lock_statement(self, key: Sequence):
        return select(self.owner).where(self.owner == key[0]).with_for_update()

    def _lock(self, db: Session, key: Sequence) -> List[int]:
        # Core statement, so the soft-delete filter does not apply
        db.connection().execute(self.lock_statement(key))
        rows = db.query(self.model.position)\
            .filter(*self._scope(key))\
            .with_for_update()\
            .all()
        return [row[0] for row in rows]

    def _shift(self, db: Session, key: Sequence, low: int, high: Optional[int], delta: int) -> int:
        query = db.query(self.model).filter(*self._scope(key), self.model.position >= low)
        if high is not None:
            query = query.filter(self.model.position <= high)
        count = query.update(
            {self.model.position: self.model.position + delta},
            synchronize_session="fetch",
        )
        logger.debug(
            f"Shifted {count} {self.model.__tablename__} row(s) in bucket {tuple(key)} "
            f"range [{low}, {'end' if high is None else high}] by {delta:+d}"
        )
        return count

    def insert(self, db: Session, key: Sequence, desired_position: Optional[int] = None) -> int:
        """
        Reserve a position for a new row and return it.

        Without a desired position the row goes at the end. Otherwise every
        row at or after the desired position moves down one; a position past
        the end is treated as an append. The caller writes the new row.
        """
        if desired_position is not None and desired_position < 0:
            logger.info(f"Rejected negative position {desired_position} for bucket {tuple(key)}")
            raise BadRequestError("Position must be >= 0")

        positions = self._lock(db, key)
        append_at = max(positions) + 1 if positions else 0

        if desired_position is None or desired_position >= append_at:
            logger.debug(f"Appending at position {append_at} in bucket {tuple(key)}")
            return append_at

        self._shift(db, key, desired_position, None, +1)
        return desired_position

    def move(self, db: Session, key: Sequence, item_id: int, from_position: int, to_position: int) -> int:
        """
        Move one row inside its bucket and return its final position.

        Rows between the old and new slot shift one step towards the gap, so
        the result is dense in a single pass whichever way the row travels.
        """
        if to_position < 0:
            logger.info(f"Rejected negative position {to_position} for bucket {tuple(key)}")
            raise BadRequestError("Position must be >= 0")

        positions = self._lock(db, key)
        last = len(positions) - 1
        to_position = max(0, min(to_position, last))

        if to_position == from_position:
            logger.debug(f"Row {item_id} already at position {to_position}")
            return to_position

        if to_position < from_position:
            self._shift(db, key, to_position, from_position - 1, +1)
        else:
            self._shift(db, key, from_position + 1, to_position, -1)

        db.query(self.model)\
            .filter(self.model.id == item_id)\
            .update({self.model.position: to_position}, synchronize_session="fetch")

        logger.debug(f"Moved row {item_id} in bucket {tuple(key)} from {from_position} to {to_position}")
        return to_position

    def remove(self, db: Session, key: Sequence, position: int) -> None:
        """Close the gap left by the row at ``position``; the caller deletes or re-keys that row."""
        self._lock(db, key)
        self._shift(db, key, position + 1, None, -1)

    def positions(self, db: Session, key: Sequence) -> List[Tuple[int, int]]:
        """(id, position) pairs of a bucket in order."""
        rows = db.query(self.model.id, self.model.position)\
            .filter(*self._scope(key))\
            .order_by(self.model.position, self.model.id)\
            .all()
        return [(row[0], row[1]) for row in rows]


# Task placements are ordered per (project, section); section None is the
# project's unsectioned list.
TASK_LEDGER = PositionLedger(
    models.TaskProject,
    models.TaskProject.project_id,
    models.TaskProject.section_id,
    owner=models.Project.id,
)

# Sections are ordered per project.
SECTION_LEDGER = PositionLedger(models.Section, models.Section.project_id, owner=models.Project.id)
