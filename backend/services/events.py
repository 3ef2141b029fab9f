import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

import models
from tenant import TenantContext
from time_utils import utc_now

logger = logging.getLogger(__name__)


def to_event_value(value: Any) -> Optional[str]:
    """Convert enum values to strings for comparison and storage."""
    if value is None:
        return None
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


def create_task_event(
    db: Session,
    task_id: int,
    event_type: models.TaskEventType,
    actor_id: Optional[int] = None,
    field_name: Optional[str] = None,
    old_value: Optional[str] = None,
    new_value: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> models.TaskEvent:
    """
    Create a task event for the activity trail.

    The event joins the caller's transaction; it is flushed but never
    committed here.

    Args:
        db: Database session
        task_id: ID of the task
        event_type: Type of event (from TaskEventType enum)
        actor_id: ID of the user who triggered the event
        field_name: Name of the field that changed (for field_update and status_change)
        old_value: Previous value (optional)
        new_value: New value (optional)
        metadata: Additional context as JSON (optional)

    Returns:
        Created TaskEvent instance
    """
    logger.debug(f"Creating event: type={event_type}, task_id={task_id}, actor_id={actor_id}, field={field_name}")

    event = models.TaskEvent(
        task_id=task_id,
        event_type=to_event_value(event_type),
        actor_id=actor_id,
        field_name=field_name,
        old_value=old_value,
        new_value=new_value,
        event_metadata=metadata,
    )

    db.add(event)
    db.flush()  # Flush to get ID without committing

    logger.debug(f"Event created: id={event.id}, type={event_type}")
    return event


def touch(task: models.Task, ctx: TenantContext) -> None:
    """Stamp the audit pair without changing any content field."""
    task.updated_at = utc_now()
    task.updated_by = ctx.user_id


def list_task_events(db: Session, task_id: int, limit: int = 100):
    return db.query(models.TaskEvent)\
        .filter(models.TaskEvent.task_id == task_id)\
        .order_by(models.TaskEvent.created_at.desc(), models.TaskEvent.id.desc())\
        .limit(limit)\
        .all()
