"""
Single-task attribute operations: priority, assignee, due date, tags,
followers and custom fields.

As in the other services, ``validate_*`` only reads and ``apply_*`` only
writes, so bulk requests reuse both halves.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

import models
from database import transaction
from services.events import create_task_event, to_event_value, touch
from services.lookup import get_custom_fields, get_tags, get_task, get_user, get_users
from tenant import TenantContext

logger = logging.getLogger(__name__)


def record_field_change(
    db: Session,
    ctx: TenantContext,
    task: models.Task,
    field_name: str,
    old_value: Any,
    new_value: Any,
    event_type: models.TaskEventType = models.TaskEventType.field_update,
) -> bool:
    """Create an event if the value actually changed; returns whether it did."""
    old_str = to_event_value(old_value)
    new_str = to_event_value(new_value)
    if old_str == new_str:
        return False

    touch(task, ctx)
    create_task_event(
        db=db,
        task_id=task.id,
        event_type=event_type,
        actor_id=ctx.user_id,
        field_name=field_name,
        old_value=old_str,
        new_value=new_str,
    )
    logger.debug(f"Event created for field '{field_name}' on task {task.id}: {old_str} -> {new_str}")
    return True


# ============== Priority / due date ==============

def apply_priority(db: Session, ctx: TenantContext, task: models.Task, priority: models.TaskPriority) -> None:
    old = task.priority
    task.priority = priority
    record_field_change(db, ctx, task, "priority", old, priority)


def set_priority(db: Session, ctx: TenantContext, task_id: int, priority: models.TaskPriority) -> models.Task:
    with transaction(db):
        task = get_task(db, ctx, task_id)
        apply_priority(db, ctx, task, priority)
    logger.info(f"Task {task_id} priority set to {priority.value}")
    return task


def apply_due_date(db: Session, ctx: TenantContext, task: models.Task, due_date: Optional[date]) -> None:
    old = task.due_date
    task.due_date = due_date
    record_field_change(db, ctx, task, "due_date", old, due_date)


def set_due_date(db: Session, ctx: TenantContext, task_id: int, due_date: Optional[date]) -> models.Task:
    with transaction(db):
        task = get_task(db, ctx, task_id)
        apply_due_date(db, ctx, task, due_date)
    logger.info(f"Task {task_id} due date set to {due_date}")
    return task


# ============== Assignee ==============

def validate_assignee(db: Session, assignee_id: Optional[int]) -> Optional[models.User]:
    if assignee_id is None:
        return None
    return get_user(db, assignee_id)


def apply_assignee(db: Session, ctx: TenantContext, task: models.Task, assignee: Optional[models.User]) -> None:
    old = task.assignee_id
    task.assignee_id = assignee.id if assignee else None
    record_field_change(
        db, ctx, task, "assignee_id", old, task.assignee_id,
        event_type=models.TaskEventType.assignee_change,
    )


def assign_task(db: Session, ctx: TenantContext, task_id: int, assignee_id: Optional[int]) -> models.Task:
    """Assign a task to a user, or unassign it with ``assignee_id=None``."""
    with transaction(db):
        task = get_task(db, ctx, task_id)
        assignee = validate_assignee(db, assignee_id)
        apply_assignee(db, ctx, task, assignee)
    logger.info(f"Task {task_id} assigned to {assignee_id}")
    return task


# ============== Tags ==============

def validate_tags(db: Session, ctx: TenantContext, tag_ids: List[int]) -> List[models.Tag]:
    return get_tags(db, ctx, tag_ids)


def apply_add_tags(db: Session, ctx: TenantContext, task: models.Task, tags: List[models.Tag]) -> None:
    current = {t.id for t in task.tags}
    for tag in tags:
        if tag.id in current:
            continue
        task.tags.append(tag)
        touch(task, ctx)
        create_task_event(
            db=db, task_id=task.id, event_type=models.TaskEventType.tag_added,
            actor_id=ctx.user_id, new_value=tag.name, metadata={"tag_id": tag.id},
        )


def apply_remove_tags(db: Session, ctx: TenantContext, task: models.Task, tags: List[models.Tag]) -> None:
    for tag in tags:
        if tag not in task.tags:
            continue
        task.tags.remove(tag)
        touch(task, ctx)
        create_task_event(
            db=db, task_id=task.id, event_type=models.TaskEventType.tag_removed,
            actor_id=ctx.user_id, old_value=tag.name, metadata={"tag_id": tag.id},
        )


def add_tags(db: Session, ctx: TenantContext, task_id: int, tag_ids: List[int]) -> models.Task:
    with transaction(db):
        task = get_task(db, ctx, task_id)
        tags = validate_tags(db, ctx, tag_ids)
        apply_add_tags(db, ctx, task, tags)
    return task


def remove_tags(db: Session, ctx: TenantContext, task_id: int, tag_ids: List[int]) -> models.Task:
    with transaction(db):
        task = get_task(db, ctx, task_id)
        tags = validate_tags(db, ctx, tag_ids)
        apply_remove_tags(db, ctx, task, tags)
    return task


# ============== Followers ==============

def validate_followers(db: Session, user_ids: List[int]) -> List[models.User]:
    return get_users(db, user_ids)


def apply_add_followers(db: Session, ctx: TenantContext, task: models.Task, users: List[models.User]) -> None:
    current = {u.id for u in task.followers}
    for user in users:
        if user.id in current:
            continue
        task.followers.append(user)
        touch(task, ctx)
        create_task_event(
            db=db, task_id=task.id, event_type=models.TaskEventType.follower_added,
            actor_id=ctx.user_id, new_value=str(user.id),
        )


def apply_remove_followers(db: Session, ctx: TenantContext, task: models.Task, users: List[models.User]) -> None:
    for user in users:
        if user not in task.followers:
            continue
        task.followers.remove(user)
        touch(task, ctx)
        create_task_event(
            db=db, task_id=task.id, event_type=models.TaskEventType.follower_removed,
            actor_id=ctx.user_id, old_value=str(user.id),
        )


def add_followers(db: Session, ctx: TenantContext, task_id: int, user_ids: List[int]) -> models.Task:
    with transaction(db):
        task = get_task(db, ctx, task_id)
        users = validate_followers(db, user_ids)
        apply_add_followers(db, ctx, task, users)
    return task


def remove_followers(db: Session, ctx: TenantContext, task_id: int, user_ids: List[int]) -> models.Task:
    with transaction(db):
        task = get_task(db, ctx, task_id)
        users = validate_followers(db, user_ids)
        apply_remove_followers(db, ctx, task, users)
    return task


# ============== Custom fields ==============

def validate_custom_fields(db: Session, ctx: TenantContext, values: Dict[int, Any]) -> List[models.CustomField]:
    return get_custom_fields(db, ctx, values.keys())


def apply_custom_fields(db: Session, ctx: TenantContext, task: models.Task, values: Dict[int, Any]) -> None:
    """Merge values into the task; a value of None removes the field."""
    # Assign a new dict so the JSON column is detected as changed
    merged = dict(task.custom_field_values or {})
    for field_id, value in values.items():
        key = str(field_id)
        old = merged.get(key)
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
        if old != value:
            create_task_event(
                db=db, task_id=task.id, event_type=models.TaskEventType.custom_field_updated,
                actor_id=ctx.user_id, field_name=key,
                old_value=to_event_value(old), new_value=to_event_value(value),
            )
    task.custom_field_values = merged
    touch(task, ctx)


def update_custom_fields(db: Session, ctx: TenantContext, task_id: int, values: Dict[int, Any]) -> models.Task:
    with transaction(db):
        task = get_task(db, ctx, task_id)
        validate_custom_fields(db, ctx, values)
        apply_custom_fields(db, ctx, task, values)
    logger.info(f"Task {task_id} custom fields updated: {sorted(values)}")
    return task
