"""
Task lifecycle: creation, status transitions, soft delete, archive, listing,
search and duplication.

Any status may move to any other. Entering COMPLETED stamps ``completed_at``
and leaving it clears the stamp. Soft delete is an orthogonal flag; deleted
tasks disappear from every query and cannot be restored.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

import models
import schemas
from database import transaction
from exceptions import BadRequestError
from services import lookup
from services.attributes import apply_assignee, record_field_change, validate_assignee
from services.events import create_task_event, touch
from services.placement import (
    apply_add_to_project,
    apply_initial_placements,
    resolve_section,
    validate_initial_placements,
)
from tenant import TenantContext
from time_utils import utc_now

logger = logging.getLogger(__name__)


def next_sequence_number(db: Session, workspace_id: int) -> int:
    # Deleted tasks keep their numbers, so count them too
    current = db.query(func.max(models.Task.sequence_number))\
        .filter(models.Task.workspace_id == workspace_id)\
        .execution_options(include_deleted=True)\
        .scalar()
    return (current or 0) + 1


def insert_task(db: Session, ctx: TenantContext, fields: Dict[str, Any]) -> models.Task:
    """Persist a new task row in the caller's transaction and record task_created."""
    now = utc_now()
    fields = {"status": models.TaskStatus.TODO, "priority": models.TaskPriority.MEDIUM, **fields}
    db_task = models.Task(
        workspace_id=ctx.workspace_id,
        sequence_number=next_sequence_number(db, ctx.workspace_id),
        created_by=ctx.user_id,
        updated_by=ctx.user_id,
        created_at=now,
        updated_at=now,
        **fields,
    )
    if db_task.status == models.TaskStatus.COMPLETED:
        db_task.completed_at = now

    db.add(db_task)
    db.flush()

    create_task_event(
        db=db,
        task_id=db_task.id,
        event_type=models.TaskEventType.task_created,
        actor_id=ctx.user_id,
        metadata={
            "title": db_task.title,
            "status": db_task.status.value,
            "priority": db_task.priority.value,
            "sequence_number": db_task.sequence_number,
        },
    )
    return db_task


def _recurrence(settings: Optional[schemas.RecurrenceSettings]) -> Optional[dict]:
    return settings.model_dump(mode="json") if settings is not None else None


# ============== Create / read / update ==============

def create_task(db: Session, ctx: TenantContext, task: schemas.TaskCreate) -> models.Task:
    """Create a task, placing it in ``project_ids`` (possibly none)."""
    logger.info(f"{ctx} creating task: {task.title} in projects {task.project_ids}")

    with transaction(db):
        if task.parent_task_id is not None:
            lookup.get_task(db, ctx, task.parent_task_id, label="Parent task")
        assignee = validate_assignee(db, task.assignee_id)
        targets = validate_initial_placements(db, ctx, task.project_ids, task.section_id)
        followers = lookup.get_users(db, task.follower_ids) if task.follower_ids else []
        tags = lookup.get_tags(db, ctx, task.tag_ids) if task.tag_ids else []

        task_data = task.model_dump(exclude={"project_ids", "section_id", "follower_ids", "tag_ids", "recurrence"})
        task_data["assignee_id"] = assignee.id if assignee else None
        task_data["recurrence"] = _recurrence(task.recurrence)

        db_task = insert_task(db, ctx, task_data)
        db_task.followers.extend(followers)
        db_task.tags.extend(tags)
        apply_initial_placements(db, ctx, db_task, targets)

    logger.info(f"Task created successfully: id={db_task.id} sequence={db_task.sequence_number}")
    return db_task


def get_task(db: Session, ctx: TenantContext, task_id: int) -> models.Task:
    return lookup.get_task(db, ctx, task_id)


def apply_status(db: Session, ctx: TenantContext, task: models.Task, status: models.TaskStatus) -> bool:
    """Set the status and keep ``completed_at`` consistent with it; returns whether it changed."""
    old_status = task.status
    if old_status == status:
        return False

    task.status = status
    if status == models.TaskStatus.COMPLETED:
        task.completed_at = utc_now()
    elif task.completed_at is not None:
        task.completed_at = None

    record_field_change(
        db, ctx, task, "status", old_status, status,
        event_type=models.TaskEventType.status_change,
    )
    logger.debug(f"Task {task.id} status {old_status.value if old_status else None} -> {status.value}")
    return True


def update_task(db: Session, ctx: TenantContext, task_id: int, task_update: schemas.TaskUpdate) -> models.Task:
    """Apply a partial update; only fields present in the payload change."""
    logger.info(f"{ctx} updating task {task_id}")

    with transaction(db):
        task = lookup.get_task(db, ctx, task_id)
        update_data = task_update.model_dump(exclude_unset=True, exclude={"recurrence"})

        for field_name in ("title", "priority", "progress_percentage"):
            if field_name in update_data and update_data[field_name] is None:
                logger.info(f"Field '{field_name}' cannot be cleared on task {task_id}")
                raise BadRequestError(f"Field '{field_name}' cannot be null", ids=[task_id])

        status = update_data.pop("status", None)
        if "assignee_id" in update_data:
            assignee = validate_assignee(db, update_data.pop("assignee_id"))
            apply_assignee(db, ctx, task, assignee)

        if status is not None:
            apply_status(db, ctx, task, status)

        if "recurrence" in task_update.model_fields_set:
            update_data["recurrence"] = _recurrence(task_update.recurrence)

        for field_name, new_value in update_data.items():
            old_value = getattr(task, field_name)
            setattr(task, field_name, new_value)
            record_field_change(db, ctx, task, field_name, old_value, new_value)

    logger.info(f"Task {task_id} updated successfully")
    return task


# ============== Status ==============

def change_status(db: Session, ctx: TenantContext, task_id: int, status: models.TaskStatus) -> models.Task:
    logger.info(f"{ctx} changing status of task {task_id} to {status.value}")

    with transaction(db):
        task = lookup.get_task(db, ctx, task_id)
        apply_status(db, ctx, task, status)

    return task


def complete_task(db: Session, ctx: TenantContext, task_id: int) -> models.Task:
    return change_status(db, ctx, task_id, models.TaskStatus.COMPLETED)


def uncomplete_task(db: Session, ctx: TenantContext, task_id: int) -> models.Task:
    """Reopen a task as TODO and clear its completion timestamp."""
    return change_status(db, ctx, task_id, models.TaskStatus.TODO)


# ============== Delete / archive ==============

def apply_soft_delete(db: Session, ctx: TenantContext, task: models.Task) -> None:
    task.is_deleted = True
    task.deleted_at = utc_now()
    touch(task, ctx)
    create_task_event(
        db=db,
        task_id=task.id,
        event_type=models.TaskEventType.task_deleted,
        actor_id=ctx.user_id,
        metadata={"title": task.title},
    )


def delete_task(db: Session, ctx: TenantContext, task_id: int) -> None:
    """
    Soft-delete a task.

    Placements, subtasks and dependency edges are kept as they are; the task
    simply stops appearing in queries.
    """
    logger.info(f"{ctx} deleting task {task_id}")

    with transaction(db):
        task = lookup.get_task(db, ctx, task_id)
        apply_soft_delete(db, ctx, task)

    logger.info(f"Task {task_id} deleted")


def apply_archive(db: Session, ctx: TenantContext, task: models.Task) -> bool:
    if task.is_archived:
        return False
    task.is_archived = True
    task.archived_at = utc_now()
    touch(task, ctx)
    create_task_event(
        db=db,
        task_id=task.id,
        event_type=models.TaskEventType.task_archived,
        actor_id=ctx.user_id,
    )
    return True


def archive_task(db: Session, ctx: TenantContext, task_id: int) -> models.Task:
    logger.info(f"{ctx} archiving task {task_id}")

    with transaction(db):
        task = lookup.get_task(db, ctx, task_id)
        apply_archive(db, ctx, task)

    return task


# ============== Listing / search ==============

def list_tasks(
    db: Session,
    ctx: TenantContext,
    project_id: Optional[int] = None,
    section_id: Optional[int] = None,
    status: Optional[models.TaskStatus] = None,
    assignee_id: Optional[int] = None,
    parent_task_id: Optional[int] = None,
    include_archived: bool = False,
) -> List[models.Task]:
    logger.debug(
        f"Listing tasks for {ctx}: project={project_id} section={section_id} status={status} "
        f"assignee={assignee_id} parent={parent_task_id} include_archived={include_archived}"
    )

    query = db.query(models.Task).filter(models.Task.workspace_id == ctx.workspace_id)

    if project_id is not None or section_id is not None:
        query = query.join(models.TaskProject, models.TaskProject.task_id == models.Task.id)
        if project_id is not None:
            query = query.filter(models.TaskProject.project_id == project_id)
        if section_id is not None:
            query = query.filter(models.TaskProject.section_id == section_id)
    if status is not None:
        query = query.filter(models.Task.status == status)
    if assignee_id is not None:
        query = query.filter(models.Task.assignee_id == assignee_id)
    if parent_task_id is not None:
        query = query.filter(models.Task.parent_task_id == parent_task_id)
    if not include_archived:
        query = query.filter(models.Task.is_archived.is_(False))

    return query.order_by(models.Task.sequence_number).all()


def search_tasks(db: Session, ctx: TenantContext, query: str, limit: int = 50) -> List[models.Task]:
    """Case-insensitive substring match on title and description."""
    query = (query or "").strip()
    if not query:
        logger.info("Rejected empty search query")
        raise BadRequestError("Search query must not be empty")

    search_pattern = f"%{query}%"
    return db.query(models.Task)\
        .filter(
            models.Task.workspace_id == ctx.workspace_id,
            or_(
                models.Task.title.ilike(search_pattern),
                models.Task.description.ilike(search_pattern),
            ),
        )\
        .order_by(models.Task.sequence_number)\
        .limit(limit)\
        .all()


# ============== Duplicate ==============

_COPIED_FIELDS = (
    "description", "priority", "start_date", "due_date", "estimated_hours",
    "story_points", "recurrence", "assignee_id",
)


def _copy_fields(source: models.Task) -> Dict[str, Any]:
    fields = {name: getattr(source, name) for name in _COPIED_FIELDS}
    fields["custom_field_values"] = dict(source.custom_field_values or {})
    return fields


def duplicate_task(
    db: Session,
    ctx: TenantContext,
    task_id: int,
    request: Optional[schemas.DuplicateTaskRequest] = None,
) -> models.Task:
    """
    Copy a task as a new TODO task.

    With ``project_id`` the copy is placed only there (optionally in
    ``section_id``); without it the copy takes the source's placements,
    appended to the same sections. Direct subtasks are copied one level deep
    when requested and placed in the copy's projects.
    """
    request = request or schemas.DuplicateTaskRequest()
    logger.info(f"{ctx} duplicating task {task_id}")

    with transaction(db):
        source = lookup.get_task(db, ctx, task_id)

        if request.project_id is not None:
            project = lookup.get_project(db, ctx, request.project_id)
            targets = [(project, resolve_section(db, project.id, request.section_id))]
        else:
            if request.section_id is not None:
                raise BadRequestError("section_id requires project_id")
            targets = [
                (p.project, p.section) for p in source.placements
                if p.project is not None and not p.project.is_deleted
            ]

        fields = _copy_fields(source)
        fields["title"] = request.new_title or f"{source.title} (Copy)"
        fields["parent_task_id"] = source.parent_task_id
        copy = insert_task(db, ctx, fields)

        if request.include_tags:
            copy.tags.extend(source.tags)
        if request.include_followers:
            copy.followers.extend(source.followers)
        apply_initial_placements(db, ctx, copy, targets)

        if request.include_subtasks:
            for subtask in list(source.subtasks):
                if subtask.is_deleted:
                    continue
                sub_fields = _copy_fields(subtask)
                sub_fields["title"] = subtask.title
                sub_fields["parent_task_id"] = copy.id
                sub_copy = insert_task(db, ctx, sub_fields)
                for project, _ in targets:
                    apply_add_to_project(db, ctx, sub_copy, project)

        create_task_event(
            db=db,
            task_id=copy.id,
            event_type=models.TaskEventType.task_duplicated,
            actor_id=ctx.user_id,
            metadata={"source_task_id": source.id},
        )

    logger.info(f"Task {task_id} duplicated as {copy.id}")
    return copy
