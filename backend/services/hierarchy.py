"""
Parent/subtask hierarchy.

Traversals are breadth-first over task ids with a visited set and a depth cap
(HIERARCHY_MAX_DEPTH), so corrupt data can never loop forever.
"""

import logging
from collections import deque
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

import config
import models
import schemas
from database import transaction
from exceptions import BadRequestError, ConflictError
from services import lookup
from services.attributes import validate_assignee
from services.events import create_task_event, touch
from services.lifecycle import insert_task
from services.placement import apply_initial_placements, validate_initial_placements
from tenant import TenantContext

logger = logging.getLogger(__name__)


def _child_ids(db: Session, parent_ids: List[int]) -> List[Tuple[int, int]]:
    rows = db.query(models.Task.id, models.Task.parent_task_id)\
        .filter(models.Task.parent_task_id.in_(parent_ids))\
        .execution_options(include_deleted=True)\
        .all()
    return [(row[0], row[1]) for row in rows]


def has_circular_subtask(db: Session, task_id: int, parent_task_id: int) -> bool:
    """
    Check if making ``parent_task_id`` the parent of ``task_id`` would create a cycle.

    Walks the subtask tree of task_id level by level; a hit means the proposed
    parent is the task itself or one of its descendants. Deleted tasks are
    walked too since they still hold their parent link.
    """
    logger.debug(f"Checking circular subtask: task_id={task_id}, parent_task_id={parent_task_id}")

    if task_id == parent_task_id:
        logger.info(f"Self-reference detected: task {task_id} cannot be its own parent")
        return True

    visited = {task_id}
    frontier = [task_id]
    depth = 0

    while frontier:
        depth += 1
        if depth > config.HIERARCHY_MAX_DEPTH:
            logger.warning(f"Subtask tree of task {task_id} exceeds depth {config.HIERARCHY_MAX_DEPTH}; treating as circular")
            return True

        next_frontier = []
        for child_id, _ in _child_ids(db, frontier):
            if child_id == parent_task_id:
                logger.info(f"Circular subtask detected: task {parent_task_id} is a descendant of task {task_id}")
                return True
            if child_id in visited:
                logger.warning(f"Task {child_id} reached twice under task {task_id}; hierarchy data is corrupt")
                continue
            visited.add(child_id)
            next_frontier.append(child_id)
        frontier = next_frontier

    logger.debug(f"No circular subtask detected for task {task_id} with parent {parent_task_id}")
    return False


# ============== Subtasks ==============

def create_subtask(db: Session, ctx: TenantContext, parent_id: int, fields: schemas.SubtaskCreate) -> models.Task:
    """
    Create a task under ``parent_id``.

    Without ``project_ids`` the subtask joins every project the parent is in,
    at the end of each project's unsectioned list. A ``section_id`` places it
    in that section instead, for the one project the section belongs to.
    """
    logger.info(f"{ctx} creating subtask '{fields.title}' under task {parent_id}")

    with transaction(db):
        parent = lookup.get_task(db, ctx, parent_id, label="Parent task")
        assignee = validate_assignee(db, fields.assignee_id)

        if fields.project_ids is None:
            project_ids = [p.project_id for p in parent.placements]
            live_ids = {
                project.id for project in db.query(models.Project)
                .filter(models.Project.id.in_(project_ids), models.Project.workspace_id == ctx.workspace_id)
                .all()
            }
            targets = validate_initial_placements(
                db, ctx, [pid for pid in project_ids if pid in live_ids], fields.section_id
            )
        else:
            targets = validate_initial_placements(db, ctx, fields.project_ids, fields.section_id)

        task_data = fields.model_dump(exclude={"project_ids", "section_id", "assignee_id"})
        task_data["assignee_id"] = assignee.id if assignee else None
        task_data["parent_task_id"] = parent.id

        subtask = insert_task(db, ctx, task_data)
        apply_initial_placements(db, ctx, subtask, targets)

        touch(parent, ctx)
        create_task_event(
            db=db,
            task_id=parent.id,
            event_type=models.TaskEventType.subtask_created,
            actor_id=ctx.user_id,
            metadata={"subtask_id": subtask.id, "title": subtask.title},
        )

    logger.info(f"Subtask {subtask.id} created under task {parent_id}")
    return subtask


def promote(db: Session, ctx: TenantContext, subtask_id: int) -> models.Task:
    """Turn a subtask into a top-level task. Its placements are not touched."""
    logger.info(f"{ctx} promoting task {subtask_id}")

    with transaction(db):
        task = lookup.get_task(db, ctx, subtask_id)
        if task.parent_task_id is None:
            logger.info(f"Task {subtask_id} has no parent and cannot be promoted")
            raise BadRequestError("Task is not a subtask", ids=[subtask_id])

        former_parent_id = task.parent_task_id
        task.parent_task_id = None
        touch(task, ctx)
        create_task_event(
            db=db,
            task_id=task.id,
            event_type=models.TaskEventType.subtask_promoted,
            actor_id=ctx.user_id,
            field_name="parent_task_id",
            old_value=str(former_parent_id),
            new_value=None,
        )

    logger.info(f"Task {subtask_id} promoted from parent {former_parent_id}")
    return task


def set_parent(db: Session, ctx: TenantContext, task_id: int, parent_id: Optional[int]) -> models.Task:
    """Re-parent a task; ``parent_id=None`` detaches it."""
    logger.info(f"{ctx} setting parent of task {task_id} to {parent_id}")

    with transaction(db):
        task = lookup.get_task(db, ctx, task_id)
        if parent_id is not None:
            lookup.get_task(db, ctx, parent_id, label="Parent task")
            if has_circular_subtask(db, task.id, parent_id):
                raise ConflictError("Cannot create circular subtask relationship", ids=[task_id, parent_id])

        old_parent_id = task.parent_task_id
        if old_parent_id != parent_id:
            task.parent_task_id = parent_id
            touch(task, ctx)
            create_task_event(
                db=db,
                task_id=task.id,
                event_type=models.TaskEventType.parent_changed,
                actor_id=ctx.user_id,
                field_name="parent_task_id",
                old_value=str(old_parent_id) if old_parent_id is not None else None,
                new_value=str(parent_id) if parent_id is not None else None,
            )

    return task


# ============== Queries ==============

def list_subtasks(db: Session, ctx: TenantContext, parent_id: int) -> List[models.Task]:
    parent = lookup.get_task(db, ctx, parent_id)
    subtasks = db.query(models.Task)\
        .filter(models.Task.parent_task_id == parent.id)\
        .order_by(models.Task.sequence_number)\
        .all()
    logger.debug(f"Task {parent_id} has {len(subtasks)} subtask(s)")
    return subtasks


def list_subtree(db: Session, ctx: TenantContext, task_id: int) -> List[Tuple[models.Task, int]]:
    """
    All live descendants of a task as ``(task, depth)`` pairs in BFS order.

    Children of a deleted subtask are not visited. The walk stops at
    HIERARCHY_MAX_DEPTH levels.
    """
    root = lookup.get_task(db, ctx, task_id)

    result = []
    visited = {root.id}
    queue = deque([(root.id, 0)])

    while queue:
        current_id, depth = queue.popleft()
        if depth >= config.HIERARCHY_MAX_DEPTH:
            logger.warning(f"Subtree of task {task_id} truncated at depth {config.HIERARCHY_MAX_DEPTH}")
            continue

        children = db.query(models.Task)\
            .filter(models.Task.parent_task_id == current_id)\
            .order_by(models.Task.sequence_number)\
            .all()

        for child in children:
            if child.id in visited:
                logger.warning(f"Task {child.id} reached twice under task {task_id}; hierarchy data is corrupt")
                continue
            visited.add(child.id)
            result.append((child, depth + 1))
            queue.append((child.id, depth + 1))

    return result
