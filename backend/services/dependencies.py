"""
Predecessor/successor links between tasks.

The graph is kept acyclic: before an edge predecessor -> task is written we
ask whether ``predecessor`` is already reachable from ``task`` by following
successor edges. Reachability is answered by one recursive CTE over the whole
closure rather than by walking the graph from Python.
"""

import logging
from typing import List

from sqlalchemy import Integer, literal, select, text
from sqlalchemy.orm import Session

import models
import schemas
from database import transaction
from exceptions import ConflictError
from services import lookup
from services.events import create_task_event, touch
from tenant import TenantContext

logger = logging.getLogger(__name__)

UNBLOCKING_STATUSES = (models.TaskStatus.COMPLETED, models.TaskStatus.CANCELLED)


def _lock_graph(db: Session, ctx: TenantContext) -> None:
    """Serialize cycle check + insert per workspace (PostgreSQL only)."""
    if db.get_bind().dialect.name != "postgresql":
        return
    db.connection().execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": ctx.workspace_id})
    logger.debug(f"Acquired dependency graph lock for workspace {ctx.workspace_id}")


def is_reachable(db: Session, start_id: int, target_id: int) -> bool:
    """
    Check whether ``target_id`` can be reached from ``start_id`` along successor edges.

    The start node counts as reachable from itself. UNION (not UNION ALL)
    discards revisited nodes, so the query terminates even on corrupt cyclic
    data.
    """
    edges = models.TaskDependency.__table__

    reachable = select(literal(start_id, type_=Integer).label("task_id"))\
        .cte("reachable", recursive=True)
    previous = reachable.alias()
    reachable = reachable.union(
        select(edges.c.successor_id).where(edges.c.predecessor_id == previous.c.task_id)
    )

    hit = db.connection().execute(
        select(reachable.c.task_id).where(reachable.c.task_id == target_id).limit(1)
    ).first()
    return hit is not None


def _to_schema(
    edge: models.TaskDependency,
    predecessor: models.Task,
    successor: models.Task,
) -> schemas.TaskDependency:
    return schemas.TaskDependency(
        predecessor_id=predecessor.id,
        predecessor_title=predecessor.title,
        predecessor_status=predecessor.status,
        successor_id=successor.id,
        successor_title=successor.title,
        successor_status=successor.status,
        dependency_type=edge.dependency_type,
        lag_days=edge.lag_days,
        created_at=edge.created_at,
    )


def add_dependency(
    db: Session,
    ctx: TenantContext,
    task_id: int,
    predecessor_id: int,
    dependency_type: models.DependencyType = models.DependencyType.finish_start,
    lag_days: int = 0,
) -> schemas.TaskDependency:
    """
    Make ``task_id`` depend on ``predecessor_id``.

    The type and lag are stored for scheduling clients; nothing here does date
    arithmetic with them.
    """
    logger.info(f"{ctx} adding dependency: {predecessor_id} -> {task_id} ({dependency_type.value}, lag {lag_days})")

    with transaction(db):
        task = lookup.get_task(db, ctx, task_id)
        predecessor = lookup.get_task(db, ctx, predecessor_id, label="Predecessor task")

        _lock_graph(db, ctx)

        existing = db.query(models.TaskDependency)\
            .filter(
                models.TaskDependency.predecessor_id == predecessor.id,
                models.TaskDependency.successor_id == task.id,
            )\
            .first()
        if existing:
            logger.info(f"Dependency already exists: {predecessor_id} -> {task_id}")
            raise ConflictError("Dependency already exists", ids=[predecessor_id, task_id])

        if is_reachable(db, task.id, predecessor.id):
            logger.info(f"Circular dependency detected when trying to add {predecessor_id} -> {task_id}")
            raise ConflictError("Cannot create dependency: circular reference", ids=[predecessor_id, task_id])

        edge = models.TaskDependency(
            predecessor_id=predecessor.id,
            successor_id=task.id,
            dependency_type=dependency_type,
            lag_days=lag_days,
            created_by=ctx.user_id,
        )
        db.add(edge)
        db.flush()

        touch(task, ctx)
        create_task_event(
            db=db,
            task_id=task.id,
            event_type=models.TaskEventType.dependency_added,
            actor_id=ctx.user_id,
            metadata={
                "predecessor_id": predecessor.id,
                "predecessor_title": predecessor.title,
                "dependency_type": dependency_type.value,
                "lag_days": lag_days,
            },
        )

    db.refresh(edge)
    logger.info(f"Successfully created dependency: task {task_id} now depends on task {predecessor_id}")
    return _to_schema(edge, predecessor, task)


def remove_dependency(db: Session, ctx: TenantContext, task_id: int, predecessor_id: int) -> None:
    """Remove the edge predecessor -> task; a missing edge is not an error."""
    logger.info(f"{ctx} removing dependency: {predecessor_id} -> {task_id}")

    with transaction(db):
        task = lookup.get_task(db, ctx, task_id)
        edge = db.query(models.TaskDependency)\
            .filter(
                models.TaskDependency.predecessor_id == predecessor_id,
                models.TaskDependency.successor_id == task.id,
            )\
            .first()

        if not edge:
            logger.debug(f"Dependency {predecessor_id} -> {task_id} does not exist; nothing to remove")
            return

        db.delete(edge)
        touch(task, ctx)
        create_task_event(
            db=db,
            task_id=task.id,
            event_type=models.TaskEventType.dependency_removed,
            actor_id=ctx.user_id,
            metadata={"predecessor_id": predecessor_id},
        )

    logger.info(f"Successfully removed dependency: task {task_id} no longer depends on task {predecessor_id}")


def list_dependencies(db: Session, ctx: TenantContext, task_id: int) -> List[schemas.TaskDependency]:
    """Predecessors of a task; edges to deleted tasks are left out."""
    task = lookup.get_task(db, ctx, task_id)
    rows = db.query(models.TaskDependency, models.Task)\
        .join(models.Task, models.Task.id == models.TaskDependency.predecessor_id)\
        .filter(models.TaskDependency.successor_id == task.id)\
        .order_by(models.TaskDependency.predecessor_id)\
        .all()
    return [_to_schema(edge, predecessor, task) for edge, predecessor in rows]


def list_dependents(db: Session, ctx: TenantContext, task_id: int) -> List[schemas.TaskDependency]:
    """Successors of a task; edges to deleted tasks are left out."""
    task = lookup.get_task(db, ctx, task_id)
    rows = db.query(models.TaskDependency, models.Task)\
        .join(models.Task, models.Task.id == models.TaskDependency.successor_id)\
        .filter(models.TaskDependency.predecessor_id == task.id)\
        .order_by(models.TaskDependency.successor_id)\
        .all()
    return [_to_schema(edge, task, successor) for edge, successor in rows]


def is_blocked(db: Session, task_id: int) -> bool:
    """
    A task is blocked while any live predecessor is neither COMPLETED nor CANCELLED.
    """
    logger.debug(f"Calculating is_blocked for task {task_id}")

    open_predecessors = db.query(models.Task.id)\
        .join(models.TaskDependency, models.TaskDependency.predecessor_id == models.Task.id)\
        .filter(
            models.TaskDependency.successor_id == task_id,
            models.Task.status.notin_(UNBLOCKING_STATUSES),
        )\
        .count()

    logger.debug(f"Task {task_id} has {open_predecessors} incomplete predecessor(s)")
    return open_predecessors > 0
