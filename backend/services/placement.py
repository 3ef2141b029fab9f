"""
Placement manager: which projects a task lives in, and where.

A task may be placed in many projects at once (multi-homing) but at most once
per project. Inside a project it sits in a section or in the unsectioned
list, at a dense position maintained by TASK_LEDGER.

Each operation is split into ``validate_*`` (reads only, raises) and
``apply_*`` (writes, never commits) so the bulk dispatcher can validate a whole
batch before writing anything and still share these rules.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

import models
from database import transaction
from exceptions import BadRequestError, ConflictError, NotFoundError
from services.events import create_task_event, touch
from services.lookup import get_project, get_section, get_task
from services.ordering import TASK_LEDGER
from tenant import TenantContext

logger = logging.getLogger(__name__)


def _bucket(placement: models.TaskProject) -> Tuple[int, Optional[int]]:
    return (placement.project_id, placement.section_id)


def find_placement(db: Session, task_id: int, project_id: int) -> Optional[models.TaskProject]:
    return db.query(models.TaskProject)\
        .filter(models.TaskProject.task_id == task_id, models.TaskProject.project_id == project_id)\
        .first()


def get_placement(db: Session, task_id: int, project_id: int) -> models.TaskProject:
    placement = find_placement(db, task_id, project_id)
    if not placement:
        logger.info(f"Task {task_id} is not placed in project {project_id}")
        raise NotFoundError("Task not found in project", ids=[task_id, project_id])
    return placement


def resolve_section(db: Session, project_id: int, section_id: Optional[int]) -> Optional[models.Section]:
    """Load a section and make sure it belongs to ``project_id``."""
    if section_id is None:
        return None
    section = get_section(db, section_id)
    if section.project_id != project_id:
        logger.info(f"Section {section_id} belongs to project {section.project_id}, not {project_id}")
        raise BadRequestError("Section does not belong to the specified project", ids=[section_id, project_id])
    return section


# ============== Add ==============

def validate_add_to_project(
    db: Session,
    ctx: TenantContext,
    task: models.Task,
    project_id: int,
    section_id: Optional[int] = None,
) -> Tuple[models.Project, Optional[models.Section]]:
    project = get_project(db, ctx, project_id)
    section = resolve_section(db, project_id, section_id)

    if find_placement(db, task.id, project_id):
        logger.info(f"Task {task.id} is already in project {project_id}")
        raise ConflictError("Task is already in this project", ids=[task.id, project_id])

    return project, section


def apply_add_to_project(
    db: Session,
    ctx: TenantContext,
    task: models.Task,
    project: models.Project,
    section: Optional[models.Section] = None,
    position: Optional[int] = None,
) -> models.TaskProject:
    section_id = section.id if section else None
    assigned = TASK_LEDGER.insert(db, (project.id, section_id), position)

    placement = models.TaskProject(
        task_id=task.id,
        project_id=project.id,
        section_id=section_id,
        position=assigned,
        added_by=ctx.user_id,
    )
    db.add(placement)
    db.flush()  # later inserts into the same bucket must see this row

    touch(task, ctx)
    create_task_event(
        db=db,
        task_id=task.id,
        event_type=models.TaskEventType.placement_added,
        actor_id=ctx.user_id,
        metadata={"project_id": project.id, "section_id": section_id, "position": assigned},
    )

    logger.debug(f"Task {task.id} placed in project {project.id} section {section_id} at {assigned}")
    return placement


def add_to_project(
    db: Session,
    ctx: TenantContext,
    task_id: int,
    project_id: int,
    section_id: Optional[int] = None,
    position: Optional[int] = None,
) -> models.TaskProject:
    """Place a task in another project (multi-homing)."""
    logger.info(f"{ctx} adding task {task_id} to project {project_id} section {section_id}")

    with transaction(db):
        task = get_task(db, ctx, task_id)
        project, section = validate_add_to_project(db, ctx, task, project_id, section_id)
        placement = apply_add_to_project(db, ctx, task, project, section, position)

    logger.info(f"Task {task_id} added to project {project_id} at position {placement.position}")
    return placement


def validate_initial_placements(
    db: Session,
    ctx: TenantContext,
    project_ids: List[int],
    section_id: Optional[int] = None,
) -> List[Tuple[models.Project, Optional[models.Section]]]:
    """
    Resolve the projects a new task starts in.

    ``section_id`` applies to the one project it belongs to; the task lands in
    the unsectioned list of every other project.
    """
    project_ids = list(dict.fromkeys(project_ids))
    section = get_section(db, section_id) if section_id is not None else None
    if section is not None and section.project_id not in project_ids:
        logger.info(f"Section {section_id} is not in any of the projects {project_ids}")
        raise BadRequestError("Section does not belong to the specified project", ids=[section_id])

    targets = []
    for project_id in project_ids:
        project = get_project(db, ctx, project_id)
        targets.append((project, section if section is not None and section.project_id == project_id else None))
    return targets


def apply_initial_placements(
    db: Session,
    ctx: TenantContext,
    task: models.Task,
    targets: List[Tuple[models.Project, Optional[models.Section]]],
) -> List[models.TaskProject]:
    return [apply_add_to_project(db, ctx, task, project, section) for project, section in targets]


# ============== Remove ==============

def validate_remove_from_project(db: Session, task: models.Task, project_id: int) -> models.TaskProject:
    return get_placement(db, task.id, project_id)


def apply_remove_from_project(
    db: Session,
    ctx: TenantContext,
    task: models.Task,
    placement: models.TaskProject,
) -> None:
    project_id, section_id = _bucket(placement)
    old_position = placement.position

    TASK_LEDGER.remove(db, (project_id, section_id), old_position)
    if placement in task.placements:
        task.placements.remove(placement)
    db.delete(placement)
    db.flush()

    touch(task, ctx)
    create_task_event(
        db=db,
        task_id=task.id,
        event_type=models.TaskEventType.placement_removed,
        actor_id=ctx.user_id,
        metadata={"project_id": project_id, "section_id": section_id, "position": old_position},
    )


def remove_from_project(db: Session, ctx: TenantContext, task_id: int, project_id: int) -> models.Task:
    """
    Detach a task from one project.

    The task and its placements elsewhere are untouched. Losing the last
    placement leaves the task orphaned, reachable by id only.
    """
    logger.info(f"{ctx} removing task {task_id} from project {project_id}")

    with transaction(db):
        task = get_task(db, ctx, task_id)
        placement = validate_remove_from_project(db, task, project_id)
        apply_remove_from_project(db, ctx, task, placement)

    if not task.placements:
        logger.info(f"Task {task_id} has no remaining placements (orphaned)")
    logger.info(f"Task {task_id} removed from project {project_id}")
    return task


# ============== Move within a project ==============

def validate_move_to_section(
    db: Session,
    task: models.Task,
    project_id: int,
    section_id: Optional[int],
) -> Tuple[models.TaskProject, Optional[models.Section]]:
    placement = get_placement(db, task.id, project_id)
    section = resolve_section(db, project_id, section_id)
    return placement, section


def apply_move_to_section(
    db: Session,
    ctx: TenantContext,
    task: models.Task,
    placement: models.TaskProject,
    section: Optional[models.Section],
    position: Optional[int] = None,
) -> models.TaskProject:
    old_key = _bucket(placement)
    old_position = placement.position
    new_section_id = section.id if section else None
    new_key = (placement.project_id, new_section_id)

    if old_key == new_key:
        if position is None:
            # Same bucket without a target slot means "to the end"
            position = len(TASK_LEDGER.positions(db, old_key)) - 1
        new_position = TASK_LEDGER.move(db, old_key, placement.id, old_position, position)
    else:
        TASK_LEDGER.remove(db, old_key, old_position)
        new_position = TASK_LEDGER.insert(db, new_key, position)
        placement.section_id = new_section_id
        placement.position = new_position

    db.flush()

    touch(task, ctx)
    create_task_event(
        db=db,
        task_id=task.id,
        event_type=models.TaskEventType.placement_moved,
        actor_id=ctx.user_id,
        metadata={
            "project_id": placement.project_id,
            "from_section_id": old_key[1],
            "from_position": old_position,
            "to_section_id": new_section_id,
            "to_position": new_position,
        },
    )

    logger.debug(f"Task {task.id} moved in project {placement.project_id}: {old_key[1]}@{old_position} -> {new_section_id}@{new_position}")
    return placement


def move_to_section(
    db: Session,
    ctx: TenantContext,
    task_id: int,
    project_id: int,
    section_id: Optional[int] = None,
    position: Optional[int] = None,
) -> models.TaskProject:
    """
    Move a task to another section of the same project and/or reorder it.

    ``section_id=None`` targets the unsectioned list. ``position=None``
    appends. Reordering inside the current section is the same call with the
    current section id.
    """
    logger.info(f"{ctx} moving task {task_id} in project {project_id} to section {section_id} position {position}")

    with transaction(db):
        task = get_task(db, ctx, task_id)
        placement, section = validate_move_to_section(db, task, project_id, section_id)
        placement = apply_move_to_section(db, ctx, task, placement, section, position)

    logger.info(f"Task {task_id} now at section {placement.section_id} position {placement.position}")
    return placement


# ============== Move between projects ==============

def validate_move_to_project(
    db: Session,
    ctx: TenantContext,
    task: models.Task,
    project_id: int,
    section_id: Optional[int] = None,
) -> Tuple[models.Project, Optional[models.Section]]:
    project = get_project(db, ctx, project_id)
    section = resolve_section(db, project_id, section_id)
    return project, section


def apply_move_to_project(
    db: Session,
    ctx: TenantContext,
    task: models.Task,
    project: models.Project,
    section: Optional[models.Section] = None,
) -> models.TaskProject:
    target = None
    for placement in list(task.placements):
        if placement.project_id == project.id:
            target = placement
        else:
            apply_remove_from_project(db, ctx, task, placement)

    if target is None:
        return apply_add_to_project(db, ctx, task, project, section)

    section_id = section.id if section else None
    if target.section_id != section_id:
        return apply_move_to_section(db, ctx, task, target, section)
    return target


def move_to_project(
    db: Session,
    ctx: TenantContext,
    task_id: int,
    project_id: int,
    section_id: Optional[int] = None,
) -> models.TaskProject:
    """Replace all of a task's placements with a single placement in ``project_id``."""
    logger.info(f"{ctx} moving task {task_id} to project {project_id} section {section_id}")

    with transaction(db):
        task = get_task(db, ctx, task_id)
        project, section = validate_move_to_project(db, ctx, task, project_id, section_id)
        placement = apply_move_to_project(db, ctx, task, project, section)

    logger.info(f"Task {task_id} moved to project {project_id}")
    return placement


# ============== Queries ==============

def list_placements(db: Session, ctx: TenantContext, task_id: int) -> List[models.TaskProject]:
    task = get_task(db, ctx, task_id)
    return db.query(models.TaskProject)\
        .filter(models.TaskProject.task_id == task.id)\
        .order_by(models.TaskProject.project_id)\
        .all()


def list_project_tasks(
    db: Session,
    ctx: TenantContext,
    project_id: int,
    section_id: Optional[int] = None,
) -> List[models.Task]:
    """Tasks of one bucket in position order (soft-deleted tasks excluded)."""
    get_project(db, ctx, project_id)
    section = resolve_section(db, project_id, section_id)

    section_filter = models.TaskProject.section_id.is_(None) if section is None \
        else models.TaskProject.section_id == section.id

    return db.query(models.Task)\
        .join(models.TaskProject, models.TaskProject.task_id == models.Task.id)\
        .filter(models.TaskProject.project_id == project_id, section_filter)\
        .order_by(models.TaskProject.position)\
        .all()
