"""Tenant-scoped fetch helpers that raise NotFoundError."""

import logging
from typing import Dict, Iterable, List

from sqlalchemy.orm import Session

import models
from exceptions import NotFoundError
from tenant import TenantContext

logger = logging.getLogger(__name__)


def get_task(db: Session, ctx: TenantContext, task_id: int, label: str = "Task") -> models.Task:
    task = db.query(models.Task)\
        .filter(models.Task.id == task_id, models.Task.workspace_id == ctx.workspace_id)\
        .first()
    if not task:
        logger.info(f"{label} {task_id} not found in workspace {ctx.workspace_id}")
        raise NotFoundError(f"{label} not found", ids=[task_id])
    return task


def get_tasks(db: Session, ctx: TenantContext, task_ids: Iterable[int]) -> Dict[int, models.Task]:
    """Load tasks in one query; unknown and soft-deleted ids are simply absent."""
    task_ids = list(task_ids)
    if not task_ids:
        return {}
    tasks = db.query(models.Task)\
        .filter(models.Task.id.in_(task_ids), models.Task.workspace_id == ctx.workspace_id)\
        .all()
    return {task.id: task for task in tasks}


def get_project(db: Session, ctx: TenantContext, project_id: int) -> models.Project:
    project = db.query(models.Project)\
        .filter(models.Project.id == project_id, models.Project.workspace_id == ctx.workspace_id)\
        .first()
    if not project:
        logger.info(f"Project {project_id} not found in workspace {ctx.workspace_id}")
        raise NotFoundError("Project not found", ids=[project_id])
    return project


def get_section(db: Session, section_id: int) -> models.Section:
    section = db.query(models.Section).filter(models.Section.id == section_id).first()
    if not section:
        logger.info(f"Section {section_id} not found")
        raise NotFoundError("Section not found", ids=[section_id])
    return section


def get_user(db: Session, user_id: int) -> models.User:
    user = db.query(models.User)\
        .filter(models.User.id == user_id, models.User.is_active.is_(True))\
        .first()
    if not user:
        logger.info(f"User {user_id} not found")
        raise NotFoundError(f"User with ID {user_id} not found", ids=[user_id])
    return user


def get_users(db: Session, user_ids: Iterable[int]) -> List[models.User]:
    user_ids = list(dict.fromkeys(user_ids))
    users = db.query(models.User)\
        .filter(models.User.id.in_(user_ids), models.User.is_active.is_(True))\
        .all()
    missing = set(user_ids) - {u.id for u in users}
    if missing:
        logger.info(f"Users not found: {sorted(missing)}")
        raise NotFoundError("User not found", ids=sorted(missing))
    return users


def get_tags(db: Session, ctx: TenantContext, tag_ids: Iterable[int]) -> List[models.Tag]:
    tag_ids = list(dict.fromkeys(tag_ids))
    tags = db.query(models.Tag)\
        .filter(models.Tag.id.in_(tag_ids), models.Tag.workspace_id == ctx.workspace_id)\
        .all()
    missing = set(tag_ids) - {t.id for t in tags}
    if missing:
        logger.info(f"Tags not found in workspace {ctx.workspace_id}: {sorted(missing)}")
        raise NotFoundError("Tag not found", ids=sorted(missing))
    return tags


def get_custom_fields(db: Session, ctx: TenantContext, field_ids: Iterable[int]) -> List[models.CustomField]:
    field_ids = list(dict.fromkeys(field_ids))
    fields = db.query(models.CustomField)\
        .filter(models.CustomField.id.in_(field_ids), models.CustomField.workspace_id == ctx.workspace_id)\
        .all()
    missing = set(field_ids) - {f.id for f in fields}
    if missing:
        logger.info(f"Custom fields not found in workspace {ctx.workspace_id}: {sorted(missing)}")
        raise NotFoundError("Custom field not found", ids=sorted(missing))
    return fields
