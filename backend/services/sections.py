import logging
from typing import List, Optional

from sqlalchemy.orm import Session

import models
from database import transaction
from services.lookup import get_project, get_section
from services.ordering import SECTION_LEDGER, TASK_LEDGER
from tenant import TenantContext

logger = logging.getLogger(__name__)


def _get_project_section(db: Session, ctx: TenantContext, section_id: int) -> models.Section:
    section = get_section(db, section_id)
    # Raises NotFoundError for sections of another workspace's project
    get_project(db, ctx, section.project_id)
    return section


def create_section(
    db: Session,
    ctx: TenantContext,
    project_id: int,
    name: str,
    position: Optional[int] = None,
) -> models.Section:
    """Add a section to a project at ``position`` (appended when omitted)."""
    logger.info(f"{ctx} creating section '{name}' in project {project_id} at {position}")

    with transaction(db):
        project = get_project(db, ctx, project_id)
        assigned = SECTION_LEDGER.insert(db, (project.id,), position)
        section = models.Section(project_id=project.id, name=name, position=assigned)
        db.add(section)
        db.flush()

    logger.info(f"Section {section.id} created in project {project_id} at position {assigned}")
    return section


def rename_section(db: Session, ctx: TenantContext, section_id: int, name: str) -> models.Section:
    with transaction(db):
        section = _get_project_section(db, ctx, section_id)
        section.name = name
    return section


def move_section(db: Session, ctx: TenantContext, section_id: int, position: int) -> models.Section:
    logger.info(f"{ctx} moving section {section_id} to position {position}")

    with transaction(db):
        section = _get_project_section(db, ctx, section_id)
        SECTION_LEDGER.move(db, (section.project_id,), section.id, section.position, position)

    db.refresh(section)
    logger.info(f"Section {section_id} now at position {section.position}")
    return section


def delete_section(db: Session, ctx: TenantContext, section_id: int) -> None:
    """
    Delete a section.

    Its tasks stay in the project: they are appended, in their current order,
    to the project's unsectioned list.
    """
    logger.info(f"{ctx} deleting section {section_id}")

    with transaction(db):
        section = _get_project_section(db, ctx, section_id)
        project_id = section.project_id

        placements = db.query(models.TaskProject)\
            .filter(models.TaskProject.project_id == project_id, models.TaskProject.section_id == section.id)\
            .order_by(models.TaskProject.position)\
            .all()

        for placement in placements:
            placement.position = TASK_LEDGER.insert(db, (project_id, None))
            placement.section_id = None
            db.flush()

        SECTION_LEDGER.remove(db, (project_id,), section.position)
        db.delete(section)
        db.flush()

    logger.info(f"Section {section_id} deleted; {len(placements)} task(s) moved to the unsectioned list")


def list_sections(db: Session, ctx: TenantContext, project_id: int) -> List[models.Section]:
    project = get_project(db, ctx, project_id)
    return db.query(models.Section)\
        .filter(models.Section.project_id == project.id)\
        .order_by(models.Section.position)\
        .all()
