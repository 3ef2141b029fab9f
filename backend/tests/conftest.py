"""
Test configuration and fixtures for task placement engine tests.

Provides:
- Test database with SQLite in-memory for speed
- Tenant fixtures (workspace, users, context)
- Common fixtures for projects, sections, tags and tasks
"""

import os
import sys
import logging
from typing import Callable, Generator

import pytest
from sqlalchemy import create_engine, JSON
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.dialects.postgresql import JSONB

# Add backend directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base
import models
import schemas
from services import lifecycle
from services.ordering import SECTION_LEDGER, TASK_LEDGER
from tenant import TenantContext

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

# SQLite in-memory database for fast testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a fresh in-memory SQLite database for each test.

    This ensures test isolation and fast execution.
    """
    logger.debug("Creating test database")

    engine = create_engine(
        SQLALCHEMY_TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Replace PostgreSQL-specific types with SQLite-compatible types
    for table in Base.metadata.tables.values():
        for column in table.columns:
            if isinstance(column.type, JSONB):
                column.type = JSON()

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        logger.debug("Test database cleaned up")


@pytest.fixture(scope="function")
def workspace(test_db: Session) -> models.Workspace:
    workspace = models.Workspace(name="Test Workspace")
    test_db.add(workspace)
    test_db.commit()
    test_db.refresh(workspace)
    logger.info(f"Created workspace with ID: {workspace.id}")
    return workspace


@pytest.fixture(scope="function")
def other_workspace(test_db: Session) -> models.Workspace:
    workspace = models.Workspace(name="Other Workspace")
    test_db.add(workspace)
    test_db.commit()
    test_db.refresh(workspace)
    return workspace


@pytest.fixture(scope="function")
def user(test_db: Session) -> models.User:
    user = models.User(name="Regular User", email="user@test.com", is_active=True)
    test_db.add(user)
    test_db.commit()
    test_db.refresh(user)
    logger.info(f"Created user with ID: {user.id}")
    return user


@pytest.fixture(scope="function")
def another_user(test_db: Session) -> models.User:
    user = models.User(name="Another User", email="another@test.com", is_active=True)
    test_db.add(user)
    test_db.commit()
    test_db.refresh(user)
    return user


@pytest.fixture(scope="function")
def ctx(workspace: models.Workspace, user: models.User) -> TenantContext:
    """Tenant context of the regular user in the test workspace."""
    return TenantContext(workspace_id=workspace.id, user_id=user.id)


@pytest.fixture(scope="function")
def other_ctx(other_workspace: models.Workspace, another_user: models.User) -> TenantContext:
    return TenantContext(workspace_id=other_workspace.id, user_id=another_user.id)


def _create_project(db: Session, workspace_id: int, name: str) -> models.Project:
    project = models.Project(workspace_id=workspace_id, name=name, description=f"{name} for testing")
    db.add(project)
    db.commit()
    db.refresh(project)
    logger.info(f"Created project '{name}' with ID: {project.id}")
    return project


@pytest.fixture(scope="function")
def project(test_db: Session, workspace: models.Workspace) -> models.Project:
    return _create_project(test_db, workspace.id, "Test Project")


@pytest.fixture(scope="function")
def another_project(test_db: Session, workspace: models.Workspace) -> models.Project:
    return _create_project(test_db, workspace.id, "Another Project")


@pytest.fixture(scope="function")
def foreign_project(test_db: Session, other_workspace: models.Workspace) -> models.Project:
    """A project in a different workspace."""
    return _create_project(test_db, other_workspace.id, "Foreign Project")


@pytest.fixture(scope="function")
def sections(test_db: Session, project: models.Project):
    """Two sections of ``project``: 'To do' at 0 and 'Doing' at 1."""
    created = []
    for position, name in enumerate(["To do", "Doing"]):
        section = models.Section(project_id=project.id, name=name, position=position)
        test_db.add(section)
        created.append(section)
    test_db.commit()
    for section in created:
        test_db.refresh(section)
    return created


@pytest.fixture(scope="function")
def tag(test_db: Session, workspace: models.Workspace) -> models.Tag:
    tag = models.Tag(workspace_id=workspace.id, name="urgent", color="#ff0000")
    test_db.add(tag)
    test_db.commit()
    test_db.refresh(tag)
    return tag


@pytest.fixture(scope="function")
def custom_field(test_db: Session, workspace: models.Workspace) -> models.CustomField:
    field = models.CustomField(workspace_id=workspace.id, name="Estimate bucket", field_type="text")
    test_db.add(field)
    test_db.commit()
    test_db.refresh(field)
    return field


@pytest.fixture(scope="function")
def make_task(test_db: Session, ctx: TenantContext) -> Callable[..., models.Task]:
    """
    Factory creating tasks through the lifecycle service.

    Usage: ``make_task("Title", project_ids=[project.id], section_id=...)``
    """
    def _make_task(title: str = "Test Task", **fields) -> models.Task:
        return lifecycle.create_task(test_db, ctx, schemas.TaskCreate(title=title, **fields))

    return _make_task


def bucket_positions(db: Session, project_id: int, section_id=None):
    """Positions of a placement bucket in order."""
    return [position for _, position in TASK_LEDGER.positions(db, (project_id, section_id))]


def bucket_task_ids(db: Session, project_id: int, section_id=None):
    """Task ids of a placement bucket in position order."""
    query = db.query(models.TaskProject.task_id).filter(models.TaskProject.project_id == project_id)
    if section_id is None:
        query = query.filter(models.TaskProject.section_id.is_(None))
    else:
        query = query.filter(models.TaskProject.section_id == section_id)
    rows = query.order_by(models.TaskProject.position).all()
    return [row[0] for row in rows]


def section_positions(db: Session, project_id: int):
    return [position for _, position in SECTION_LEDGER.positions(db, (project_id,))]
