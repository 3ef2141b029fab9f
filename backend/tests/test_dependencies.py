"""
Tests for the dependency graph.

Tests cover:
- Adding edges with type and lag
- Cycle rejection (A -> B -> C, then C -> A) and self-dependency
- Duplicate edge conflict, idempotent removal
- Blocked calculation
"""

import logging

import pytest
from sqlalchemy.orm import Session

import models
import schemas
from exceptions import ConflictError, NotFoundError
from services import dependencies, lifecycle

logger = logging.getLogger(__name__)


def _edge_count(db: Session) -> int:
    return db.query(models.TaskDependency).count()


def _graph(db: Session, ctx, task_ids) -> dict:
    """Both edge lists of every task, keyed by task id."""
    return {
        task_id: (
            [d.model_dump() for d in dependencies.list_dependencies(db, ctx, task_id)],
            [d.model_dump() for d in dependencies.list_dependents(db, ctx, task_id)],
        )
        for task_id in task_ids
    }


def test_add_dependency_returns_edge(test_db: Session, ctx, make_task):
    design = make_task("Design")
    build = make_task("Build")

    edge = dependencies.add_dependency(
        test_db, ctx, build.id, design.id,
        dependency_type=models.DependencyType.start_start, lag_days=-2,
    )

    assert edge.predecessor_id == design.id
    assert edge.successor_id == build.id
    assert edge.predecessor_title == "Design"
    assert edge.dependency_type == models.DependencyType.start_start
    assert edge.lag_days == -2

    listed = dependencies.list_dependencies(test_db, ctx, build.id)
    assert [d.predecessor_id for d in listed] == [design.id]
    dependents = dependencies.list_dependents(test_db, ctx, design.id)
    assert [d.successor_id for d in dependents] == [build.id]
    logger.info("✓ Dependency stored with type and lag")


def test_cycle_rejected(test_db: Session, ctx, make_task):
    """With A -> B -> C in place, C -> A would close a loop."""
    a = make_task("A")
    b = make_task("B")
    c = make_task("C")
    dependencies.add_dependency(test_db, ctx, b.id, a.id)
    dependencies.add_dependency(test_db, ctx, c.id, b.id)
    ids = [a.id, b.id, c.id]
    before = _graph(test_db, ctx, ids)

    with pytest.raises(ConflictError) as exc_info:
        dependencies.add_dependency(test_db, ctx, ids[0], ids[2])

    assert "circular" in exc_info.value.detail
    assert _edge_count(test_db) == 2
    assert _graph(test_db, ctx, ids) == before
    assert [d.predecessor_id for d in dependencies.list_dependencies(test_db, ctx, ids[0])] == []
    logger.info("✓ Transitive cycle rejected, nothing written")


def test_self_dependency_rejected(test_db: Session, ctx, make_task):
    task = make_task("Self")

    with pytest.raises(ConflictError):
        dependencies.add_dependency(test_db, ctx, task.id, task.id)

    assert _edge_count(test_db) == 0
    logger.info("✓ Self-dependency rejected")


def test_diamond_is_not_a_cycle(test_db: Session, ctx, make_task):
    top = make_task("Top")
    left = make_task("Left")
    right = make_task("Right")
    bottom = make_task("Bottom")
    dependencies.add_dependency(test_db, ctx, left.id, top.id)
    dependencies.add_dependency(test_db, ctx, right.id, top.id)
    dependencies.add_dependency(test_db, ctx, bottom.id, left.id)

    dependencies.add_dependency(test_db, ctx, bottom.id, right.id)

    assert _edge_count(test_db) == 4
    logger.info("✓ Converging paths are accepted")


def test_duplicate_edge_conflict(test_db: Session, ctx, make_task):
    a = make_task("A")
    b = make_task("B")
    dependencies.add_dependency(test_db, ctx, b.id, a.id)

    with pytest.raises(ConflictError):
        dependencies.add_dependency(test_db, ctx, b.id, a.id)

    assert _edge_count(test_db) == 1
    logger.info("✓ Duplicate edge rejected")


def test_missing_predecessor_not_found(test_db: Session, ctx, make_task):
    task = make_task("Lonely")

    with pytest.raises(NotFoundError):
        dependencies.add_dependency(test_db, ctx, task.id, 999999)
    logger.info("✓ Unknown predecessor raises NotFoundError")


def test_deleted_predecessor_not_found(test_db: Session, ctx, make_task):
    gone = make_task("Gone")
    task = make_task("Task")
    gone_id = gone.id
    lifecycle.delete_task(test_db, ctx, gone_id)

    with pytest.raises(NotFoundError):
        dependencies.add_dependency(test_db, ctx, task.id, gone_id)
    logger.info("✓ Soft-deleted predecessor raises NotFoundError")


def test_remove_dependency_is_idempotent(test_db: Session, ctx, make_task):
    a = make_task("A")
    b = make_task("B")
    dependencies.add_dependency(test_db, ctx, b.id, a.id)

    dependencies.remove_dependency(test_db, ctx, b.id, a.id)
    dependencies.remove_dependency(test_db, ctx, b.id, a.id)

    assert _edge_count(test_db) == 0
    # The reverse edge is allowed again once the original is gone
    dependencies.add_dependency(test_db, ctx, a.id, b.id)
    logger.info("✓ Removing twice is harmless")


def test_is_blocked_until_predecessors_finish(test_db: Session, ctx, make_task):
    first = make_task("First")
    second = make_task("Second")
    task = make_task("Task")
    dependencies.add_dependency(test_db, ctx, task.id, first.id)
    dependencies.add_dependency(test_db, ctx, task.id, second.id)

    assert dependencies.is_blocked(test_db, task.id) is True

    lifecycle.complete_task(test_db, ctx, first.id)
    assert dependencies.is_blocked(test_db, task.id) is True

    lifecycle.change_status(test_db, ctx, second.id, models.TaskStatus.CANCELLED)
    assert dependencies.is_blocked(test_db, task.id) is False
    logger.info("✓ Blocked while any predecessor is open")


def test_tasks_of_other_workspace_invisible(test_db: Session, ctx, other_ctx, make_task):
    local = make_task("Local")
    foreign = lifecycle.create_task(test_db, other_ctx, schemas.TaskCreate(title="Foreign"))

    with pytest.raises(NotFoundError):
        dependencies.add_dependency(test_db, ctx, local.id, foreign.id)
    logger.info("✓ Dependencies cannot cross workspaces")
