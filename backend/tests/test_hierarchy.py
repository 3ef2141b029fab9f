"""
Tests for parent/subtask hierarchy.

Tests cover:
- Subtasks inherit the parent's projects unless told otherwise
- Promotion round-trip keeps placements
- Re-parenting cycle rejection (self, descendant)
- Subtree traversal and its depth cap
"""

import logging

import pytest
from sqlalchemy.orm import Session

import config
import models
import schemas
from exceptions import BadRequestError, ConflictError, NotFoundError
from services import hierarchy, lifecycle, placement
from tests.conftest import bucket_task_ids

logger = logging.getLogger(__name__)


# ============== Create subtask ==============


def test_subtask_copies_parent_projects_without_section(test_db: Session, ctx, project, another_project, sections, make_task):
    parent = make_task("Parent", project_ids=[project.id, another_project.id], section_id=sections[0].id)

    subtask = hierarchy.create_subtask(test_db, ctx, parent.id, schemas.SubtaskCreate(title="Child"))

    assert subtask.parent_task_id == parent.id
    placements = placement.list_placements(test_db, ctx, subtask.id)
    assert sorted(p.project_id for p in placements) == sorted([project.id, another_project.id])
    assert all(p.section_id is None for p in placements)
    assert bucket_task_ids(test_db, project.id) == [subtask.id]
    logger.info("✓ Subtask placed in the parent's projects, unsectioned")


def test_subtask_with_explicit_projects(test_db: Session, ctx, project, another_project, sections, make_task):
    parent = make_task("Parent", project_ids=[another_project.id])

    subtask = hierarchy.create_subtask(
        test_db, ctx, parent.id,
        schemas.SubtaskCreate(title="Child", project_ids=[project.id], section_id=sections[1].id),
    )

    placements = placement.list_placements(test_db, ctx, subtask.id)
    assert [(p.project_id, p.section_id) for p in placements] == [(project.id, sections[1].id)]
    logger.info("✓ Explicit project_ids override the parent's placements")


def test_subtask_section_override_with_parent_projects(test_db: Session, ctx, project, another_project, sections, make_task):
    parent = make_task("Parent", project_ids=[project.id, another_project.id])

    subtask = hierarchy.create_subtask(
        test_db, ctx, parent.id, schemas.SubtaskCreate(title="Child", section_id=sections[0].id),
    )

    placements = {p.project_id: p.section_id for p in placement.list_placements(test_db, ctx, subtask.id)}
    assert placements == {project.id: sections[0].id, another_project.id: None}
    logger.info("✓ Section applies to its own project, other inherited projects stay unsectioned")


def test_subtask_section_outside_parent_projects_rejected(test_db: Session, ctx, another_project, sections, make_task):
    parent = make_task("Parent", project_ids=[another_project.id])

    with pytest.raises(BadRequestError):
        hierarchy.create_subtask(
            test_db, ctx, parent.id, schemas.SubtaskCreate(title="Child", section_id=sections[0].id),
        )

    assert hierarchy.list_subtasks(test_db, ctx, parent.id) == []
    logger.info("✓ Section outside the inherited projects raises BadRequestError")


def test_subtask_with_empty_project_list_is_unplaced(test_db: Session, ctx, project, make_task):
    parent = make_task("Parent", project_ids=[project.id])

    subtask = hierarchy.create_subtask(test_db, ctx, parent.id, schemas.SubtaskCreate(title="Child", project_ids=[]))

    assert placement.list_placements(test_db, ctx, subtask.id) == []
    logger.info("✓ Empty project list creates an unplaced subtask")


def test_subtask_of_missing_parent(test_db: Session, ctx):
    with pytest.raises(NotFoundError):
        hierarchy.create_subtask(test_db, ctx, 424242, schemas.SubtaskCreate(title="Child"))
    assert test_db.query(models.Task).count() == 0
    logger.info("✓ Missing parent raises NotFoundError without writing")


def test_list_subtasks_excludes_deleted(test_db: Session, ctx, make_task):
    parent = make_task("Parent")
    first = hierarchy.create_subtask(test_db, ctx, parent.id, schemas.SubtaskCreate(title="First"))
    second = hierarchy.create_subtask(test_db, ctx, parent.id, schemas.SubtaskCreate(title="Second"))
    third = hierarchy.create_subtask(test_db, ctx, parent.id, schemas.SubtaskCreate(title="Third"))
    second_id = second.id

    lifecycle.delete_task(test_db, ctx, second_id)

    children = hierarchy.list_subtasks(test_db, ctx, parent.id)
    assert [c.id for c in children] == [first.id, third.id]
    logger.info("✓ Subtasks listed in sequence order without deleted ones")


# ============== Promote ==============


def test_promote_round_trip(test_db: Session, ctx, project, make_task):
    parent = make_task("Parent", project_ids=[project.id])
    subtask = hierarchy.create_subtask(test_db, ctx, parent.id, schemas.SubtaskCreate(title="Child"))
    before = [(p.project_id, p.section_id, p.position) for p in placement.list_placements(test_db, ctx, subtask.id)]

    promoted = hierarchy.promote(test_db, ctx, subtask.id)

    assert promoted.parent_task_id is None
    after = [(p.project_id, p.section_id, p.position) for p in placement.list_placements(test_db, ctx, subtask.id)]
    assert after == before
    assert hierarchy.list_subtasks(test_db, ctx, parent.id) == []
    logger.info("✓ Promotion clears the parent and keeps placements")


def test_promote_top_level_task_rejected(test_db: Session, ctx, make_task):
    task = make_task("Top")

    with pytest.raises(BadRequestError):
        hierarchy.promote(test_db, ctx, task.id)
    logger.info("✓ Promoting a top-level task raises BadRequestError")


# ============== Re-parenting ==============


def test_set_parent_rejects_self(test_db: Session, ctx, make_task):
    task = make_task("Solo")

    with pytest.raises(ConflictError):
        hierarchy.set_parent(test_db, ctx, task.id, task.id)
    logger.info("✓ Task cannot be its own parent")


def test_set_parent_rejects_descendant(test_db: Session, ctx, make_task):
    root = make_task("Root")
    child = hierarchy.create_subtask(test_db, ctx, root.id, schemas.SubtaskCreate(title="Child"))
    grandchild = hierarchy.create_subtask(test_db, ctx, child.id, schemas.SubtaskCreate(title="Grandchild"))

    with pytest.raises(ConflictError):
        hierarchy.set_parent(test_db, ctx, root.id, grandchild.id)

    assert lifecycle.get_task(test_db, ctx, root.id).parent_task_id is None
    logger.info("✓ Descendant cannot become the parent")


def test_set_parent_and_detach(test_db: Session, ctx, make_task):
    a = make_task("A")
    b = make_task("B")

    assert hierarchy.set_parent(test_db, ctx, b.id, a.id).parent_task_id == a.id
    assert hierarchy.set_parent(test_db, ctx, b.id, None).parent_task_id is None
    logger.info("✓ Re-parent and detach")


# ============== Subtree ==============


def test_list_subtree_breadth_first(test_db: Session, ctx, make_task):
    root = make_task("Root")
    a = hierarchy.create_subtask(test_db, ctx, root.id, schemas.SubtaskCreate(title="A"))
    b = hierarchy.create_subtask(test_db, ctx, root.id, schemas.SubtaskCreate(title="B"))
    a1 = hierarchy.create_subtask(test_db, ctx, a.id, schemas.SubtaskCreate(title="A1"))

    subtree = hierarchy.list_subtree(test_db, ctx, root.id)

    assert [(t.id, depth) for t, depth in subtree] == [(a.id, 1), (b.id, 1), (a1.id, 2)]
    logger.info("✓ Subtree listed breadth-first with depths")


def test_list_subtree_depth_cap(test_db: Session, ctx, make_task, monkeypatch):
    monkeypatch.setattr(config, "HIERARCHY_MAX_DEPTH", 2)
    root = make_task("Root")
    level1 = hierarchy.create_subtask(test_db, ctx, root.id, schemas.SubtaskCreate(title="L1"))
    level2 = hierarchy.create_subtask(test_db, ctx, level1.id, schemas.SubtaskCreate(title="L2"))
    hierarchy.create_subtask(test_db, ctx, level2.id, schemas.SubtaskCreate(title="L3"))

    subtree = hierarchy.list_subtree(test_db, ctx, root.id)

    assert [t.title for t, _ in subtree] == ["L1", "L2"]
    logger.info("✓ Subtree walk stops at the depth cap")
