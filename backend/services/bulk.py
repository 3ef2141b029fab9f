"""
Bulk operation dispatcher.

One catalog operation is applied to a list of task ids in two phases:

1. Validate every task with the same checks the single-task operations use,
   collecting per-task errors. Any error aborts the batch before a write.
2. Apply the single-task mutation helpers to every task and commit once. A
   storage failure rolls the whole batch back.

Ids that do not exist (or are soft-deleted) are skipped and reported, never
treated as errors.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Union, get_args

from pydantic import BaseModel, TypeAdapter, ValidationError
from sqlalchemy.orm import Session

import config
import models
import schemas
from database import transaction
from exceptions import BadRequestError, EngineError
from services import attributes, lifecycle, placement
from services.lookup import get_tasks
from tenant import TenantContext

logger = logging.getLogger(__name__)

_operation_adapter = TypeAdapter(schemas.BulkOperation)
# Member models of the discriminated union
_OPERATION_MODELS = get_args(get_args(schemas.BulkOperation)[0])


class Handler(NamedTuple):
    # validate(db, ctx, task, op) -> prepared value, raises EngineError
    validate: Callable[..., Any]
    # apply(db, ctx, task, op, prepared) -> None, never commits
    apply: Callable[..., None]


def _no_validation(db, ctx, task, op):
    return None


# ============== Handlers ==============

def _apply_update_status(db, ctx, task, op, _):
    lifecycle.apply_status(db, ctx, task, op.status)


def _apply_update_priority(db, ctx, task, op, _):
    attributes.apply_priority(db, ctx, task, op.priority)


def _validate_update_assignee(db, ctx, task, op):
    return attributes.validate_assignee(db, op.assignee_id)


def _apply_update_assignee(db, ctx, task, op, assignee):
    attributes.apply_assignee(db, ctx, task, assignee)


def _apply_update_due_date(db, ctx, task, op, _):
    attributes.apply_due_date(db, ctx, task, op.due_date)


def _validate_tags(db, ctx, task, op):
    return attributes.validate_tags(db, ctx, op.tag_ids)


def _apply_add_tags(db, ctx, task, op, tags):
    attributes.apply_add_tags(db, ctx, task, tags)


def _apply_remove_tags(db, ctx, task, op, tags):
    attributes.apply_remove_tags(db, ctx, task, tags)


def _validate_move_to_project(db, ctx, task, op):
    return placement.validate_move_to_project(db, ctx, task, op.project_id, op.section_id)


def _apply_move_to_project(db, ctx, task, op, prepared):
    project, section = prepared
    placement.apply_move_to_project(db, ctx, task, project, section)


def _validate_move_to_section(db, ctx, task, op):
    return placement.validate_move_to_section(db, task, op.project_id, op.section_id)


def _apply_move_to_section(db, ctx, task, op, prepared):
    task_placement, section = prepared
    placement.apply_move_to_section(db, ctx, task, task_placement, section)


def _validate_custom_fields(db, ctx, task, op):
    return attributes.validate_custom_fields(db, ctx, op.values)


def _apply_custom_fields(db, ctx, task, op, _):
    attributes.apply_custom_fields(db, ctx, task, op.values)


def _validate_followers(db, ctx, task, op):
    return attributes.validate_followers(db, op.user_ids)


def _apply_add_followers(db, ctx, task, op, users):
    attributes.apply_add_followers(db, ctx, task, users)


def _apply_remove_followers(db, ctx, task, op, users):
    attributes.apply_remove_followers(db, ctx, task, users)


def _validate_add_to_projects(db, ctx, task, op):
    return [placement.validate_add_to_project(db, ctx, task, project_id) for project_id in dict.fromkeys(op.project_ids)]


def _apply_add_to_projects(db, ctx, task, op, targets):
    for project, section in targets:
        placement.apply_add_to_project(db, ctx, task, project, section)


def _validate_remove_from_projects(db, ctx, task, op):
    return [placement.validate_remove_from_project(db, task, project_id) for project_id in dict.fromkeys(op.project_ids)]


def _apply_remove_from_projects(db, ctx, task, op, placements):
    for task_placement in placements:
        placement.apply_remove_from_project(db, ctx, task, task_placement)


def _apply_complete(db, ctx, task, op, _):
    lifecycle.apply_status(db, ctx, task, models.TaskStatus.COMPLETED)


def _apply_delete(db, ctx, task, op, _):
    lifecycle.apply_soft_delete(db, ctx, task)


def _apply_archive(db, ctx, task, op, _):
    lifecycle.apply_archive(db, ctx, task)


HANDLERS: Dict[schemas.BulkOperationType, Handler] = {
    schemas.BulkOperationType.UPDATE_STATUS: Handler(_no_validation, _apply_update_status),
    schemas.BulkOperationType.UPDATE_PRIORITY: Handler(_no_validation, _apply_update_priority),
    schemas.BulkOperationType.UPDATE_ASSIGNEE: Handler(_validate_update_assignee, _apply_update_assignee),
    schemas.BulkOperationType.UPDATE_DUE_DATE: Handler(_no_validation, _apply_update_due_date),
    schemas.BulkOperationType.ADD_TAGS: Handler(_validate_tags, _apply_add_tags),
    schemas.BulkOperationType.REMOVE_TAGS: Handler(_validate_tags, _apply_remove_tags),
    schemas.BulkOperationType.MOVE_TO_PROJECT: Handler(_validate_move_to_project, _apply_move_to_project),
    schemas.BulkOperationType.MOVE_TO_SECTION: Handler(_validate_move_to_section, _apply_move_to_section),
    schemas.BulkOperationType.UPDATE_CUSTOM_FIELDS: Handler(_validate_custom_fields, _apply_custom_fields),
    schemas.BulkOperationType.ADD_FOLLOWERS: Handler(_validate_followers, _apply_add_followers),
    schemas.BulkOperationType.REMOVE_FOLLOWERS: Handler(_validate_followers, _apply_remove_followers),
    schemas.BulkOperationType.ADD_TO_PROJECTS: Handler(_validate_add_to_projects, _apply_add_to_projects),
    schemas.BulkOperationType.REMOVE_FROM_PROJECTS: Handler(_validate_remove_from_projects, _apply_remove_from_projects),
    schemas.BulkOperationType.COMPLETE: Handler(_no_validation, _apply_complete),
    schemas.BulkOperationType.DELETE: Handler(_no_validation, _apply_delete),
    schemas.BulkOperationType.ARCHIVE: Handler(_no_validation, _apply_archive),
}


# ============== Dispatcher ==============

def parse_operation(operation: Union[BaseModel, dict]) -> BaseModel:
    """Turn a dict payload into its operation model; BadRequestError if it does not fit the catalog."""
    if isinstance(operation, _OPERATION_MODELS):
        return operation
    if isinstance(operation, BaseModel):
        logger.info(f"Rejected bulk operation of type {type(operation).__name__}")
        raise BadRequestError(f"Unsupported bulk operation: {type(operation).__name__}")
    try:
        return _operation_adapter.validate_python(operation)
    except ValidationError as e:
        logger.info(f"Rejected bulk operation payload: {e.error_count()} validation error(s)")
        raise BadRequestError(f"Invalid bulk operation: {e.errors()[0]['msg']}")


def apply_bulk_operation(
    db: Session,
    ctx: TenantContext,
    task_ids: Iterable[int],
    operation: Union[BaseModel, dict],
) -> schemas.BulkOperationResult:
    """
    Apply one operation to many tasks atomically.

    Returns a result with ``success=False`` and the per-task errors when any
    task fails validation; nothing is written in that case.
    """
    op = parse_operation(operation)
    op_type = schemas.BulkOperationType(op.operation)
    handler = HANDLERS[op_type]

    task_ids = list(dict.fromkeys(task_ids))
    if not task_ids:
        raise BadRequestError("task_ids must not be empty")
    if len(task_ids) > config.MAX_BULK_TASKS:
        logger.info(f"Bulk request for {len(task_ids)} tasks exceeds limit {config.MAX_BULK_TASKS}")
        raise BadRequestError(f"Bulk operations are limited to {config.MAX_BULK_TASKS} tasks")

    logger.info(f"{ctx} bulk {op_type.value} on {len(task_ids)} task(s)")

    loaded = get_tasks(db, ctx, task_ids)
    tasks = [loaded[task_id] for task_id in task_ids if task_id in loaded]
    skipped_task_ids = [task_id for task_id in task_ids if task_id not in loaded]
    if skipped_task_ids:
        logger.info(f"Skipping unknown or deleted task(s): {skipped_task_ids}")

    # Phase 1: validate everything
    errors: List[schemas.BulkOperationError] = []
    prepared: Dict[int, Any] = {}
    for task in tasks:
        try:
            prepared[task.id] = handler.validate(db, ctx, task, op)
        except EngineError as e:
            errors.append(schemas.BulkOperationError(task_id=task.id, error=e.detail, error_code=e.error_code))

    if errors:
        logger.info(f"Bulk {op_type.value} validation failed for {len(errors)} task(s); no changes made")
        return schemas.BulkOperationResult(
            success=False,
            operation=op_type,
            processed_count=0,
            task_ids=[],
            skipped_task_ids=skipped_task_ids,
            errors=errors,
        )

    processed_ids = [task.id for task in tasks]

    # Phase 2: apply and commit once
    with transaction(db):
        for task in tasks:
            handler.apply(db, ctx, task, op, prepared[task.id])
        db.flush()

    logger.info(f"Bulk {op_type.value} committed for {len(processed_ids)} task(s)")
    return schemas.BulkOperationResult(
        success=True,
        operation=op_type,
        processed_count=len(processed_ids),
        task_ids=processed_ids,
        skipped_task_ids=skipped_task_ids,
        errors=[],
    )
