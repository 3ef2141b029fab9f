from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from enum import Enum

from models import TaskStatus, TaskPriority, DependencyType, RecurrenceType


# Recurrence schemas
class RecurrenceSettings(BaseModel):
    type: RecurrenceType
    interval: int = Field(1, ge=1)
    days_of_week: Optional[List[str]] = None
    day_of_month: Optional[int] = Field(None, ge=1, le=31)
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = Field(None, ge=1)


# Task schemas
class TaskBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    estimated_hours: Optional[float] = Field(None, ge=0, description="Estimated hours (must be >= 0)")
    story_points: Optional[int] = Field(None, ge=0)


class TaskCreate(TaskBase):
    status: TaskStatus = TaskStatus.TODO
    assignee_id: Optional[int] = None
    parent_task_id: Optional[int] = None
    project_ids: List[int] = []
    section_id: Optional[int] = None
    follower_ids: List[int] = []
    tag_ids: List[int] = []
    recurrence: Optional[RecurrenceSettings] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assignee_id: Optional[int] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    estimated_hours: Optional[float] = Field(None, ge=0, description="Estimated hours (must be >= 0)")
    actual_hours: Optional[float] = Field(None, ge=0, description="Actual hours spent (must be >= 0)")
    progress_percentage: Optional[int] = Field(None, ge=0, le=100)
    story_points: Optional[int] = Field(None, ge=0)
    recurrence: Optional[RecurrenceSettings] = None


class SubtaskCreate(TaskBase):
    assignee_id: Optional[int] = None
    # None copies the parent's projects; an explicit list (even empty) overrides
    project_ids: Optional[List[int]] = None
    section_id: Optional[int] = None


class DuplicateTaskRequest(BaseModel):
    new_title: Optional[str] = None
    project_id: Optional[int] = None
    section_id: Optional[int] = None
    include_subtasks: bool = False
    include_tags: bool = False
    include_followers: bool = False


# Dependency schemas
class TaskDependency(BaseModel):
    predecessor_id: int
    predecessor_title: str
    predecessor_status: TaskStatus
    successor_id: int
    successor_title: str
    successor_status: TaskStatus
    dependency_type: DependencyType
    lag_days: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Bulk operation schemas
class BulkOperationType(str, Enum):
    UPDATE_STATUS = "UPDATE_STATUS"
    UPDATE_PRIORITY = "UPDATE_PRIORITY"
    UPDATE_ASSIGNEE = "UPDATE_ASSIGNEE"
    UPDATE_DUE_DATE = "UPDATE_DUE_DATE"
    ADD_TAGS = "ADD_TAGS"
    REMOVE_TAGS = "REMOVE_TAGS"
    MOVE_TO_PROJECT = "MOVE_TO_PROJECT"
    MOVE_TO_SECTION = "MOVE_TO_SECTION"
    UPDATE_CUSTOM_FIELDS = "UPDATE_CUSTOM_FIELDS"
    ADD_FOLLOWERS = "ADD_FOLLOWERS"
    REMOVE_FOLLOWERS = "REMOVE_FOLLOWERS"
    ADD_TO_PROJECTS = "ADD_TO_PROJECTS"
    REMOVE_FROM_PROJECTS = "REMOVE_FROM_PROJECTS"
    COMPLETE = "COMPLETE"
    DELETE = "DELETE"
    ARCHIVE = "ARCHIVE"


class UpdateStatusOperation(BaseModel):
    operation: Literal["UPDATE_STATUS"]
    status: TaskStatus


class UpdatePriorityOperation(BaseModel):
    operation: Literal["UPDATE_PRIORITY"]
    priority: TaskPriority


class UpdateAssigneeOperation(BaseModel):
    operation: Literal["UPDATE_ASSIGNEE"]
    assignee_id: Optional[int] = None  # None unassigns


class UpdateDueDateOperation(BaseModel):
    operation: Literal["UPDATE_DUE_DATE"]
    due_date: Optional[date] = None  # None clears


class AddTagsOperation(BaseModel):
    operation: Literal["ADD_TAGS"]
    tag_ids: List[int] = Field(..., min_length=1)


class RemoveTagsOperation(BaseModel):
    operation: Literal["REMOVE_TAGS"]
    tag_ids: List[int] = Field(..., min_length=1)


class MoveToProjectOperation(BaseModel):
    operation: Literal["MOVE_TO_PROJECT"]
    project_id: int
    section_id: Optional[int] = None


class MoveToSectionOperation(BaseModel):
    operation: Literal["MOVE_TO_SECTION"]
    project_id: int
    section_id: Optional[int] = None  # None moves to the project's unsectioned list


class UpdateCustomFieldsOperation(BaseModel):
    operation: Literal["UPDATE_CUSTOM_FIELDS"]
    values: Dict[int, Any] = Field(..., min_length=1)


class AddFollowersOperation(BaseModel):
    operation: Literal["ADD_FOLLOWERS"]
    user_ids: List[int] = Field(..., min_length=1)


class RemoveFollowersOperation(BaseModel):
    operation: Literal["REMOVE_FOLLOWERS"]
    user_ids: List[int] = Field(..., min_length=1)


class AddToProjectsOperation(BaseModel):
    operation: Literal["ADD_TO_PROJECTS"]
    project_ids: List[int] = Field(..., min_length=1)


class RemoveFromProjectsOperation(BaseModel):
    operation: Literal["REMOVE_FROM_PROJECTS"]
    project_ids: List[int] = Field(..., min_length=1)


class CompleteOperation(BaseModel):
    operation: Literal["COMPLETE"]


class DeleteOperation(BaseModel):
    operation: Literal["DELETE"]


class ArchiveOperation(BaseModel):
    operation: Literal["ARCHIVE"]


BulkOperation = Annotated[
    Union[
        UpdateStatusOperation,
        UpdatePriorityOperation,
        UpdateAssigneeOperation,
        UpdateDueDateOperation,
        AddTagsOperation,
        RemoveTagsOperation,
        MoveToProjectOperation,
        MoveToSectionOperation,
        UpdateCustomFieldsOperation,
        AddFollowersOperation,
        RemoveFollowersOperation,
        AddToProjectsOperation,
        RemoveFromProjectsOperation,
        CompleteOperation,
        DeleteOperation,
        ArchiveOperation,
    ],
    Field(discriminator="operation"),
]


class BulkOperationError(BaseModel):
    task_id: int
    error: str
    error_code: str  # NOT_FOUND, CONFLICT, BAD_REQUEST


class BulkOperationResult(BaseModel):
    success: bool
    operation: BulkOperationType
    processed_count: int = 0
    task_ids: List[int] = []
    skipped_task_ids: List[int] = []  # unknown or soft-deleted ids
    errors: List[BulkOperationError] = []
