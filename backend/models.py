from sqlalchemy import (
    Column, Integer, String, Text, ForeignKey, DateTime, Date, Enum, Numeric, Boolean,
    Table, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.dialects.postgresql import JSONB
import enum

from database import Base, SoftDeleteMixin
from time_utils import is_overdue


class TaskStatus(str, enum.Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    BLOCKED = "BLOCKED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TaskPriority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class DependencyType(str, enum.Enum):
    finish_start = "finish_start"
    finish_finish = "finish_finish"
    start_start = "start_start"
    start_finish = "start_finish"


class RecurrenceType(str, enum.Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class TaskEventType(str, enum.Enum):
    task_created = "task_created"
    status_change = "status_change"
    field_update = "field_update"
    assignee_change = "assignee_change"
    placement_added = "placement_added"
    placement_removed = "placement_removed"
    placement_moved = "placement_moved"
    subtask_created = "subtask_created"
    subtask_promoted = "subtask_promoted"
    parent_changed = "parent_changed"
    dependency_added = "dependency_added"
    dependency_removed = "dependency_removed"
    tag_added = "tag_added"
    tag_removed = "tag_removed"
    follower_added = "follower_added"
    follower_removed = "follower_removed"
    custom_field_updated = "custom_field_updated"
    task_archived = "task_archived"
    task_deleted = "task_deleted"
    task_duplicated = "task_duplicated"


task_tags = Table(
    "task_tags",
    Base.metadata,
    Column("task_id", Integer, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)

task_followers = Table(
    "task_followers",
    Base.metadata,
    Column("task_id", Integer, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Workspace(Base):
    __tablename__ = "workspaces"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    projects = relationship("Project", back_populates="workspace")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Project(SoftDeleteMixin, Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    workspace = relationship("Workspace", back_populates="projects")
    sections = relationship(
        "Section",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="Section.position",
    )
    placements = relationship("TaskProject", back_populates="project", cascade="all, delete-orphan")


class Section(Base):
    __tablename__ = "project_sections"
    __table_args__ = (
        Index("idx_section_project_position", "project_id", "position"),
    )

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    # Dense and zero-based within a project; maintained by services.ordering
    position = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    project = relationship("Project", back_populates="sections")
    placements = relationship("TaskProject", back_populates="section")


class Task(SoftDeleteMixin, Base):
    __tablename__ = "tasks"
    __table_args__ = (
        UniqueConstraint("workspace_id", "sequence_number", name="uq_task_workspace_sequence"),
    )

    id = Column(Integer, primary_key=True, index=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence_number = Column(Integer, nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    status = Column(Enum(TaskStatus, name="task_status"), nullable=False, default=TaskStatus.TODO, index=True)
    priority = Column(Enum(TaskPriority, name="task_priority"), nullable=False, default=TaskPriority.MEDIUM)
    assignee_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    parent_task_id = Column(Integer, ForeignKey("tasks.id", ondelete="SET NULL"), index=True)

    # Scheduling and effort
    start_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    estimated_hours = Column(Numeric(10, 2), nullable=True)
    actual_hours = Column(Numeric(10, 2), nullable=True)
    progress_percentage = Column(Integer, nullable=False, default=0)
    story_points = Column(Integer, nullable=True)
    recurrence = Column(JSONB, nullable=True)

    is_archived = Column(Boolean, nullable=False, default=False)
    archived_at = Column(DateTime(timezone=True), nullable=True)

    # custom field id (as string) -> value
    custom_field_values = Column(JSONB, default=dict)

    # Audit
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    updated_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    assignee = relationship("User", foreign_keys=[assignee_id])
    placements = relationship("TaskProject", back_populates="task", cascade="all, delete-orphan")
    tags = relationship("Tag", secondary=task_tags)
    followers = relationship("User", secondary=task_followers)
    events = relationship("TaskEvent", back_populates="task", cascade="all, delete-orphan")

    # Subtask relationships (self-referential)
    parent_task = relationship("Task", remote_side=[id], back_populates="subtasks", foreign_keys=[parent_task_id])
    subtasks = relationship(
        "Task",
        back_populates="parent_task",
        foreign_keys=[parent_task_id],
        order_by="Task.sequence_number",
    )

    # Dependency edges: this task as successor (its predecessors) and as predecessor
    predecessor_links = relationship(
        "TaskDependency",
        foreign_keys="TaskDependency.successor_id",
        back_populates="successor",
        cascade="all, delete-orphan",
    )
    successor_links = relationship(
        "TaskDependency",
        foreign_keys="TaskDependency.predecessor_id",
        back_populates="predecessor",
        cascade="all, delete-orphan",
    )

    @property
    def project_ids(self):
        return sorted(p.project_id for p in self.placements)

    @property
    def is_overdue(self) -> bool:
        status = self.status.value if self.status is not None else None
        return is_overdue(self.due_date, status)


class TaskProject(Base):
    """Placement of a task in one project, optionally inside a section."""

    __tablename__ = "task_projects"
    __table_args__ = (
        UniqueConstraint("task_id", "project_id", name="uk_task_project"),
        Index("idx_task_projects_bucket", "project_id", "section_id", "position"),
    )

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    section_id = Column(Integer, ForeignKey("project_sections.id", ondelete="SET NULL"), nullable=True)
    # Dense and zero-based within (project_id, section_id); maintained by services.ordering
    position = Column(Integer, nullable=False, default=0)
    added_at = Column(DateTime(timezone=True), server_default=func.now())
    added_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))

    # Relationships
    task = relationship("Task", back_populates="placements")
    project = relationship("Project", back_populates="placements")
    section = relationship("Section", back_populates="placements")


class TaskDependency(Base):
    __tablename__ = "task_dependencies"
    __table_args__ = (
        UniqueConstraint("predecessor_id", "successor_id", name="uk_task_dependency"),
    )

    id = Column(Integer, primary_key=True, index=True)
    predecessor_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    successor_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    dependency_type = Column(
        Enum(DependencyType, name="dependency_type"),
        nullable=False,
        default=DependencyType.finish_start,
    )
    # Negative lag is lead time
    lag_days = Column(Integer, nullable=False, default=0)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    predecessor = relationship("Task", foreign_keys=[predecessor_id], back_populates="successor_links")
    successor = relationship("Task", foreign_keys=[successor_id], back_populates="predecessor_links")


class Tag(Base):
    __tablename__ = "tags"
    __table_args__ = (
        UniqueConstraint("workspace_id", "name", name="uk_tag_workspace_name"),
    )

    id = Column(Integer, primary_key=True, index=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)
    color = Column(String(20))
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class CustomField(Base):
    __tablename__ = "custom_fields"

    id = Column(Integer, primary_key=True, index=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    # text, number, date, enum; informational for clients
    field_type = Column(String(50), nullable=False, default="text")
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class TaskEvent(Base):
    __tablename__ = "task_events"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)

    # event_type stored as VARCHAR(50) so new event types need no migration;
    # TaskEventType validates the known ones.
    event_type = Column(String(50), nullable=False)
    actor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    field_name = Column(String(255))
    old_value = Column(Text)
    new_value = Column(Text)
    event_metadata = Column("metadata", JSONB)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    task = relationship("Task", back_populates="events")
    actor = relationship("User")
