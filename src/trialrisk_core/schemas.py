"""Pydantic schemas for request/response validation."""
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, ConfigDict, model_validator

from .models import (
    TaskStatus,
    TaskPriority,
    TaskChangeType,
    RuleDirection,
)


# =============================================================================
# Threshold Rule Schemas
# =============================================================================

class ThresholdRuleCreate(BaseModel):
    """Schema for creating a threshold rule.

    Bands must be strictly increasing (low < medium < high < critical) when
    the rule is enabled. ``below`` rules need ``reference_low``; ``two_sided``
    rules need both reference bounds.
    """

    trial_id: int
    metric_name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    low: float
    medium: float
    high: float
    critical: float
    enabled: bool = True
    direction: RuleDirection = RuleDirection.ABOVE
    reference_low: Optional[float] = None
    reference_high: Optional[float] = None

    @model_validator(mode="after")
    def check_reference_range(self):
        if self.direction in (RuleDirection.BELOW, RuleDirection.TWO_SIDED) and self.reference_low is None:
            raise ValueError(f"{self.direction.value} rules require reference_low")
        if self.direction == RuleDirection.TWO_SIDED:
            if self.reference_high is None:
                raise ValueError("two_sided rules require reference_high")
            if self.reference_low > self.reference_high:
                raise ValueError("reference_low must not exceed reference_high")
        return self


class ThresholdRuleUpdate(BaseModel):
    """Schema for updating a threshold rule."""

    description: Optional[str] = None
    low: Optional[float] = None
    medium: Optional[float] = None
    high: Optional[float] = None
    critical: Optional[float] = None
    enabled: Optional[bool] = None
    direction: Optional[RuleDirection] = None
    reference_low: Optional[float] = None
    reference_high: Optional[float] = None


class ThresholdRuleResponse(BaseModel):
    """Schema for threshold rule response."""

    id: int
    trial_id: int
    metric_name: str
    description: Optional[str] = None
    low: float
    medium: float
    high: float
    critical: float
    enabled: bool
    direction: RuleDirection
    reference_low: Optional[float] = None
    reference_high: Optional[float] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# =============================================================================
# Domain Data Schemas
# =============================================================================

class DomainDataImport(BaseModel):
    """Batch of records imported for one (trial, domain, source)."""

    trial_id: int
    domain: str = Field(..., min_length=1, max_length=20)
    source: str = Field(..., min_length=1, max_length=50)
    records: dict[str, Any] = Field(
        ...,
        description="Map of record id to the record's field map (or its JSON text)",
    )


class DomainDataValidate(BaseModel):
    """Manual validation trigger. Omit record_ids to validate every record."""

    trial_id: int
    domain: str = Field(..., min_length=1, max_length=20)
    source: str = Field(..., min_length=1, max_length=50)
    record_ids: Optional[list[str]] = None


class BatchErrorResponse(BaseModel):
    kind: str
    item: str
    message: str


class PipelineSummaryResponse(BaseModel):
    """Result summary of one validate → materialize → dispatch pass."""

    records_validated: int
    findings: int
    tasks_created: list[str] = Field(description="External task codes of created tasks")
    duplicates_skipped: int
    notifications_created: int
    errors: list[BatchErrorResponse]


# =============================================================================
# Task Schemas
# =============================================================================

class TaskCreate(BaseModel):
    """Schema for creating a task manually.

    ``task_id`` and ``due_date`` are derived from the priority when omitted.
    """

    task_id: Optional[str] = Field(None, max_length=40)
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.NOT_STARTED
    trial_id: int
    site_id: Optional[int] = None
    detection_id: Optional[int] = None
    assigned_to: Optional[str] = Field(None, max_length=100, description="Role the task is assigned to")
    created_by: str = Field(..., min_length=1)
    domain: Optional[str] = None
    record_id: Optional[str] = None
    source: Optional[str] = None
    data_context: Optional[dict] = None
    due_date: Optional[datetime] = None
    notify: bool = Field(True, description="Dispatch notifications to the assigned role after creation")


class TaskUpdate(BaseModel):
    """Schema for updating an existing task."""

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assigned_to: Optional[str] = Field(None, max_length=100)
    due_date: Optional[datetime] = None


class TaskResponse(BaseModel):
    """Schema for full task response."""

    id: int
    task_id: str
    title: str
    description: str
    priority: TaskPriority
    status: TaskStatus
    trial_id: int
    site_id: Optional[int] = None
    detection_id: Optional[int] = None
    assigned_to: Optional[str] = None
    created_by: str
    domain: Optional[str] = None
    record_id: Optional[str] = None
    source: Optional[str] = None
    data_context: Optional[dict] = None
    due_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    last_comment_at: Optional[datetime] = None
    last_comment_by: Optional[str] = None
    is_overdue: bool = False

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class TaskListResponse(BaseModel):
    """Schema for paginated task list response."""

    items: list[TaskResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class TaskNotifyRequest(BaseModel):
    """Explicit audience for a task's notifications.

    With neither field set, the task's assigned role is notified.
    """

    roles: Optional[list[str]] = None
    user_ids: Optional[list[int]] = None


class TaskHistoryResponse(BaseModel):
    """Schema for task history entries."""

    id: int
    task_id: int
    change_type: TaskChangeType
    field_name: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    changed_by: Optional[str] = None
    changed_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class CommentOrigin(str, Enum):
    """Which client view is asking for a comment thread."""

    STANDARD = "standard"
    NOTIFICATION = "notification"


class TaskCommentCreate(BaseModel):
    comment: str = Field(..., min_length=1)
    created_by: str = Field(..., min_length=1)
    role: Optional[str] = None
    attachments: Optional[list[str]] = None


class TaskCommentResponse(BaseModel):
    id: int
    task_id: int
    comment: str
    created_by: str
    role: Optional[str] = None
    created_at: datetime
    attachments: Optional[list[str]] = None

    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# Notification Schemas
# =============================================================================

class NotificationResponse(BaseModel):
    id: int
    user_id: Optional[int] = None
    title: str
    description: str
    type: str
    priority: str
    trial_id: Optional[int] = None
    source: Optional[str] = None
    related_entity_type: Optional[str] = None
    related_entity_id: Optional[int] = None
    target_roles: list[str] = Field(default_factory=list)
    target_users: list[int] = Field(default_factory=list)
    read: bool
    action_required: bool
    action_url: Optional[str] = None
    created_at: datetime
    read_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class MarkReadRequest(BaseModel):
    ids: list[int] = Field(..., description="Notification ids to mark as read")


class CountResponse(BaseModel):
    count: int


class DispatchResponse(BaseModel):
    created: int
    skipped: int
    suppressed: int
    errors: list[BatchErrorResponse]


class RepairResponse(BaseModel):
    role: str
    created: int
