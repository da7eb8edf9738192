"""SQLAlchemy database models."""
from datetime import datetime, timezone
import enum

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Float,
    DateTime,
    ForeignKey,
    Enum,
    Boolean,
    UniqueConstraint,
    Index,
    JSON,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

# Base class for all models
Base = declarative_base()

# JSONB on PostgreSQL, plain JSON everywhere else (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns below."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum_values(enum_cls):
    # Serialize enum values (e.g. 'in_progress') instead of names (IN_PROGRESS)
    return [e.value for e in enum_cls]


class TaskStatus(str, enum.Enum):
    """Task lifecycle status enum."""

    NOT_STARTED = "not_started"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    RESPONDED = "responded"
    UNDER_REVIEW = "under_review"
    RE_OPENED = "re_opened"
    COMPLETED = "completed"
    CLOSED = "closed"


# Statuses that release a task's dedup key
CLOSED_TASK_STATUSES = (TaskStatus.COMPLETED, TaskStatus.CLOSED)


class TaskPriority(str, enum.Enum):
    """Task priority enum."""

    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class Severity(str, enum.Enum):
    """Severity band assigned to a threshold finding."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class RuleDirection(str, enum.Enum):
    """Which side of the normal range a threshold rule watches."""

    ABOVE = "above"          # Higher values are worse; bands apply to the raw value
    BELOW = "below"          # Lower values are worse; bands apply to reference_low - value
    TWO_SIDED = "two_sided"  # Either side; bands apply to distance outside the reference range


class TaskChangeType(str, enum.Enum):
    """Task history change type enum."""

    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    PRIORITY_CHANGED = "priority_changed"
    DUE_DATE_CHANGED = "due_date_changed"
    ASSIGNED = "assigned"
    COMMENTED = "commented"
    COMPLETED = "completed"
    CLOSED = "closed"


# =============================================================================
# Directory and import feed (owned by collaborators, consumed here)
# =============================================================================

class User(Base):
    """
    Directory user.

    Role membership is read fresh from this table at dispatch time.
    ``study_access`` is a list of trial protocol ids; null or a list
    containing "All Studies" grants access to every trial.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    username = Column(String(100), nullable=False, unique=True)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    role = Column(String(100), nullable=False, default="user", index=True)
    status = Column(String(20), nullable=False, default="active")
    study_access = Column(JSONType, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<User {self.username} ({self.role})>"


class Trial(Base):
    """Clinical trial."""

    __tablename__ = "trials"

    id = Column(Integer, primary_key=True)
    protocol_id = Column(String(100), nullable=False, unique=True)
    title = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Trial {self.protocol_id}>"


class DomainRecord(Base):
    """
    One imported clinical data record (e.g. an LB row from EDC).

    ``record_data`` holds the JSON-encoded field map exactly as imported.
    """

    __tablename__ = "domain_records"

    id = Column(Integer, primary_key=True)
    trial_id = Column(Integer, ForeignKey("trials.id", ondelete="CASCADE"), nullable=False, index=True)
    domain = Column(String(20), nullable=False)
    source = Column(String(50), nullable=False)
    record_id = Column(String(100), nullable=False)
    record_data = Column(Text, nullable=False)
    imported_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("trial_id", "domain", "source", "record_id", name="uq_domain_record"),
    )

    def __repr__(self) -> str:
        return f"<DomainRecord {self.domain}/{self.source}/{self.record_id}>"


# =============================================================================
# Threshold rules
# =============================================================================

class ThresholdRule(Base):
    """
    Per-trial, per-metric severity bands.

    Bands are strictly increasing when enabled: low < medium < high < critical.
    """

    __tablename__ = "threshold_rules"

    id = Column(Integer, primary_key=True)
    trial_id = Column(Integer, ForeignKey("trials.id", ondelete="CASCADE"), nullable=False, index=True)
    metric_name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    low = Column(Float, nullable=False)
    medium = Column(Float, nullable=False)
    high = Column(Float, nullable=False)
    critical = Column(Float, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    direction = Column(
        Enum(RuleDirection, values_callable=_enum_values),
        nullable=False,
        default=RuleDirection.ABOVE,
    )
    reference_low = Column(Float, nullable=True)
    reference_high = Column(Float, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("trial_id", "metric_name", name="uq_threshold_rule_metric"),
    )

    def __repr__(self) -> str:
        return f"<ThresholdRule {self.metric_name}: {self.low}/{self.medium}/{self.high}/{self.critical}>"


# =============================================================================
# Tasks
# =============================================================================

class Task(Base):
    """Task raised from a finding or created manually.

    ``dedup_key`` is only set for generated tasks. The partial unique index
    allows one open task per key; completing or closing the task releases it.
    """

    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True)
    task_id = Column(String(40), nullable=False, unique=True)  # e.g., CRIT_3F9A01BC
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    priority = Column(Enum(TaskPriority, values_callable=_enum_values), nullable=False, index=True)
    status = Column(
        Enum(TaskStatus, values_callable=_enum_values),
        nullable=False,
        default=TaskStatus.NOT_STARTED,
        index=True,
    )
    trial_id = Column(Integer, ForeignKey("trials.id"), nullable=False, index=True)
    site_id = Column(Integer, nullable=True)
    detection_id = Column(Integer, nullable=True)
    assigned_to = Column(String(100), nullable=True, index=True)  # Role name
    created_by = Column(String(255), nullable=False)

    # Data context of the triggering record
    domain = Column(String(20), nullable=True)
    record_id = Column(String(100), nullable=True)
    source = Column(String(50), nullable=True)
    data_context = Column(JSONType, nullable=True)
    dedup_key = Column(String(64), nullable=True)

    due_date = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime, nullable=True)
    last_comment_at = Column(DateTime, nullable=True)
    last_comment_by = Column(String(255), nullable=True)

    trial = relationship("Trial")
    comments = relationship(
        "TaskComment",
        back_populates="task",
        order_by="TaskComment.id",
    )
    history = relationship("TaskHistory", back_populates="task", cascade="all, delete-orphan")

    __table_args__ = (
        Index(
            "uq_tasks_open_dedup_key",
            "dedup_key",
            unique=True,
            postgresql_where=text("status NOT IN ('completed', 'closed')"),
            sqlite_where=text("status NOT IN ('completed', 'closed')"),
        ),
    )

    @property
    def is_open(self) -> bool:
        return self.status not in CLOSED_TASK_STATUSES

    @property
    def is_overdue(self) -> bool:
        return bool(self.due_date and self.is_open and self.due_date < utcnow())

    def __repr__(self) -> str:
        return f"<Task {self.task_id}: {self.title[:30]}>"


class TaskComment(Base):
    """Append-only comment on a task."""

    __tablename__ = "task_comments"

    id = Column(Integer, primary_key=True)
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=False, index=True)
    comment = Column(Text, nullable=False)
    created_by = Column(String(255), nullable=False)
    role = Column(String(100), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    attachments = Column(JSONType, nullable=True)

    task = relationship("Task", back_populates="comments")

    def __repr__(self) -> str:
        return f"<TaskComment {self.id} on task {self.task_id}>"


class TaskHistory(Base):
    """Task change history for audit trail."""

    __tablename__ = "task_history"

    id = Column(Integer, primary_key=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    change_type = Column(Enum(TaskChangeType, values_callable=_enum_values), nullable=False)
    field_name = Column(String(50), nullable=True)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    changed_by = Column(String(255), nullable=True)
    changed_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    task = relationship("Task", back_populates="history")

    def __repr__(self) -> str:
        return f"<TaskHistory {self.task_id}: {self.change_type.value}>"


# =============================================================================
# Notifications
# =============================================================================

class Notification(Base):
    """
    In-app notification.

    Task notifications are addressed to one user each; the unique constraint
    keeps fan-out to one row per (entity, user). Rows with a null ``user_id``
    are role broadcasts whose read state lives in NotificationReadStatus.
    """

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    type = Column(String(30), nullable=False)  # task, signal, system, data, ...
    priority = Column(String(20), nullable=False)  # critical, high, medium, low, info
    trial_id = Column(Integer, ForeignKey("trials.id"), nullable=True)
    source = Column(String(100), nullable=True)
    related_entity_type = Column(String(30), nullable=True)
    related_entity_id = Column(Integer, nullable=True)
    target_roles = Column(JSONType, nullable=False, default=list)
    target_users = Column(JSONType, nullable=False, default=list)
    read = Column(Boolean, nullable=False, default=False)
    action_required = Column(Boolean, nullable=False, default=False)
    action_url = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    read_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "related_entity_type", "related_entity_id", "user_id",
            name="uq_notification_entity_user",
        ),
    )

    def __repr__(self) -> str:
        return f"<Notification {self.id} -> user {self.user_id}: {self.title[:30]}>"


class NotificationReadStatus(Base):
    """One row per (notification, user) read event."""

    __tablename__ = "notification_read_status"

    id = Column(Integer, primary_key=True)
    notification_id = Column(
        Integer, ForeignKey("notifications.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    read_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("notification_id", "user_id", name="uq_notification_read_user"),
    )


class NotificationSettings(Base):
    """Per-user delivery preferences. No row means deliver everything."""

    __tablename__ = "notification_settings"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    email_notifications = Column(Boolean, nullable=False, default=True)
    push_notifications = Column(Boolean, nullable=False, default=True)
    critical_only = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
