"""Task API endpoints: CRUD, history, comments and notification dispatch."""
import logging
from math import ceil
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from ... import crud, models, notifications, schemas
from ...database import get_db
from ...directory import UserDirectory
from ...errors import OpenTaskConflictError
from ...state_machine import StateTransitionError
from ..dependencies import get_directory, get_optional_user_id

logger = logging.getLogger("trialrisk-core.tasks")

router = APIRouter(tags=["tasks"])


def _get_task_or_404(db: Session, task_id: str) -> models.Task:
    task = crud.get_task(db, task_id)
    if not task:
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")
    return task


def _acting_username(db: Session, user_id: Optional[int]) -> Optional[str]:
    if user_id is None:
        return None
    user = crud.get_user(db, user_id)
    return user.username if user else str(user_id)


def _dispatch_response(result: notifications.DispatchResult) -> schemas.DispatchResponse:
    return schemas.DispatchResponse(
        created=len(result.created),
        skipped=result.skipped,
        suppressed=result.suppressed,
        errors=[schemas.BatchErrorResponse(**vars(e)) for e in result.errors],
    )


@router.post("/", response_model=schemas.TaskResponse, status_code=201)
def create_task(
    task_data: schemas.TaskCreate,
    db: Session = Depends(get_db),
    directory: UserDirectory = Depends(get_directory),
):
    """
    Create a task manually.

    - **title**, **description**, **trial_id**, **created_by**: required
    - **priority**: Critical, High, Medium or Low (default Medium)
    - **assigned_to**: Role the task is assigned to
    - **task_id**, **due_date**: derived from the priority when omitted
    - **notify**: Notify the assigned role after creation (default true)
    """
    try:
        task = crud.create_task(db, task_data)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error creating task: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    if task_data.notify and task.assigned_to:
        notifications.dispatch(db, task, directory)

    return schemas.TaskResponse.model_validate(task)


@router.get("/", response_model=schemas.TaskListResponse)
def list_tasks(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    trial_id: Optional[int] = Query(None, description="Filter by trial"),
    status: Optional[models.TaskStatus] = Query(None, description="Filter by status"),
    priority: Optional[models.TaskPriority] = Query(None, description="Filter by priority"),
    assigned_to: Optional[str] = Query(None, description="Filter by assigned role"),
    domain: Optional[str] = Query(None, description="Filter by data domain"),
    overdue_only: bool = Query(False, description="Only return overdue tasks"),
    include_closed: bool = Query(False, description="Include completed/closed tasks"),
    db: Session = Depends(get_db),
):
    """
    List tasks with filtering and pagination.

    Completed and closed tasks are excluded by default. Tasks are ordered by
    priority (Critical first), then due date, then newest.
    """
    skip = (page - 1) * page_size
    tasks, total = crud.get_tasks(
        db=db,
        skip=skip,
        limit=page_size,
        trial_id=trial_id,
        status=status,
        priority=priority,
        assigned_to=assigned_to,
        domain=domain,
        overdue_only=overdue_only,
        include_closed=include_closed,
    )

    return schemas.TaskListResponse(
        items=[schemas.TaskResponse.model_validate(t) for t in tasks],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=ceil(total / page_size) if total > 0 else 0,
    )


@router.get("/{task_id}", response_model=schemas.TaskResponse)
def get_task(task_id: str, db: Session = Depends(get_db)):
    """
    Get a task by numeric id or task code (e.g. CRIT_3F9A01BC).
    """
    return schemas.TaskResponse.model_validate(_get_task_or_404(db, task_id))


@router.patch("/{task_id}", response_model=schemas.TaskResponse)
def update_task(
    task_id: str,
    task_update: schemas.TaskUpdate,
    db: Session = Depends(get_db),
    user_id: Optional[int] = Depends(get_optional_user_id),
):
    """
    Update a task.

    Status changes follow the task workflow; an invalid transition answers 400.
    Reopening a task whose finding already has another open task answers 409.
    """
    task = _get_task_or_404(db, task_id)

    try:
        updated = crud.update_task(db, task.id, task_update, _acting_username(db, user_id))
    except StateTransitionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OpenTaskConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return schemas.TaskResponse.model_validate(updated)


@router.get("/{task_id}/history", response_model=list[schemas.TaskHistoryResponse])
def get_task_history(
    task_id: str,
    limit: int = Query(50, ge=1, le=100, description="Maximum number of history entries"),
    db: Session = Depends(get_db),
):
    """Get change history for a task, newest first."""
    task = _get_task_or_404(db, task_id)
    return crud.get_task_history(db, task.id, limit)


@router.get("/{task_id}/comments", response_model=list[schemas.TaskCommentResponse])
def get_task_comments(
    task_id: str,
    response: Response,
    t: Optional[str] = Query(None, description="Client cache-buster, ignored"),
    origin: schemas.CommentOrigin = Query(
        schemas.CommentOrigin.STANDARD,
        alias="from",
        description="View requesting the thread: standard or notification",
    ),
    db: Session = Depends(get_db),
):
    """
    Get a task's comment thread in insertion order.

    Responses are never cacheable. Requests from a notification click skip
    anything the session already holds and read straight from the database.
    """
    response.headers["Cache-Control"] = "no-store"

    if origin == schemas.CommentOrigin.NOTIFICATION:
        db.expire_all()

    task = _get_task_or_404(db, task_id)
    return crud.get_comments(db, task.id)


@router.post("/{task_id}/comments", response_model=schemas.TaskCommentResponse, status_code=201)
def add_task_comment(
    task_id: str,
    comment_data: schemas.TaskCommentCreate,
    response: Response,
    db: Session = Depends(get_db),
):
    """Append a comment to a task."""
    response.headers["Cache-Control"] = "no-store"
    task = _get_task_or_404(db, task_id)
    return crud.add_comment(db, task, comment_data)


@router.post("/{task_id}/notifications", response_model=schemas.DispatchResponse)
def notify_task(
    task_id: str,
    audience: Optional[schemas.TaskNotifyRequest] = None,
    db: Session = Depends(get_db),
    directory: UserDirectory = Depends(get_directory),
):
    """
    Dispatch a task's notifications.

    Safe to repeat: users already notified are skipped.
    """
    task = _get_task_or_404(db, task_id)
    audience = audience or schemas.TaskNotifyRequest()

    result = notifications.dispatch(
        db, task, directory, roles=audience.roles, user_ids=audience.user_ids
    )
    return _dispatch_response(result)
