"""Notification inbox, read-tracking and repair endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ... import read_tracking, reconciliation, schemas
from ...database import get_db
from ...directory import UserDirectory
from ..dependencies import get_current_user_id, get_directory

logger = logging.getLogger("trialrisk-core.notifications")

router = APIRouter(tags=["notifications"])


@router.get("/", response_model=list[schemas.NotificationResponse])
def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    type: Optional[list[str]] = Query(None, description="Only these notification types"),
    unread_only: bool = Query(False),
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    """List the acting user's notifications, newest first."""
    return read_tracking.list_notifications(db, user_id, limit, offset, type, unread_only)


@router.get("/count", response_model=schemas.CountResponse)
def count_unread(
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    """Number of unread notifications for the acting user."""
    return schemas.CountResponse(count=read_tracking.count_unread(db, user_id))


@router.post("/mark-read", response_model=schemas.CountResponse)
def mark_read(
    request: schemas.MarkReadRequest,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    """
    Mark notifications as read. Idempotent.

    Returns the number of requested notifications now read by the user.
    """
    return schemas.CountResponse(count=read_tracking.mark_read(db, request.ids, user_id))


@router.post("/mark-all-read", response_model=schemas.CountResponse)
def mark_all_read(
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return schemas.CountResponse(count=read_tracking.mark_all_read(db, user_id))


@router.post("/repair", response_model=schemas.RepairResponse)
def repair_notifications(
    role: str = Query(..., min_length=1, description="Role whose task notifications to repair"),
    db: Session = Depends(get_db),
    directory: UserDirectory = Depends(get_directory),
):
    """
    Create any task notifications missing for members of a role.

    Running it again creates nothing.
    """
    created = reconciliation.repair(db, directory, role)
    logger.info(f"Repair requested for role '{role}': {created} notifications created")
    return schemas.RepairResponse(role=role, created=created)
