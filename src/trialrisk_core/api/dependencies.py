"""FastAPI dependencies shared by the routers.

Authentication happens upstream; the gateway passes the acting user's id in
the ``X-User-Id`` header.
"""
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from ..database import get_db
from ..directory import SqlUserDirectory, UserDirectory


def get_current_user_id(x_user_id: Optional[int] = Header(None)) -> int:
    """Acting user id from the ``X-User-Id`` header. Required."""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id


def get_optional_user_id(x_user_id: Optional[int] = Header(None)) -> Optional[int]:
    return x_user_id


def get_directory(db: Session = Depends(get_db)) -> UserDirectory:
    return SqlUserDirectory(db)
