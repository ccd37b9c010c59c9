# =======================================================================================
# gatewatch/api/dependencies.py - FastAPI Dependencies
# =======================================================================================
import logging
from typing import Optional
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError
from ..database import DatabaseManager, db_manager
from ..services.checkin_service import CheckinService
from ..utils.exceptions import (
    AlertNotFoundError, GateNotFoundError, GateWatchError, InvalidTransitionError,
    SuggestionNotFoundError, ValidationError, WristbandNotFoundError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (GateNotFoundError, status.HTTP_404_NOT_FOUND),
    (WristbandNotFoundError, status.HTTP_404_NOT_FOUND),
    (SuggestionNotFoundError, status.HTTP_404_NOT_FOUND),
    (AlertNotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
)


def get_db_manager() -> DatabaseManager:
    """Dependency to get the database manager (overridden in tests)."""
    return db_manager


def get_db_connection(db: DatabaseManager = Depends(get_db_manager)) -> Connection:
    """Dependency to get a transactional database connection."""
    try:
        with db.get_connection() as conn:
            yield conn
    except SQLAlchemyError as e:
        logger.exception("Database error")
        raise HTTPException(status_code=503, detail=f"Database error: {str(e)}")


def get_checkin_service(db: DatabaseManager = Depends(get_db_manager)) -> CheckinService:
    return CheckinService(db)


def get_actor(x_actor: Optional[str] = Header(None)) -> Optional[str]:
    """Operator name for the audit log; identity is not verified here."""
    return x_actor


def http_error(e: GateWatchError) -> HTTPException:
    """Translate a service error into the matching HTTP status."""
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(e, error_type):
            return HTTPException(status_code=code, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))
