"""
FastAPI dependencies: the shared store, task engine and notification sink
built at startup, plus the caller's identity from a bearer token.
"""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from alerts.notifications import NotificationSink
from core.config import get_settings
from core.security import decode_access_token
from db.store import DocumentStore
from workers.task_engine import TaskEngine

settings = get_settings()
bearer_scheme = HTTPBearer(auto_error=False)

DEV_ORG_ID = "org_demo"
DEV_USER = {"sub": "dev-user", "email": "dev@groundwater.local", "org_id": DEV_ORG_ID}


def get_store(request: Request) -> DocumentStore:
    return request.app.state.store


def get_task_engine(request: Request) -> TaskEngine:
    return request.app.state.task_engine


def get_notification_sink(request: Request) -> NotificationSink:
    return request.app.state.notification_sink


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict:
    """Claims of the calling user; must carry ``sub`` and ``org_id``. Debug mode uses a fixed dev user."""
    if settings.debug:
        return dict(DEV_USER)
    if credentials is None:
        raise _unauthorized("Not authenticated")

    claims = decode_access_token(credentials.credentials)
    if claims is None:
        raise _unauthorized("Invalid or expired token")
    return claims
