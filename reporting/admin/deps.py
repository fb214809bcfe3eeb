"""Shared dependencies of the admin routes."""

import hmac
from typing import Any

import structlog
from fastapi import HTTPException, Request, status

from reporting.context import ReportingContext
from reporting.errors import ArgumentError, ConflictError, NotFoundError, ReportingError

logger = structlog.get_logger(__name__)


def get_context(request: Request) -> ReportingContext:
    """The ReportingContext built at startup, 503 while it isn't ready."""
    ctx = getattr(request.app.state, "reporting", None)
    if ctx is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Reporting service not initialized",
        )
    return ctx


def require_admin_token(request: Request) -> bool:
    """
    Require valid admin token for protected routes.

    Returns 401 for missing token, 403 for invalid token or when no token
    is configured.
    """
    ctx = get_context(request)
    admin_token = ctx.settings.admin_token
    if not admin_token:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="ADMIN_TOKEN not configured. Contact system administrator.",
        )

    provided_token = request.headers.get("X-Admin-Token")
    if not provided_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin token required. Provide X-Admin-Token header.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Constant-time comparison to prevent timing attacks
    if not hmac.compare_digest(provided_token.encode(), admin_token.encode()):
        logger.warning(
            "Invalid admin token attempt",
            path=request.url.path,
            client=request.client.host if request.client else "unknown",
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin token",
        )
    return True


def http_error(error: ReportingError) -> HTTPException:
    """Map a reporting error to its HTTP status."""
    if isinstance(error, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, ConflictError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, ArgumentError):
        code = status.HTTP_400_BAD_REQUEST
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(error))


def actor(request: Request) -> str:
    """Name recorded in history entries and job origins."""
    return request.headers.get("X-Reporting-User") or "admin"


def page_meta(items: list[Any], size: int, last_id: Any) -> dict[str, Any]:
    return {"count": len(items), "size": size, "last_id": str(last_id) if last_id is not None else None}
