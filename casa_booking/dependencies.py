"""
FastAPI dependency injection providers.

Route handlers receive the service context and the family session through
these providers. Tests replace them with ``app.dependency_overrides``.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from casa_booking.context import ServiceContext
from casa_booking.services.family_sessions import SESSION_COOKIE


def get_context(request: Request) -> ServiceContext:
    """
    Provide the process-wide service context built at startup.

    Testing Example:
        >>> ctx = ServiceContext(store=InMemoryStore(), ...)
        >>> app.dependency_overrides[get_context] = lambda: ctx
        >>> client = TestClient(app)
    """
    context: ServiceContext | None = getattr(request.app.state, "context", None)
    if context is None:
        raise RuntimeError("Service context not initialized; application startup did not run")
    return context


def require_family_session(
    request: Request, ctx: ServiceContext = Depends(get_context)
) -> str:
    """
    Require a valid family portal session cookie.

    The store is consulted on every request, so revoked or expired sessions
    are rejected immediately.

    Returns:
        str: The session token

    Raises:
        HTTPException: 401 if the cookie is missing or the session is invalid
    """
    token = request.cookies.get(SESSION_COOKIE)
    if not token or not ctx.sessions.is_valid(token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Family portal session required",
        )
    return token
