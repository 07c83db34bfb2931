from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from organizer.auth.models import Principal, RequestContext


def get_request_context(request: Request) -> RequestContext:
    """Context attached by RequestContextMiddleware."""
    ctx = getattr(request.state, "context", None)
    if not isinstance(ctx, RequestContext):
        # Middleware not installed: fail closed.
        raise HTTPException(status_code=500, detail="Request context unavailable")
    return ctx


def require_principal(ctx: RequestContext = Depends(get_request_context)) -> Principal:
    if ctx.principal is None:
        # IMPORTANT: do not emit `WWW-Authenticate`; browsers would show a basic-auth modal.
        raise HTTPException(status_code=401, detail="Unauthorized")
    return ctx.principal
