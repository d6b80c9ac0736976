"""
auth/dependencies.py -- FastAPI glue for the authorization gate.

Two pieces:
  session_gate_middleware()  -- @app.middleware("http") coroutine. Looks up the
      route in the gate's table, reads the session cookie, runs the gate, and
      either returns a 403 or stores the Session on request.state.session.
  get_current_session()      -- Depends() helper for handlers that need the
      Session the middleware attached. Raises HTTP 403 if there is none.

The gate, cookie name and everything else come from request.app.state, which
the lifespan in api/main.py populates. Nothing here reads configuration.

Every denial has the same status and body ("forbidden"), whatever the reason.

Layer rule: no imports from api/ or core/. This module may import from
fastapi because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from auth.gate import AuthorizationGate
from auth.models import Session

FORBIDDEN_BODY = {"error": {"code": "forbidden", "message": "Access denied."}}


async def session_gate_middleware(request: Request, call_next):
    """Enforce the route -> permission table before the route handler runs.

    Public routes (absent from the table) pass through without the cookie
    being read. request.state.session is always set: the Session on an
    allowed protected route, None otherwise.
    """
    gate: AuthorizationGate | None = getattr(request.app.state, "gate", None)
    request.state.session = None
    if gate is None:
        return await call_next(request)

    required = gate.required_permission(request.method, request.url.path)
    if required is None:
        return await call_next(request)

    token = request.cookies.get(request.app.state.cookie_name)
    # check() reads the sessions table; keep blocking I/O off the event loop.
    decision = await run_in_threadpool(gate.check, required, token)
    if not decision.allowed:
        return JSONResponse(status_code=403, content=FORBIDDEN_BODY)
    request.state.session = decision.session
    return await call_next(request)


def get_current_session(request: Request) -> Session:
    """Return the Session attached by the gate middleware. Raises HTTP 403 if absent.

    Use as a FastAPI dependency on routes listed in the route table:
        @router.get("/reports")
        async def reports(session: Session = Depends(get_current_session)): ...
    """
    session: Session | None = getattr(request.state, "session", None)
    if session is None:
        raise HTTPException(status_code=403, detail=FORBIDDEN_BODY["error"])
    return session
