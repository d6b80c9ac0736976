"""
api/routes/v1/auth.py -- Login and session inspection endpoints.

Routes:
  POST /api/v1/auth          -- password login; returns the session id and sets the session cookie
  GET  /api/v1/auth/session  -- the session the gate attached to this request

Security:
  Login failures return one generic 401 ("bad_credentials") whether the
  username is unknown, the account disabled, or the password wrong.
  Cache-Control: no-store on login responses.
  GET /auth/session is only useful when listed in ROUTE_PERMISSIONS; the gate
  middleware resolves the cookie and attaches the Session before this
  handler runs.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import AuthRequest, AuthResponse, SessionResponse
from auth.dependencies import get_current_session
from auth.errors import InvalidCredentialsError
from auth.models import Session
from auth.sessions import CookieDirectives, SessionAuthority

router = APIRouter()


def _apply_cookie(response: JSONResponse, cookie: CookieDirectives) -> None:
    """Write the session cookie described by the authority onto the response."""
    response.set_cookie(
        cookie.name,
        value=cookie.value,
        max_age=cookie.max_age,
        expires=cookie.expires,
        path=cookie.path,
        domain=cookie.domain,
        secure=cookie.secure,
        httponly=cookie.httponly,
        samesite=cookie.samesite,
    )


@router.post("/auth", response_model=AuthResponse)
def login(request: Request, body: AuthRequest) -> JSONResponse:
    """Authenticate with username and password; set the session cookie.

    Storage failures are not caught here; the generic exception handler turns
    them into a 500 without leaking details.
    """
    authority: SessionAuthority = request.app.state.authority
    try:
        result = authority.login(body.username, body.password)
    except InvalidCredentialsError:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid username or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    resp = JSONResponse(status_code=200, content=AuthResponse(session_id=result.session_id).model_dump())
    _apply_cookie(resp, result.cookie)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/auth/session", response_model=SessionResponse)
async def current_session(session: Session = Depends(get_current_session)) -> SessionResponse:
    """Return the username and permission snapshot of the caller's session."""
    return SessionResponse(
        username=session.username,
        permissions=session.permission_list(),
        created_at=session.created_at,
    )
