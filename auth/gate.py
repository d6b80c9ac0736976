"""
auth/gate.py -- Per-request authorization decision.

AuthorizationGate answers one question: given the permission a route
requires and the session token the caller presented, may the call proceed?

It reads Session rows only (through SessionAuthority.resolve_session); it
never looks at users, groups or permissions. What a session may do was fixed
when it was issued.

Every denial is the same ForbiddenError / Forbidden decision regardless of
cause. The cause is kept in GateDecision.reason for internal logging only.

Route table keys are "METHOD_/path", e.g. "GET_/api/v1/auth/session".

Wildcard note: a session holding "*" is NOT treated as holding every
permission. "*" is matched literally like any other name.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from auth.errors import AuthError, ForbiddenError, NotFoundError
from auth.models import Session
from auth.sessions import SessionAuthority

logger = logging.getLogger("permgate.auth")


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    session: Session | None = None
    required: str | None = None
    reason: str = ""


def route_key(method: str, path: str) -> str:
    return f"{method.upper()}_{path}"


class AuthorizationGate:
    """Enforce a static route -> permission table against session tokens.

    Usage:
        gate = AuthorizationGate(authority, {"GET_/reports": "reports.read"})
        decision = gate.check(gate.required_permission("GET", "/reports"), token)
        if decision.allowed:
            handle(decision.session)
    """

    def __init__(self, authority: SessionAuthority, route_permissions: Mapping[str, str] | None = None) -> None:
        self.authority = authority
        self.route_permissions: dict[str, str] = dict(route_permissions or {})

    def required_permission(self, method: str, path: str) -> str | None:
        """Return the permission a route needs, or None if it is public."""
        return self.route_permissions.get(route_key(method, path)) or None

    def check(self, required: str | None, token: str | None) -> GateDecision:
        """Decide whether a caller holding token may use a route needing required."""
        if required is None:
            return GateDecision(allowed=True)
        if not token:
            return self._deny(required, "no session token")
        try:
            session = self.authority.resolve_session(token)
        except NotFoundError:
            return self._deny(required, "unknown session token")
        except AuthError as exc:
            logger.warning("Session lookup failed during authorization: %s", exc)
            return self._deny(required, f"session lookup failed ({exc.kind.value})")
        except Exception:
            logger.exception("Unexpected error resolving session during authorization")
            return self._deny(required, "session lookup failed (internal error)")
        if not session.grants(required):
            return self._deny(required, f"session for {session.username} lacks permission")
        return GateDecision(allowed=True, session=session, required=required)

    def authorize(self, required: str | None, token: str | None) -> Session | None:
        """Like check(), but raise ForbiddenError on denial.

        Returns the resolved Session, or None for a public route.
        """
        decision = self.check(required, token)
        if not decision.allowed:
            raise ForbiddenError(required, decision.reason)
        return decision.session

    def _deny(self, required: str, reason: str) -> GateDecision:
        logger.info("Authorization denied (%s): %s", required, reason)
        return GateDecision(allowed=False, required=required, reason=reason)
