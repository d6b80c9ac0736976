"""
auth/sessions.py -- Authentication and session issuance.

SessionAuthority turns a username/password pair into an opaque session token
and turns a token back into a Session.

Security design decisions:
  Undifferentiated failure: an unknown username, a disabled account and a
       wrong password all raise the same InvalidCredentialsError. The store
       query filters disabled users out, so "disabled" and "absent" look the
       same from here; bcrypt then runs against a dummy hash at the same cost
       so the three cases also take the same time.

  Snapshot permissions: the user's groups and their permissions are read once,
       flattened into "|perm||perm|..." and stored on the session. Membership
       changes after login do not reach existing sessions.

  Tokens: session_token_length characters drawn with secrets.choice from
       A-Z0-9 (32 chars ~ 165 bits). No uniqueness pre-check is made: the
       session id is the primary key, so the astronomically unlikely collision
       is rejected by the store as DuplicateKeyError rather than overwriting
       another session.

  No expiry: sessions live until their row is deleted out of band. The cookie
       carries a 10-year expiry to match.

Layer rule: no imports from api/ or core/. The HTTP layer applies the
CookieDirectives returned by login(); nothing here knows about responses.
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from auth.errors import InvalidCredentialsError, NotFoundError
from auth.models import PERM_DELIMITER, Group, Session
from auth.passwords import DEFAULT_ROUNDS, hash_password, verify_password
from auth.store import CredentialStore

logger = logging.getLogger("permgate.auth")

TOKEN_ALPHABET = string.ascii_uppercase + string.digits
DEFAULT_TOKEN_LENGTH = 32
DEFAULT_COOKIE_NAME = "SESSIONID"
DEFAULT_COOKIE_EXPIRE_DAYS = 3650


@dataclass(frozen=True)
class CookieDirectives:
    """How the HTTP boundary should deliver the session token.

    domain=None leaves the Domain attribute off, so the cookie is not
    restricted beyond the host that set it.
    """

    name: str
    value: str
    expires: datetime
    max_age: int
    path: str = "/"
    domain: str | None = None
    secure: bool = True
    httponly: bool = True
    samesite: str = "lax"


@dataclass(frozen=True)
class LoginResult:
    session_id: str
    cookie: CookieDirectives


def generate_session_token(length: int = DEFAULT_TOKEN_LENGTH) -> str:
    """Return a cryptographically random token of uppercase letters and digits."""
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def flatten_permissions(groups: list[Group]) -> str:
    """Concatenate every permission of every group as "|name|".

    Order follows the groups list, then each group's permission list. Names
    granted by more than one group appear more than once.
    """
    return "".join(f"{PERM_DELIMITER}{p.name}{PERM_DELIMITER}" for g in groups for p in g.permissions)


class SessionAuthority:
    """Verify credentials, mint sessions, resolve tokens.

    Usage:
        authority = SessionAuthority(store, bcrypt_rounds=12)
        token = authority.authenticate("alice", "s3cret")
        session = authority.resolve_session(token)
        session.grants("reports.read")
    """

    def __init__(
        self,
        store: CredentialStore,
        token_length: int = DEFAULT_TOKEN_LENGTH,
        bcrypt_rounds: int = DEFAULT_ROUNDS,
        cookie_name: str = DEFAULT_COOKIE_NAME,
        cookie_expire_days: int = DEFAULT_COOKIE_EXPIRE_DAYS,
        secure_cookies: bool = True,
    ) -> None:
        self.store = store
        self.token_length = token_length
        self.cookie_name = cookie_name
        self.cookie_expire_days = cookie_expire_days
        self.secure_cookies = secure_cookies
        # Same cost as real hashes so a miss costs as much as a wrong password.
        self._dummy_hash = hash_password("permgate_timing_dummy", bcrypt_rounds)

    def authenticate(self, username: str, password: str) -> str:
        """Verify credentials and return a new session token.

        Raises InvalidCredentialsError on any credential failure. Storage
        errors propagate unchanged as StorageFailureError.
        """
        user = self.store.get_user_with_permissions(username, enabled_only=True)
        hashed = user.password_hash if user is not None and user.password_hash else self._dummy_hash
        # bcrypt runs first on every path; a dummy-hash match still fails below.
        if not verify_password(password, hashed) or user is None or not user.password_hash:
            logger.info("Authentication failed for username %r", username)
            raise InvalidCredentialsError()

        session = Session(
            id=generate_session_token(self.token_length),
            username=user.username,
            perms=flatten_permissions(user.groups),
        )
        self.store.create_session(session)
        logger.info("Session issued for user %s (%d groups)", user.username, len(user.groups))
        return session.id

    def resolve_session(self, token: str) -> Session:
        """Return the Session for token. Raises NotFoundError if there is none."""
        session = self.store.get_session(token) if token else None
        if session is None:
            raise NotFoundError("session", token[:4] + "..." if token else "")
        return session

    def cookie_for(self, session_id: str) -> CookieDirectives:
        expires = datetime.now(timezone.utc) + timedelta(days=self.cookie_expire_days)
        return CookieDirectives(
            name=self.cookie_name,
            value=session_id,
            expires=expires,
            max_age=self.cookie_expire_days * 24 * 60 * 60,
            secure=self.secure_cookies,
        )

    def login(self, username: str, password: str) -> LoginResult:
        """authenticate() plus the cookie the HTTP layer should set."""
        session_id = self.authenticate(username, password)
        return LoginResult(session_id=session_id, cookie=self.cookie_for(session_id))
