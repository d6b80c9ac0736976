"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. CredentialStore is the repository; the
_row_to_* functions are the mappers. Identity and session code never touches
SQL directly.

Uses SQLAlchemy Core (not ORM) so the dataclasses in auth/models.py remain
the authoritative domain representation. Swapping the embedded SQLite file
for SQL Server or PostgreSQL is a connection string change (see
build_db_url()).

Uniqueness is owned by the schema, not by callers:
  users.username, groups.name, permissions.name      UNIQUE
  user_groups (user_id, group_id)                    UNIQUE
  group_perms (group_id, perm_id)                    UNIQUE
  sessions.id                                        PRIMARY KEY
Pre-checks in IdentityManager are a courtesy; a concurrent writer that wins
the race is rejected here with DuplicateKeyError / AlreadyExistsError.

Join tables carry an autoincrement id so eager loads can return groups and
permissions in the order the edges were attached.

Error mapping:
  IntegrityError on entity insert  -> DuplicateKeyError
  IntegrityError on edge insert    -> AlreadyExistsError when the edge row is
                                      there, NotFoundError when an endpoint
                                      row is gone (foreign key violation)
  any other SQLAlchemyError        -> StorageFailureError (original in .cause)
Nothing is retried.

Security: all queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    or_,
    select,
    text,
    true,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from auth.errors import AlreadyExistsError, AuthError, DuplicateKeyError, NotFoundError, StorageFailureError
from auth.models import Group, Permission, Session, User

# DB_DRIVER value -> SQLAlchemy dialect used when DB_URL is a bare path/DSN.
_DIALECTS: dict[str, str] = {
    "sqlite": "sqlite",
    "sqlserver": "mssql+pyodbc",
    "postgresql": "postgresql",
}

# Non-SQLAlchemy URL schemes accepted in DB_URL and the dialect they map to.
_URL_SCHEMES: dict[str, str] = {
    "sqlserver": "mssql+pyodbc",
    "postgres": "postgresql",
}

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("enabled", Boolean),  # NULL = never set, not disabled
    Column("name", String(255), nullable=False, server_default=""),
    Column("email", String(255), nullable=False, server_default=""),
    Column("password_hash", Text, nullable=False, server_default=""),
)

_groups = Table(
    "groups",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, unique=True),
)

_permissions = Table(
    "permissions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, unique=True),
)

_user_groups = Table(
    "user_groups",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("group_id", Integer, ForeignKey("groups.id"), nullable=False),
    UniqueConstraint("user_id", "group_id", name="uq_user_group"),
)

_group_perms = Table(
    "group_perms",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("group_id", Integer, ForeignKey("groups.id"), nullable=False),
    Column("perm_id", Integer, ForeignKey("permissions.id"), nullable=False),
    UniqueConstraint("group_id", "perm_id", name="uq_group_perm"),
)

# No foreign key to users: a session is a snapshot and outlives changes to
# (or removal of) the user it was issued for.
_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(128), primary_key=True),
    Column("username", String(255), nullable=False),
    Column("perms", Text, nullable=False, server_default=""),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Connection setup
# ---------------------------------------------------------------------------


def build_db_url(driver: str, url: str) -> str:
    """Turn a (backend name, connection string) pair into a SQLAlchemy URL.

    sqlite     + "auth.db"                      -> "sqlite:///auth.db"
    sqlite     + ":memory:"                     -> "sqlite:///:memory:"
    sqlserver  + "sqlserver://u:p@host/db?..."  -> "mssql+pyodbc://u:p@host/db?..."
    postgresql + "postgresql://u:p@host/db"     -> unchanged

    Any URL that already has a scheme other than the aliases above is passed
    through as-is, so a full SQLAlchemy URL always works.

    ":memory:" gives one connection shared by every thread. It suits the CLI
    and tests, not a server under concurrent load.
    """
    driver = driver.lower()
    if driver not in _DIALECTS:
        raise ValueError(f"Unknown db driver: {driver}")
    if "://" in url:
        scheme, rest = url.split("://", 1)
        if scheme in _URL_SCHEMES:
            return f"{_URL_SCHEMES[scheme]}://{rest}"
        return url
    if driver == "sqlite":
        return f"sqlite:///{url}"
    raise ValueError(f"db driver {driver} requires a connection URL, got {url!r}")


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _is_sqlite_memory(db_url: str) -> bool:
    """True for "sqlite://", "sqlite:///:memory:" and "file:...?mode=memory" URIs."""
    url = make_url(db_url)
    return url.database in (None, "", ":memory:") or url.query.get("mode") == "memory"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def _storage_errors(entity: str | None = None, key: str | None = None) -> Iterator[None]:
    """Convert raw SQLAlchemy errors into StorageFailureError.

    AuthError subclasses raised inside the block (DuplicateKeyError etc.)
    pass through untouched.
    """
    try:
        yield
    except AuthError:
        raise
    except SQLAlchemyError as exc:
        raise StorageFailureError(exc, entity=entity, key=key) from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for users, groups, permissions, their edges, and sessions.

    Usage:
        store = CredentialStore("sqlite:///auth.db")
        store.create_user(User(username="alice", enabled=True))
        user = store.get_user_with_permissions("alice")
        store.close()
    """

    _USER_FIELDS: set = {"enabled", "name", "email", "password_hash"}

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        engine_args: dict = {}
        with _storage_errors():
            if db_url.startswith("sqlite"):
                connect_args["check_same_thread"] = False
                if _is_sqlite_memory(db_url):
                    # One shared connection, otherwise each pooled connection
                    # (and each worker thread) would see its own empty database.
                    engine_args["poolclass"] = StaticPool
            self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_args)
            if db_url.startswith("sqlite"):
                event.listen(self.engine, "connect", _set_sqlite_pragmas)
            _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises DuplicateKeyError if the username already exists.
        """
        with _storage_errors("user", user.username):
            try:
                with self.engine.connect() as conn:
                    result = conn.execute(
                        _users.insert().values(
                            username=user.username,
                            enabled=user.enabled,
                            name=user.name,
                            email=user.email,
                            password_hash=user.password_hash,
                        )
                    )
                    conn.commit()
            except IntegrityError as exc:
                raise DuplicateKeyError("user", user.username) from exc
            return result.inserted_primary_key[0]

    def get_user(self, username: str, with_groups: bool = False) -> User | None:
        """Look up a user by exact username. Returns None if not found.

        with_groups=True also loads the user's groups (one hop, no permissions).
        """
        with _storage_errors("user", username):
            with self.engine.connect() as conn:
                row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
                if row is None:
                    return None
                user = _row_to_user(row)
                if with_groups:
                    rows = conn.execute(
                        select(_groups)
                        .join(_user_groups, _user_groups.c.group_id == _groups.c.id)
                        .where(_user_groups.c.user_id == user.id)
                        .order_by(_user_groups.c.id)
                    ).fetchall()
                    user.groups = [_row_to_group(r) for r in rows]
        return user

    def get_user_with_permissions(self, username: str, enabled_only: bool = False) -> User | None:
        """Load a user, its groups and each group's permissions in one SELECT.

        Groups come back in the order the user was added to them; within a
        group, permissions come back in the order they were granted.

        enabled_only=True adds the predicate "enabled IS NULL OR enabled = true",
        so an explicitly disabled user reads as absent.
        """
        stmt = (
            select(
                _users,
                _groups.c.id.label("group_id"),
                _groups.c.name.label("group_name"),
                _permissions.c.id.label("perm_id"),
                _permissions.c.name.label("perm_name"),
            )
            .select_from(
                _users.outerjoin(_user_groups, _user_groups.c.user_id == _users.c.id)
                .outerjoin(_groups, _groups.c.id == _user_groups.c.group_id)
                .outerjoin(_group_perms, _group_perms.c.group_id == _groups.c.id)
                .outerjoin(_permissions, _permissions.c.id == _group_perms.c.perm_id)
            )
            .where(_users.c.username == username)
            .order_by(_user_groups.c.id, _group_perms.c.id)
        )
        if enabled_only:
            stmt = stmt.where(or_(_users.c.enabled.is_(None), _users.c.enabled == true()))

        with _storage_errors("user", username):
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).fetchall()
        if not rows:
            return None

        user = _row_to_user(rows[0])
        groups: dict[int, Group] = {}
        for row in rows:
            if row.group_id is None:
                continue
            group = groups.get(row.group_id)
            if group is None:
                group = groups[row.group_id] = Group(id=row.group_id, name=row.group_name)
            if row.perm_id is not None:
                group.permissions.append(Permission(id=row.perm_id, name=row.perm_name))
        user.groups = list(groups.values())
        return user

    def list_users(self) -> list[User]:
        """Return all users ordered by username."""
        with _storage_errors("user"):
            with self.engine.connect() as conn:
                rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, username: str, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: enabled, name, email, password_hash. Unknown keys
        raise ValueError. Returns True if a row was updated, False if the
        username was not found.
        """
        unknown = set(fields) - self._USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if not fields:
            return False
        with _storage_errors("user", username):
            with self.engine.connect() as conn:
                result = conn.execute(_users.update().where(_users.c.username == username).values(**fields))
                conn.commit()
        return result.rowcount > 0

    def delete_user(self, username: str) -> bool:
        """Delete a user and its group memberships. Sessions are left alone."""
        with _storage_errors("user", username):
            with self.engine.begin() as conn:
                user_id = conn.execute(select(_users.c.id).where(_users.c.username == username)).scalar()
                if user_id is None:
                    return False
                conn.execute(_user_groups.delete().where(_user_groups.c.user_id == user_id))
                conn.execute(_users.delete().where(_users.c.id == user_id))
        return True

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def create_group(self, name: str) -> int:
        """Insert a group and return its ID. Raises DuplicateKeyError on a name clash."""
        with _storage_errors("group", name):
            try:
                with self.engine.connect() as conn:
                    result = conn.execute(_groups.insert().values(name=name))
                    conn.commit()
            except IntegrityError as exc:
                raise DuplicateKeyError("group", name) from exc
            return result.inserted_primary_key[0]

    def get_group(self, name: str, with_permissions: bool = False) -> Group | None:
        with _storage_errors("group", name):
            with self.engine.connect() as conn:
                row = conn.execute(_groups.select().where(_groups.c.name == name)).fetchone()
                if row is None:
                    return None
                group = _row_to_group(row)
                if with_permissions:
                    rows = conn.execute(
                        select(_permissions)
                        .join(_group_perms, _group_perms.c.perm_id == _permissions.c.id)
                        .where(_group_perms.c.group_id == group.id)
                        .order_by(_group_perms.c.id)
                    ).fetchall()
                    group.permissions = [_row_to_permission(r) for r in rows]
        return group

    def list_groups(self) -> list[Group]:
        with _storage_errors("group"):
            with self.engine.connect() as conn:
                rows = conn.execute(_groups.select().order_by(_groups.c.name)).fetchall()
        return [_row_to_group(r) for r in rows]

    def list_group_members(self, name: str) -> list[str]:
        """Return the usernames in a group, in the order they were added."""
        with _storage_errors("group", name):
            with self.engine.connect() as conn:
                rows = conn.execute(
                    select(_users.c.username)
                    .join(_user_groups, _user_groups.c.user_id == _users.c.id)
                    .join(_groups, _groups.c.id == _user_groups.c.group_id)
                    .where(_groups.c.name == name)
                    .order_by(_user_groups.c.id)
                ).fetchall()
        return [r.username for r in rows]

    def delete_group(self, name: str) -> bool:
        """Delete a group along with its user and permission edges."""
        with _storage_errors("group", name):
            with self.engine.begin() as conn:
                group_id = conn.execute(select(_groups.c.id).where(_groups.c.name == name)).scalar()
                if group_id is None:
                    return False
                conn.execute(_user_groups.delete().where(_user_groups.c.group_id == group_id))
                conn.execute(_group_perms.delete().where(_group_perms.c.group_id == group_id))
                conn.execute(_groups.delete().where(_groups.c.id == group_id))
        return True

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def create_permission(self, name: str) -> int:
        with _storage_errors("permission", name):
            try:
                with self.engine.connect() as conn:
                    result = conn.execute(_permissions.insert().values(name=name))
                    conn.commit()
            except IntegrityError as exc:
                raise DuplicateKeyError("permission", name) from exc
            return result.inserted_primary_key[0]

    def get_permission(self, name: str) -> Permission | None:
        with _storage_errors("permission", name):
            with self.engine.connect() as conn:
                row = conn.execute(_permissions.select().where(_permissions.c.name == name)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def list_permissions(self) -> list[Permission]:
        with _storage_errors("permission"):
            with self.engine.connect() as conn:
                rows = conn.execute(_permissions.select().order_by(_permissions.c.name)).fetchall()
        return [_row_to_permission(r) for r in rows]

    def delete_permission(self, name: str) -> bool:
        """Delete a permission and every group edge that grants it."""
        with _storage_errors("permission", name):
            with self.engine.begin() as conn:
                perm_id = conn.execute(select(_permissions.c.id).where(_permissions.c.name == name)).scalar()
                if perm_id is None:
                    return False
                conn.execute(_group_perms.delete().where(_group_perms.c.perm_id == perm_id))
                conn.execute(_permissions.delete().where(_permissions.c.id == perm_id))
        return True

    # ------------------------------------------------------------------
    # Membership edges
    # ------------------------------------------------------------------

    def _row_exists(self, table: Table, **criteria) -> bool:
        stmt = select(table.c.id)
        for column, value in criteria.items():
            stmt = stmt.where(table.c[column] == value)
        with self.engine.connect() as conn:
            return conn.execute(stmt.limit(1)).first() is not None

    def attach_user_group(self, user: User, group: Group) -> None:
        """Add user to group.

        Raises AlreadyExistsError if the edge exists, NotFoundError if the
        user or group row is gone (e.g. deleted after the caller looked it up).
        """
        with _storage_errors("membership", f"{user.username}:{group.name}"):
            try:
                with self.engine.connect() as conn:
                    conn.execute(_user_groups.insert().values(user_id=user.id, group_id=group.id))
                    conn.commit()
            except IntegrityError as exc:
                if self._row_exists(_user_groups, user_id=user.id, group_id=group.id):
                    raise AlreadyExistsError("group", user.username, group.name) from exc
                if not self._row_exists(_users, id=user.id):
                    raise NotFoundError("user", user.username) from exc
                if not self._row_exists(_groups, id=group.id):
                    raise NotFoundError("group", group.name) from exc
                raise

    def detach_user_group(self, user: User, group: Group) -> bool:
        with _storage_errors("membership", f"{user.username}:{group.name}"):
            with self.engine.connect() as conn:
                result = conn.execute(
                    _user_groups.delete().where(
                        (_user_groups.c.user_id == user.id) & (_user_groups.c.group_id == group.id)
                    )
                )
                conn.commit()
        return result.rowcount > 0

    def attach_group_permission(self, group: Group, permission: Permission) -> None:
        """Grant permission to group.

        Raises AlreadyExistsError if the edge exists, NotFoundError if the
        group or permission row is gone.
        """
        with _storage_errors("membership", f"{group.name}:{permission.name}"):
            try:
                with self.engine.connect() as conn:
                    conn.execute(_group_perms.insert().values(group_id=group.id, perm_id=permission.id))
                    conn.commit()
            except IntegrityError as exc:
                if self._row_exists(_group_perms, group_id=group.id, perm_id=permission.id):
                    raise AlreadyExistsError("permission", group.name, permission.name) from exc
                if not self._row_exists(_groups, id=group.id):
                    raise NotFoundError("group", group.name) from exc
                if not self._row_exists(_permissions, id=permission.id):
                    raise NotFoundError("permission", permission.name) from exc
                raise

    def detach_group_permission(self, group: Group, permission: Permission) -> bool:
        with _storage_errors("membership", f"{group.name}:{permission.name}"):
            with self.engine.connect() as conn:
                result = conn.execute(
                    _group_perms.delete().where(
                        (_group_perms.c.group_id == group.id) & (_group_perms.c.perm_id == permission.id)
                    )
                )
                conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> str:
        """Persist a new session row and return its id.

        created_at is stamped here when the caller left it empty. A token that
        collides with an existing session raises DuplicateKeyError; the key in
        the error is truncated so full tokens never reach logs.
        """
        created_at = session.created_at or _now_iso()
        with _storage_errors("session"):
            try:
                with self.engine.connect() as conn:
                    conn.execute(
                        _sessions.insert().values(
                            id=session.id,
                            username=session.username,
                            perms=session.perms,
                            created_at=created_at,
                        )
                    )
                    conn.commit()
            except IntegrityError as exc:
                raise DuplicateKeyError("session", session.id[:4] + "...") from exc
        session.created_at = created_at
        return session.id

    def get_session(self, session_id: str) -> Session | None:
        with _storage_errors("session"):
            with self.engine.connect() as conn:
                row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def delete_session(self, session_id: str) -> bool:
        """Remove a session row. Nothing in the auth core calls this; it is the
        external-deletion path that ends a session's life."""
        with _storage_errors("session"):
            with self.engine.connect() as conn:
                result = conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
                conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        enabled=None if row.enabled is None else bool(row.enabled),
        name=row.name or "",
        email=row.email or "",
        password_hash=row.password_hash or "",
    )


def _row_to_group(row) -> Group:
    return Group(id=row.id, name=row.name)


def _row_to_permission(row) -> Permission:
    return Permission(id=row.id, name=row.name)


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        username=row.username,
        perms=row.perms or "",
        created_at=row.created_at,
    )
