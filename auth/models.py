"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class. Stores and services do the work; the only logic here is
Session.grants(), which belongs with the flattened permission string it reads.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import cached_property

# Every permission name in a session's flattened string is wrapped in this
# delimiter: "|read||write|". Permission names may not contain it.
PERM_DELIMITER = "|"


@dataclass
class Permission:
    name: str
    id: int | None = None


@dataclass
class Group:
    """A named bundle of permissions.

    permissions is only populated when the group was loaded with
    with_permissions=True (or through a user's two-hop load).
    """

    name: str
    id: int | None = None
    permissions: list[Permission] = field(default_factory=list)


@dataclass
class User:
    """An identity that can authenticate.

    enabled is tri-state: None means the flag was never set and is NOT treated
    as disabled. Only an explicit False blocks authentication.

    groups is only populated by the eager-loading store reads.
    """

    username: str
    id: int | None = None
    enabled: bool | None = None
    name: str = ""
    email: str = ""
    password_hash: str = ""
    groups: list[Group] = field(default_factory=list)


@dataclass
class Session:
    """A point-in-time snapshot of an authenticated identity.

    id is the opaque session token itself. username and perms are copies taken
    at authentication time; later membership changes do not reach them.
    """

    id: str
    username: str
    perms: str = ""
    created_at: str | None = None

    @cached_property
    def permission_names(self) -> frozenset[str]:
        # Parsed once per object. Equivalent to testing "|name|" as a substring
        # of perms for any name without the delimiter, minus the false
        # positives an empty name would produce ("||" spans two tokens).
        return frozenset(p for p in self.perms.split(PERM_DELIMITER) if p)

    def grants(self, permission: str) -> bool:
        """Return True if this session was issued with the named permission."""
        if not permission or PERM_DELIMITER in permission:
            return False
        return permission in self.permission_names

    def permission_list(self) -> list[str]:
        """Permission names in snapshot order, duplicates kept."""
        return [p for p in self.perms.split(PERM_DELIMITER) if p]
