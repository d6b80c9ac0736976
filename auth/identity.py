"""
auth/identity.py -- User, group and permission management.

IdentityManager is the only writer of users, groups, permissions and their
membership edges. It owns the lookup-then-act sequencing (resolve names to
rows, pre-check duplicates) and leaves uniqueness itself to the store's
constraints: a pre-check that passes can still lose a race, in which case the
store raises DuplicateKeyError / AlreadyExistsError and that propagates.

Membership asymmetry:
  add_*     -> AlreadyExistsError when the edge is already there
  remove_*  -> silent no-op when the edge is missing
This matches how earlier deployments behaved and callers rely on remove being
safe to repeat.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from auth.errors import AlreadyExistsError, DuplicateKeyError, NotFoundError
from auth.models import PERM_DELIMITER, Group, Permission, User
from auth.passwords import DEFAULT_ROUNDS, hash_password
from auth.store import CredentialStore

logger = logging.getLogger("permgate.auth")


def _validate_name(kind: str, name: str) -> None:
    if not name or not name.strip():
        raise ValueError(f"{kind} name must not be empty")


class IdentityManager:
    """CRUD over users, groups and permissions, plus membership edges.

    Usage:
        manager = IdentityManager(store, bcrypt_rounds=12)
        manager.create_permission("reports.read")
        manager.create_group("analysts")
        manager.add_permission_to_group("analysts", "reports.read")
        manager.create_user(User(username="alice", enabled=True), password="s3cret")
        manager.add_user_to_group("alice", "analysts")
    """

    def __init__(self, store: CredentialStore, bcrypt_rounds: int = DEFAULT_ROUNDS) -> None:
        self.store = store
        self.bcrypt_rounds = bcrypt_rounds

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User, password: str | None = None) -> int:
        """Create a user and return its ID.

        If password is given it is hashed and replaces user.password_hash.
        Raises DuplicateKeyError if the username is taken, ValueError if the
        password is longer than bcrypt accepts (72 UTF-8 bytes); nothing is
        written in either case.
        """
        _validate_name("user", user.username)
        if self.store.get_user(user.username) is not None:
            raise DuplicateKeyError("user", user.username)
        if password is not None:
            user.password_hash = hash_password(password, self.bcrypt_rounds)
        user.id = self.store.create_user(user)
        logger.info("User created: %s", user.username)
        return user.id

    def get_user(self, username: str) -> User:
        """Return the user with its groups loaded. Raises NotFoundError."""
        user = self.store.get_user(username, with_groups=True)
        if user is None:
            raise NotFoundError("user", username)
        return user

    def list_users(self) -> list[User]:
        return self.store.list_users()

    def remove_user(self, username: str) -> None:
        """Delete a user and its group memberships.

        Sessions already issued to the user are snapshots and stay valid.
        """
        if not self.store.delete_user(username):
            raise NotFoundError("user", username)
        logger.info("User removed: %s", username)

    def rotate_password(self, username: str, new_password: str) -> None:
        """Replace the stored hash. Existing sessions are not invalidated.

        Raises ValueError for a password over 72 UTF-8 bytes.
        """
        if self.store.get_user(username) is None:
            raise NotFoundError("user", username)
        hashed = hash_password(new_password, self.bcrypt_rounds)
        if not self.store.update_user(username, password_hash=hashed):
            raise NotFoundError("user", username)
        logger.info("Password rotated for user: %s", username)

    def set_enabled(self, username: str, enabled: bool) -> None:
        """Set the enabled flag. Setting it to its current value is a no-op.

        Existing sessions are not invalidated by disabling an account.
        """
        if not self.store.update_user(username, enabled=enabled):
            raise NotFoundError("user", username)
        logger.info("User %s: %s", "enabled" if enabled else "disabled", username)

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def create_group(self, name: str) -> int:
        _validate_name("group", name)
        if self.store.get_group(name) is not None:
            raise DuplicateKeyError("group", name)
        group_id = self.store.create_group(name)
        logger.info("Group created: %s", name)
        return group_id

    def remove_group(self, name: str) -> None:
        """Delete a group and every user/permission edge attached to it."""
        if not self.store.delete_group(name):
            raise NotFoundError("group", name)
        logger.info("Group removed: %s", name)

    def list_groups(self) -> list[Group]:
        return self.store.list_groups()

    def list_group_members(self, name: str) -> list[str]:
        if self.store.get_group(name) is None:
            raise NotFoundError("group", name)
        return self.store.list_group_members(name)

    def get_group(self, name: str) -> Group:
        """Return the group with its permissions loaded. Raises NotFoundError."""
        group = self.store.get_group(name, with_permissions=True)
        if group is None:
            raise NotFoundError("group", name)
        return group

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def create_permission(self, name: str) -> int:
        """Create a permission.

        Names may not contain the session delimiter "|"; such a name could
        never be matched exactly inside a flattened permission string.
        """
        _validate_name("permission", name)
        if PERM_DELIMITER in name:
            raise ValueError(f"permission name must not contain {PERM_DELIMITER!r}")
        if self.store.get_permission(name) is not None:
            raise DuplicateKeyError("permission", name)
        perm_id = self.store.create_permission(name)
        logger.info("Permission created: %s", name)
        return perm_id

    def remove_permission(self, name: str) -> None:
        """Delete a permission and revoke it from every group."""
        if not self.store.delete_permission(name):
            raise NotFoundError("permission", name)
        logger.info("Permission removed: %s", name)

    def list_permissions(self) -> list[Permission]:
        return self.store.list_permissions()

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def add_user_to_group(self, username: str, groupname: str) -> None:
        user = self.store.get_user(username, with_groups=True)
        if user is None:
            raise NotFoundError("user", username)
        if any(g.name == groupname for g in user.groups):
            raise AlreadyExistsError("group", username, groupname)
        group = self.store.get_group(groupname)
        if group is None:
            raise NotFoundError("group", groupname)
        self.store.attach_user_group(user, group)
        logger.info("User %s added to group %s", username, groupname)

    def remove_user_from_group(self, username: str, groupname: str) -> None:
        """Remove a membership. Does nothing if the user is not in the group."""
        user = self.store.get_user(username, with_groups=True)
        if user is None:
            raise NotFoundError("user", username)
        for group in user.groups:
            if group.name == groupname:
                self.store.detach_user_group(user, group)
                logger.info("User %s removed from group %s", username, groupname)
                return

    def add_permission_to_group(self, groupname: str, permname: str) -> None:
        group = self.store.get_group(groupname, with_permissions=True)
        if group is None:
            raise NotFoundError("group", groupname)
        if any(p.name == permname for p in group.permissions):
            raise AlreadyExistsError("permission", groupname, permname)
        perm = self.store.get_permission(permname)
        if perm is None:
            raise NotFoundError("permission", permname)
        self.store.attach_group_permission(group, perm)
        logger.info("Permission %s granted to group %s", permname, groupname)

    def remove_permission_from_group(self, groupname: str, permname: str) -> None:
        """Revoke a permission from a group. Does nothing if it was not granted."""
        group = self.store.get_group(groupname, with_permissions=True)
        if group is None:
            raise NotFoundError("group", groupname)
        for perm in group.permissions:
            if perm.name == permname:
                self.store.detach_group_permission(group, perm)
                logger.info("Permission %s revoked from group %s", permname, groupname)
                return
