"""Unit tests for auth/identity.py -- IdentityManager.

Covers:
- create_* pre-checks (DuplicateKeyError, empty names, "|" in permission names)
- NotFoundError contracts for every operation that names an entity
- add_* raises AlreadyExistsError; remove_* is a silent no-op when the edge is absent
- password rotation and enable/disable write through to the store
- passwords over bcrypt's 72-byte limit are rejected before anything is written
- removing a group or permission cascades to its edges
"""

from __future__ import annotations

import pytest

from auth.errors import AlreadyExistsError, DuplicateKeyError, ErrorKind, NotFoundError
from auth.identity import IdentityManager
from auth.models import User
from auth.passwords import verify_password

# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class TestUsers:
    def test_create_sets_id(self, manager: IdentityManager) -> None:
        user = User(username="alice", enabled=True)
        user_id = manager.create_user(user)
        assert user_id > 0
        assert user.id == user_id

    def test_create_hashes_password(self, manager: IdentityManager) -> None:
        manager.create_user(User(username="alice"), password="s3cret")
        stored = manager.get_user("alice")
        assert stored.password_hash != "s3cret"
        assert verify_password("s3cret", stored.password_hash)

    def test_create_duplicate(self, manager: IdentityManager) -> None:
        manager.create_user(User(username="alice"))
        with pytest.raises(DuplicateKeyError):
            manager.create_user(User(username="alice"))

    def test_create_empty_username(self, manager: IdentityManager) -> None:
        with pytest.raises(ValueError):
            manager.create_user(User(username=""))

    def test_create_with_overlong_password_writes_nothing(self, manager: IdentityManager) -> None:
        with pytest.raises(ValueError):
            manager.create_user(User(username="alice"), password="é" * 40)
        assert manager.list_users() == []

    def test_rotate_to_overlong_password(self, seeded_manager: IdentityManager) -> None:
        before = seeded_manager.get_user("usera").password_hash
        with pytest.raises(ValueError):
            seeded_manager.rotate_password("usera", "x" * 73)
        assert seeded_manager.get_user("usera").password_hash == before

    def test_get_user_loads_groups(self, seeded_manager: IdentityManager) -> None:
        user = seeded_manager.get_user("usera")
        assert user.name == "User A"
        assert user.email == "mail@mail.com"
        assert [g.name for g in user.groups] == ["groupa"]

    def test_get_missing_user(self, manager: IdentityManager) -> None:
        with pytest.raises(NotFoundError) as excinfo:
            manager.get_user("ghost")
        assert excinfo.value.kind is ErrorKind.NOT_FOUND
        assert excinfo.value.entity == "user"
        assert excinfo.value.key == "ghost"

    def test_list_users(self, manager: IdentityManager) -> None:
        manager.create_user(User(username="bob"))
        manager.create_user(User(username="alice"))
        assert {u.username for u in manager.list_users()} == {"alice", "bob"}

    def test_remove_user(self, seeded_manager: IdentityManager) -> None:
        seeded_manager.remove_user("usera")
        with pytest.raises(NotFoundError):
            seeded_manager.get_user("usera")
        assert seeded_manager.list_group_members("groupa") == []

    def test_remove_missing_user(self, manager: IdentityManager) -> None:
        with pytest.raises(NotFoundError):
            manager.remove_user("ghost")

    def test_rotate_password(self, seeded_manager: IdentityManager) -> None:
        seeded_manager.rotate_password("usera", "newpass")
        hashed = seeded_manager.get_user("usera").password_hash
        assert verify_password("newpass", hashed)
        assert not verify_password("usera123", hashed)

    def test_rotate_password_missing_user(self, manager: IdentityManager) -> None:
        with pytest.raises(NotFoundError):
            manager.rotate_password("ghost", "x")

    def test_set_enabled(self, seeded_manager: IdentityManager) -> None:
        seeded_manager.set_enabled("usera", False)
        assert seeded_manager.get_user("usera").enabled is False
        seeded_manager.set_enabled("usera", True)
        assert seeded_manager.get_user("usera").enabled is True

    def test_set_enabled_same_value_is_noop(self, seeded_manager: IdentityManager) -> None:
        seeded_manager.set_enabled("usera", True)
        seeded_manager.set_enabled("usera", True)
        assert seeded_manager.get_user("usera").enabled is True

    def test_set_enabled_missing_user(self, manager: IdentityManager) -> None:
        with pytest.raises(NotFoundError):
            manager.set_enabled("ghost", True)


# ---------------------------------------------------------------------------
# Groups and permissions
# ---------------------------------------------------------------------------


class TestGroupsAndPermissions:
    def test_create_group_duplicate(self, manager: IdentityManager) -> None:
        manager.create_group("g")
        with pytest.raises(DuplicateKeyError):
            manager.create_group("g")

    def test_create_group_empty_name(self, manager: IdentityManager) -> None:
        with pytest.raises(ValueError):
            manager.create_group("  ")

    def test_remove_missing_group(self, manager: IdentityManager) -> None:
        with pytest.raises(NotFoundError):
            manager.remove_group("nope")

    def test_members_of_missing_group(self, manager: IdentityManager) -> None:
        with pytest.raises(NotFoundError):
            manager.list_group_members("nope")

    def test_get_group_loads_permissions(self, seeded_manager: IdentityManager) -> None:
        assert [p.name for p in seeded_manager.get_group("groupa").permissions] == ["perma"]

    def test_get_missing_group(self, manager: IdentityManager) -> None:
        with pytest.raises(NotFoundError):
            manager.get_group("nope")

    def test_remove_group_cascades(self, seeded_manager: IdentityManager) -> None:
        seeded_manager.remove_group("groupa")
        assert seeded_manager.get_user("usera").groups == []
        assert [p.name for p in seeded_manager.list_permissions()] == ["perma"]

    def test_list_groups(self, manager: IdentityManager) -> None:
        manager.create_group("a")
        manager.create_group("b")
        assert sorted(g.name for g in manager.list_groups()) == ["a", "b"]

    def test_create_permission_duplicate(self, manager: IdentityManager) -> None:
        manager.create_permission("p")
        with pytest.raises(DuplicateKeyError):
            manager.create_permission("p")

    def test_permission_name_with_delimiter_rejected(self, manager: IdentityManager) -> None:
        with pytest.raises(ValueError):
            manager.create_permission("a|b")
        assert manager.list_permissions() == []

    def test_remove_permission_cascades(self, seeded_manager: IdentityManager) -> None:
        seeded_manager.remove_permission("perma")
        assert seeded_manager.get_group("groupa").permissions == []

    def test_remove_missing_permission(self, manager: IdentityManager) -> None:
        with pytest.raises(NotFoundError):
            manager.remove_permission("nope")


# ---------------------------------------------------------------------------
# Membership edges
# ---------------------------------------------------------------------------


class TestUserGroupMembership:
    def test_add_twice_raises_already_exists(self, seeded_manager: IdentityManager) -> None:
        with pytest.raises(AlreadyExistsError) as excinfo:
            seeded_manager.add_user_to_group("usera", "groupa")
        err = excinfo.value
        assert err.kind is ErrorKind.ALREADY_EXISTS
        assert (err.left, err.right) == ("usera", "groupa")

    def test_add_missing_user(self, seeded_manager: IdentityManager) -> None:
        with pytest.raises(NotFoundError) as excinfo:
            seeded_manager.add_user_to_group("ghost", "groupa")
        assert excinfo.value.entity == "user"

    def test_add_missing_group(self, seeded_manager: IdentityManager) -> None:
        with pytest.raises(NotFoundError) as excinfo:
            seeded_manager.add_user_to_group("usera", "nope")
        assert excinfo.value.entity == "group"

    def test_remove(self, seeded_manager: IdentityManager) -> None:
        seeded_manager.remove_user_from_group("usera", "groupa")
        assert seeded_manager.get_user("usera").groups == []

    def test_remove_absent_edge_is_silent(self, seeded_manager: IdentityManager) -> None:
        seeded_manager.remove_user_from_group("usera", "groupa")
        seeded_manager.remove_user_from_group("usera", "groupa")
        seeded_manager.remove_user_from_group("usera", "no-such-group")

    def test_remove_missing_user(self, seeded_manager: IdentityManager) -> None:
        with pytest.raises(NotFoundError):
            seeded_manager.remove_user_from_group("ghost", "groupa")

    def test_group_order_follows_attach_order(self, manager: IdentityManager) -> None:
        manager.create_user(User(username="alice"))
        for name in ("c", "a", "b"):
            manager.create_group(name)
            manager.add_user_to_group("alice", name)
        assert [g.name for g in manager.get_user("alice").groups] == ["c", "a", "b"]


class TestGroupPermissionGrants:
    def test_grant_twice_raises_already_exists(self, seeded_manager: IdentityManager) -> None:
        with pytest.raises(AlreadyExistsError) as excinfo:
            seeded_manager.add_permission_to_group("groupa", "perma")
        assert (excinfo.value.left, excinfo.value.right) == ("groupa", "perma")

    def test_grant_missing_group(self, seeded_manager: IdentityManager) -> None:
        with pytest.raises(NotFoundError) as excinfo:
            seeded_manager.add_permission_to_group("nope", "perma")
        assert excinfo.value.entity == "group"

    def test_grant_missing_permission(self, seeded_manager: IdentityManager) -> None:
        with pytest.raises(NotFoundError) as excinfo:
            seeded_manager.add_permission_to_group("groupa", "nope")
        assert excinfo.value.entity == "permission"

    def test_revoke_only_named_permission(self, seeded_manager: IdentityManager) -> None:
        seeded_manager.create_permission("permb")
        seeded_manager.add_permission_to_group("groupa", "permb")
        seeded_manager.remove_permission_from_group("groupa", "perma")
        assert [p.name for p in seeded_manager.get_group("groupa").permissions] == ["permb"]

    def test_revoke_absent_grant_is_silent(self, seeded_manager: IdentityManager) -> None:
        seeded_manager.remove_permission_from_group("groupa", "no-such-perm")
        assert [p.name for p in seeded_manager.get_group("groupa").permissions] == ["perma"]

    def test_revoke_missing_group(self, seeded_manager: IdentityManager) -> None:
        with pytest.raises(NotFoundError):
            seeded_manager.remove_permission_from_group("nope", "perma")
