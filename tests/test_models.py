"""Unit tests for auth/models.py -- Session.grants() delimiter discipline.

Covers:
- exact names are granted, strict substrings / superstrings are not
- duplicates in the snapshot are harmless
- empty names and names containing the delimiter are never granted
- "*" is a literal name, not a wildcard
"""

from __future__ import annotations

from auth.models import Session


def _session(perms: str) -> Session:
    return Session(id="T" * 32, username="usera", perms=perms)


class TestGrants:
    def test_exact_name_granted(self) -> None:
        assert _session("|perma|").grants("perma")

    def test_prefix_of_granted_name_not_granted(self) -> None:
        """Granting read_all must not satisfy a check for read."""
        assert not _session("|read_all|").grants("read")

    def test_extension_of_granted_name_not_granted(self) -> None:
        """Granting read must not satisfy a check for read_all."""
        assert not _session("|read|").grants("read_all")

    def test_suffix_of_granted_name_not_granted(self) -> None:
        assert not _session("|reports.read|").grants("read")

    def test_multiple_and_duplicate_names(self) -> None:
        s = _session("|perma||permb||perma|")
        assert s.grants("perma")
        assert s.grants("permb")
        assert not s.grants("permc")

    def test_empty_name_never_granted(self) -> None:
        """'||' appears between adjacent tokens; an empty name must not match it."""
        assert not _session("|a||b|").grants("")

    def test_name_with_delimiter_never_granted(self) -> None:
        """'a||b' is a substring of '|a||b|' but is not a permission name."""
        assert not _session("|a||b|").grants("a||b")
        assert not _session("|a||b|").grants("a|")

    def test_empty_snapshot_grants_nothing(self) -> None:
        assert not _session("").grants("perma")

    def test_wildcard_is_literal(self) -> None:
        s = _session("|*|")
        assert s.grants("*")
        assert not s.grants("perma")


class TestPermissionList:
    def test_preserves_order_and_duplicates(self) -> None:
        assert _session("|b||a||b|").permission_list() == ["b", "a", "b"]

    def test_empty(self) -> None:
        assert _session("").permission_list() == []
