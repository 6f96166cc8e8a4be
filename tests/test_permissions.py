import pytest

from app.redline.permissions import (
    can_access_club,
    club_permissions_for,
    effective_club_role,
    has_club_permission,
    has_club_role,
    has_site_permission,
    is_site_admin,
    site_permissions_for,
)


@pytest.mark.parametrize("role,expected", [("SUPER_ADMIN", True), ("ADMIN", True), ("USER", False), (None, False)])
def test_is_site_admin(role, expected):
    assert is_site_admin(role) is expected


def test_site_permissions_by_role():
    assert has_site_permission("SUPER_ADMIN", "system:logs")
    assert has_site_permission("ADMIN", "users:ban")
    assert not has_site_permission("ADMIN", "users:promote")
    assert not has_site_permission("ADMIN", "system:logs")
    assert site_permissions_for("USER") == ["clubs:create"]
    assert site_permissions_for(None) == []


def test_site_admins_act_as_club_admin():
    assert effective_club_role("ADMIN", None) == "ADMIN"
    assert effective_club_role("SUPER_ADMIN", "MEMBER") == "ADMIN"
    assert effective_club_role("USER", "MODERATOR") == "MODERATOR"
    assert effective_club_role("USER", None) is None


def test_club_permissions_by_membership_role():
    assert has_club_permission("USER", "ADMIN", "members:ban")
    assert has_club_permission("USER", "MODERATOR", "posts:moderate")
    assert not has_club_permission("USER", "MODERATOR", "members:ban")
    assert has_club_permission("USER", "MEMBER", "posts:create")
    assert not has_club_permission("USER", "MEMBER", "analytics:view")
    assert not has_club_permission("USER", None, "club:read")
    assert has_club_permission("ADMIN", None, "analytics:export")


def test_club_role_ranking():
    assert has_club_role("USER", "ADMIN", "MODERATOR")
    assert has_club_role("USER", "MODERATOR", "MODERATOR")
    assert not has_club_role("USER", "MEMBER", "MODERATOR")
    assert not has_club_role("USER", None, "MEMBER")
    assert has_club_role("SUPER_ADMIN", None, "ADMIN")


def test_private_club_visibility():
    assert can_access_club("USER", None, False)
    assert not can_access_club("USER", None, True)
    assert can_access_club("USER", "MEMBER", True)
    assert can_access_club("ADMIN", None, True)
    assert can_access_club(None, None, False)


def test_club_permissions_for_lists_sorted_permissions():
    member = club_permissions_for("USER", "MEMBER")
    assert member == sorted(member)
    assert "posts:create" in member
    assert club_permissions_for("USER", None) == []
    assert len(club_permissions_for("ADMIN", None)) > len(club_permissions_for("USER", "MODERATOR")) > len(member)
