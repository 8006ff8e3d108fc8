import pytest

from facility_auth.common import OrganizationRole, SystemRole, UnknownRoleError


@pytest.mark.parametrize(
    ("role", "minimum_role", "expected"),
    [
        (OrganizationRole.SUPER_ADMIN, OrganizationRole.ADMIN, True),
        (OrganizationRole.SUPER_ADMIN, OrganizationRole.TABLET, True),
        (OrganizationRole.ADMIN, OrganizationRole.ADMIN, True),
        (OrganizationRole.ADMIN, OrganizationRole.USER, True),
        (OrganizationRole.ADMIN, OrganizationRole.SUPER_ADMIN, False),
        (OrganizationRole.USER, OrganizationRole.ADMIN, False),
        (OrganizationRole.USER, OrganizationRole.NO_ACCESS, True),
        (OrganizationRole.TABLET, OrganizationRole.TABLET, True),
        (OrganizationRole.TABLET, OrganizationRole.USER, False),
        (OrganizationRole.TABLET, OrganizationRole.NO_ACCESS, True),
        (OrganizationRole.ADMIN, OrganizationRole.TABLET, False),
        (OrganizationRole.NO_ACCESS, OrganizationRole.NO_ACCESS, True),
        (OrganizationRole.NO_ACCESS, OrganizationRole.USER, False),
    ],
)
def test_check_permission(
    role: OrganizationRole,
    minimum_role: OrganizationRole,
    expected: bool,  # noqa: FBT001
) -> None:
    """Test the organization role hierarchy, including the tablet tier."""
    assert role.check_permission(minimum_role) is expected


def test_check_permission_unknown_role() -> None:
    """Test that a role value with no rule raises instead of denying."""
    with pytest.raises(UnknownRoleError):
        OrganizationRole.ADMIN.check_permission(99)


def test_roles_are_ordered() -> None:
    """Test that stored integer values follow the declared order."""
    assert [int(role) for role in OrganizationRole] == [0, 1, 2, 3, 4]
    assert SystemRole.NO_ACCESS < SystemRole.USER < SystemRole.MASTER


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (2, SystemRole.MASTER),
        ("1", SystemRole.USER),
        (0, SystemRole.NO_ACCESS),
        (None, SystemRole.NO_ACCESS),
        (7, SystemRole.NO_ACCESS),
    ],
)
def test_system_role_parse(value: int | str | None, expected: SystemRole) -> None:
    """Test parsing stored and claimed system roles."""
    assert SystemRole.parse(value) is expected
