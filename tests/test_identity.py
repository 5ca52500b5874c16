"""Tests for identity payload resolution."""

import pytest

from xibo_auth.auth.identity import (
    edit_flag,
    extract_user_id,
    group_admin_flag,
    resolve,
    resolve_level,
    role_name,
    super_admin_flags,
    user_type_id,
)
from xibo_auth.auth.permissions import PermissionFlag, Level


class TestLevelRules:
    """Tests for the individual level rules."""

    @pytest.mark.parametrize(
        "value,expected",
        [(1, Level.SUPER_ADMIN), (2, Level.ADMIN), (3, Level.EDITOR), ("1", Level.SUPER_ADMIN), (9, None), (None, None)],
    )
    def test_user_type_id(self, value, expected):
        """Test numeric user type ids map to levels."""
        assert user_type_id({"userTypeId": value}) == expected

    def test_super_admin_flags(self):
        """Test isAdmin and isSuperAdmin both mean super admin."""
        assert super_admin_flags({"isAdmin": True}) == Level.SUPER_ADMIN
        assert super_admin_flags({"isSuperAdmin": 1}) == Level.SUPER_ADMIN
        assert super_admin_flags({"isAdmin": False}) is None

    def test_group_admin_flag(self):
        """Test isGroupAdmin means admin."""
        assert group_admin_flag({"isGroupAdmin": True}) == Level.ADMIN
        assert group_admin_flag({}) is None

    def test_edit_flag(self):
        """Test canEdit means editor."""
        assert edit_flag({"canEdit": "true"}) == Level.EDITOR
        assert edit_flag({"canEdit": "false"}) is None

    def test_role_name(self):
        """Test role names are matched case-insensitively."""
        assert role_name({"role": "Super Admin"}) == Level.SUPER_ADMIN
        assert role_name({"userType": "editor"}) == Level.EDITOR
        assert role_name({"role": "janitor"}) is None


class TestResolve:
    """Tests for resolve()."""

    def test_super_admin_by_type_id(self):
        """Test userTypeId 1 resolves to super_admin with every flag."""
        permissions = resolve({"userTypeId": 1})

        assert permissions.level == Level.SUPER_ADMIN
        assert permissions.flags == frozenset(PermissionFlag)

    def test_editor_by_can_edit(self):
        """Test canEdit resolves to editor with the content flags only."""
        permissions = resolve({"canEdit": True})

        assert permissions.level == Level.EDITOR
        assert permissions.manage_displays
        assert permissions.manage_layouts
        assert permissions.manage_media
        assert permissions.manage_campaigns
        assert permissions.manage_schedules
        assert not permissions.manage_users
        assert not permissions.manage_system
        assert not permissions.view_reports

    def test_group_admin(self):
        """Test isGroupAdmin resolves to admin without system management."""
        permissions = resolve({"isGroupAdmin": True})

        assert permissions.level == Level.ADMIN
        assert permissions.manage_users
        assert permissions.view_reports
        assert not permissions.manage_system

    def test_highest_level_wins(self):
        """Test the highest level proposed by any rule is used."""
        assert resolve_level({"canEdit": True, "isGroupAdmin": True}) == Level.ADMIN
        assert resolve_level({"userTypeId": 3, "isSuperAdmin": True}) == Level.SUPER_ADMIN

    def test_unrecognized_payload_is_viewer(self):
        """Test a payload matching no rule is a viewer with no flags."""
        permissions = resolve({"userName": "alice"})
        assert permissions.level == Level.VIEWER
        assert permissions.flags == frozenset()

    @pytest.mark.parametrize("payload", [None, [], "admin", 42])
    def test_non_dict_is_viewer(self, payload):
        """Test non-object payloads resolve to viewer."""
        assert resolve(payload).level == Level.VIEWER

    def test_groups_and_folders(self):
        """Test group and folder ids are captured."""
        permissions = resolve(
            {
                "canEdit": True,
                "groups": [{"groupId": 4}, {"id": "7"}, {"name": "no id"}],
                "folders": [{"folderId": 1}, {"id": 2}],
            }
        )

        assert permissions.group_ids == frozenset({4, 7})
        assert permissions.folder_access == frozenset({1, 2})

    def test_malformed_groups_ignored(self):
        """Test non-list group data is ignored."""
        permissions = resolve({"groups": "everyone", "folders": [None, "x"]})
        assert permissions.group_ids == frozenset()
        assert permissions.folder_access == frozenset()


class TestExtractUserId:
    """Tests for extract_user_id()."""

    def test_user_id_keys(self):
        """Test the supported id locations."""
        assert extract_user_id({"userId": 5}) == 5
        assert extract_user_id({"user_id": "6"}) == 6
        assert extract_user_id({"id": 7}) == 7
        assert extract_user_id({"user": {"id": 8}}) == 8

    def test_missing(self):
        """Test payloads without an id."""
        assert extract_user_id({}) is None
        assert extract_user_id("x") is None
