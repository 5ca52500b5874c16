"""Permission sets and the capability gate.

A :class:`PermissionSet` is the normalized view of what an identity may do:
ten boolean capability flags, an ordered privilege level, and the groups and
folders the identity belongs to. The capability gate maps a permission set to
the operation names it may invoke, using the fixed :data:`CAPABILITY_CATALOG`.

A category's operations are available iff the identity's level is at least
the category's minimum level and every flag the category requires is set.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Iterable

logger = logging.getLogger(__name__)


class Level(IntEnum):
    """Ordered privilege level."""

    VIEWER = 0
    EDITOR = 1
    ADMIN = 2
    SUPER_ADMIN = 3

    @property
    def label(self) -> str:
        """Lowercase name (e.g. "super_admin")."""
        return self.name.lower()

    @classmethod
    def from_label(cls, label: str) -> "Level":
        """Parse a lowercase level name.

        Raises:
            ValueError: If the name is not a known level
        """
        try:
            return cls[label.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown privilege level: {label!r}") from None


class PermissionFlag(str, Enum):
    """Boolean capability flags. Values are PermissionSet field names."""

    MANAGE_DISPLAYS = "manage_displays"
    MANAGE_LAYOUTS = "manage_layouts"
    MANAGE_MEDIA = "manage_media"
    MANAGE_CAMPAIGNS = "manage_campaigns"
    MANAGE_SCHEDULES = "manage_schedules"
    MANAGE_DATASETS = "manage_datasets"
    MANAGE_NOTIFICATIONS = "manage_notifications"
    VIEW_REPORTS = "view_reports"
    MANAGE_SYSTEM = "manage_system"
    MANAGE_USERS = "manage_users"


_CONTENT_FLAGS = frozenset(
    {
        PermissionFlag.MANAGE_DISPLAYS,
        PermissionFlag.MANAGE_LAYOUTS,
        PermissionFlag.MANAGE_MEDIA,
        PermissionFlag.MANAGE_CAMPAIGNS,
        PermissionFlag.MANAGE_SCHEDULES,
    }
)

# Flags each level carries. A permission set may never hold a flag its level lacks.
LEVEL_FLAGS: dict[Level, frozenset[PermissionFlag]] = {
    Level.VIEWER: frozenset(),
    Level.EDITOR: _CONTENT_FLAGS,
    Level.ADMIN: _CONTENT_FLAGS
    | {
        PermissionFlag.MANAGE_USERS,
        PermissionFlag.MANAGE_DATASETS,
        PermissionFlag.MANAGE_NOTIFICATIONS,
        PermissionFlag.VIEW_REPORTS,
    },
    Level.SUPER_ADMIN: frozenset(PermissionFlag),
}


@dataclass(frozen=True)
class PermissionSet:
    """Normalized permissions of one identity.

    Computed once per authentication and replaced wholesale, never mutated.

    Raises:
        ValueError: If a flag is set that the level does not allow
    """

    level: Level = Level.VIEWER
    manage_displays: bool = False
    manage_layouts: bool = False
    manage_media: bool = False
    manage_campaigns: bool = False
    manage_schedules: bool = False
    manage_datasets: bool = False
    manage_notifications: bool = False
    view_reports: bool = False
    manage_system: bool = False
    manage_users: bool = False
    group_ids: frozenset[int] = field(default_factory=frozenset)
    folder_access: frozenset[int] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        allowed = LEVEL_FLAGS[self.level]
        excess = self.flags - allowed
        if excess:
            names = ", ".join(sorted(flag.value for flag in excess))
            raise ValueError(f"Level {self.level.label} cannot carry flags: {names}")

    @property
    def flags(self) -> frozenset[PermissionFlag]:
        """Flags that are set."""
        return frozenset(flag for flag in PermissionFlag if getattr(self, flag.value))

    @property
    def is_admin(self) -> bool:
        """Whether the identity is an administrator of any kind."""
        return self.level >= Level.ADMIN

    def has(self, flag: PermissionFlag) -> bool:
        """Check a single flag."""
        return bool(getattr(self, flag.value))

    @classmethod
    def for_level(
        cls,
        level: Level,
        group_ids: Iterable[int] = (),
        folder_access: Iterable[int] = (),
    ) -> "PermissionSet":
        """Build the standard permission set for a level."""
        flags = {flag.value: True for flag in LEVEL_FLAGS[level]}
        return cls(
            level=level,
            group_ids=frozenset(group_ids),
            folder_access=frozenset(folder_access),
            **flags,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for display and JSON output."""
        data: dict[str, Any] = {"level": self.level.label}
        for flag in PermissionFlag:
            data[flag.value] = self.has(flag)
        data["group_ids"] = sorted(self.group_ids)
        data["folder_access"] = sorted(self.folder_access)
        return data


@dataclass(frozen=True)
class CapabilityCategory:
    """A named group of operations sharing one access rule."""

    name: str
    operation_names: frozenset[str]
    required_flags: frozenset[PermissionFlag]
    min_level: Level
    description: str


def _category(
    name: str,
    operations: list[str],
    flags: list[PermissionFlag],
    min_level: Level,
    description: str,
) -> CapabilityCategory:
    return CapabilityCategory(name, frozenset(operations), frozenset(flags), min_level, description)


F = PermissionFlag

CAPABILITY_CATALOG: tuple[CapabilityCategory, ...] = (
    # Available to every authenticated identity
    _category(
        "basic_displays",
        ["display_list", "display_get", "display_status"],
        [], Level.VIEWER, "Basic display information viewing",
    ),
    _category(
        "basic_layouts",
        ["layout_list", "layout_get"],
        [], Level.VIEWER, "Basic layout information viewing",
    ),
    _category(
        "basic_media",
        ["media_list", "media_get"],
        [], Level.VIEWER, "Basic media library viewing",
    ),
    _category(
        "basic_campaigns",
        ["campaign_list", "campaign_get"],
        [], Level.VIEWER, "Basic campaign information viewing",
    ),
    # Editor
    _category(
        "display_management",
        ["display_edit", "display_delete", "display_screenshot",
         "display_command_send", "display_settings_update", "display_wake_on_lan"],
        [F.MANAGE_DISPLAYS], Level.EDITOR, "Full display management capabilities",
    ),
    _category(
        "layout_management",
        ["layout_create", "layout_edit", "layout_delete", "layout_publish",
         "layout_retire", "layout_copy", "layout_import"],
        [F.MANAGE_LAYOUTS], Level.EDITOR, "Full layout creation and management",
    ),
    _category(
        "media_management",
        ["media_upload", "media_edit", "media_delete", "media_replace",
         "media_copy", "media_tag", "media_move"],
        [F.MANAGE_MEDIA], Level.EDITOR, "Full media library management",
    ),
    _category(
        "campaign_management",
        ["campaign_create", "campaign_edit", "campaign_delete",
         "campaign_assign_layouts", "campaign_schedule"],
        [F.MANAGE_CAMPAIGNS], Level.EDITOR, "Campaign creation and management",
    ),
    _category(
        "schedule_management",
        ["schedule_create", "schedule_edit", "schedule_delete",
         "schedule_list_events", "daypart_create", "daypart_assign"],
        [F.MANAGE_SCHEDULES], Level.EDITOR, "Scheduling and daypart management",
    ),
    _category(
        "playlist_management",
        ["playlist_create", "playlist_edit", "playlist_delete", "playlist_assign_widgets"],
        [F.MANAGE_LAYOUTS], Level.EDITOR, "Playlist creation and widget assignment",
    ),
    _category(
        "display_groups",
        ["displaygroup_create", "displaygroup_edit", "displaygroup_delete",
         "displaygroup_assign_displays"],
        [F.MANAGE_DISPLAYS], Level.EDITOR, "Display group management",
    ),
    _category(
        "broadcasting",
        ["broadcast_image", "broadcast_video", "broadcast_content",
         "broadcast_emergency", "broadcast_schedule", "broadcast_cancel"],
        [F.MANAGE_LAYOUTS, F.MANAGE_CAMPAIGNS], Level.EDITOR,
        "Content broadcasting and emergency alerts",
    ),
    # Admin
    _category(
        "user_management",
        ["user_list", "user_get", "user_create", "user_edit", "user_delete",
         "user_change_password", "usergroup_create", "usergroup_assign"],
        [F.MANAGE_USERS], Level.ADMIN, "User account and group management",
    ),
    _category(
        "advanced_analytics",
        ["stats_display_usage", "stats_layout_performance", "stats_media_popularity",
         "stats_campaign_effectiveness", "stats_proof_of_play", "stats_bandwidth_usage",
         "stats_display_availability", "report_generate", "report_schedule"],
        [F.VIEW_REPORTS], Level.ADMIN, "Advanced analytics and reporting",
    ),
    _category(
        "dataset_management",
        ["dataset_list", "dataset_create", "dataset_edit", "dataset_delete",
         "dataset_import_csv", "dataset_data_add", "dataset_sync", "dataset_column_add"],
        [F.MANAGE_DATASETS], Level.ADMIN, "Dynamic dataset management and synchronization",
    ),
    _category(
        "notification_system",
        ["notification_create", "notification_send", "notification_schedule",
         "alert_emergency_create", "alert_emergency_broadcast", "notification_template_create"],
        [F.MANAGE_NOTIFICATIONS], Level.ADMIN, "Notification system and emergency alerts",
    ),
    _category(
        "folder_permissions",
        ["folder_create", "folder_edit", "folder_delete", "folder_move",
         "folder_permission_set", "folder_permission_list", "permission_grant"],
        [F.MANAGE_USERS], Level.ADMIN, "Folder structure and permission management",
    ),
    _category(
        "templates_widgets",
        ["template_create", "template_edit", "template_export", "template_import",
         "widget_create_advanced", "widget_effects_add", "template_marketplace_browse"],
        [F.MANAGE_LAYOUTS], Level.ADMIN, "Advanced template and widget management",
    ),
    _category(
        "menu_boards",
        ["menuboard_create", "menuboard_edit", "menuboard_update_prices",
         "menuboard_add_promotion", "menuboard_schedule_update", "menuboard_sync_pos"],
        [F.MANAGE_LAYOUTS, F.MANAGE_DATASETS], Level.ADMIN,
        "Dynamic menu board management for restaurants",
    ),
    _category(
        "transitions_effects",
        ["transition_apply", "effect_add", "animation_create",
         "transition_custom_create", "effect_template_save"],
        [F.MANAGE_LAYOUTS], Level.ADMIN, "Professional visual transitions and effects",
    ),
    # Super admin
    _category(
        "system_administration",
        ["system_settings_get", "system_settings_update", "system_maintenance_mode",
         "system_log_get", "system_backup", "system_update_check",
         "system_modules_list", "system_modules_install", "system_health_check"],
        [F.MANAGE_SYSTEM], Level.SUPER_ADMIN, "System-level configuration and maintenance",
    ),
    _category(
        "advanced_system_config",
        ["setting_display_profile_create", "command_create", "command_assign",
         "resolution_create", "transition_create", "module_config_update"],
        [F.MANAGE_SYSTEM], Level.SUPER_ADMIN, "Advanced system configuration and customization",
    ),
    _category(
        "sync_integrations",
        ["sync_cms_configure", "sync_cms_execute", "sync_schedule",
         "connector_external_add", "webhook_create", "api_integration_setup"],
        [F.MANAGE_SYSTEM], Level.SUPER_ADMIN,
        "Multi-CMS synchronization and external integrations",
    ),
    _category(
        "automation_workflows",
        ["automation_create", "automation_trigger_setup", "automation_schedule",
         "workflow_create", "workflow_condition_add", "automation_execute"],
        [F.MANAGE_SYSTEM], Level.SUPER_ADMIN, "Workflow automation and smart triggers",
    ),
)

del F


def category_allows(category: CapabilityCategory, permissions: PermissionSet) -> bool:
    """Check whether a permission set unlocks a category."""
    if permissions.level < category.min_level:
        return False
    return all(permissions.has(flag) for flag in category.required_flags)


def available_categories(
    permissions: PermissionSet,
    catalog: tuple[CapabilityCategory, ...] = CAPABILITY_CATALOG,
) -> list[CapabilityCategory]:
    """Categories unlocked by a permission set, in catalog order."""
    return [category for category in catalog if category_allows(category, permissions)]


def available_operations(
    permissions: PermissionSet,
    catalog: tuple[CapabilityCategory, ...] = CAPABILITY_CATALOG,
) -> frozenset[str]:
    """Union of operation names unlocked by a permission set."""
    operations: set[str] = set()
    for category in available_categories(permissions, catalog):
        operations.update(category.operation_names)
    return frozenset(operations)


def has_permission_for_operation(
    permissions: PermissionSet,
    operation: str,
    catalog: tuple[CapabilityCategory, ...] = CAPABILITY_CATALOG,
) -> bool:
    """Check one operation. Operations missing from the catalog are denied."""
    return operation in available_operations(permissions, catalog)


def filter_operations(
    permissions: PermissionSet,
    operations: Iterable[str],
    catalog: tuple[CapabilityCategory, ...] = CAPABILITY_CATALOG,
) -> list[str]:
    """Keep only the permitted names, preserving input order."""
    allowed = available_operations(permissions, catalog)
    return [name for name in operations if name in allowed]


def viewer_baseline(catalog: tuple[CapabilityCategory, ...] = CAPABILITY_CATALOG) -> frozenset[str]:
    """Operations available to an identity with no flags at viewer level."""
    return available_operations(PermissionSet(), catalog)


def is_fallback_only(
    permissions: PermissionSet,
    catalog: tuple[CapabilityCategory, ...] = CAPABILITY_CATALOG,
) -> bool:
    """Check if authentication produced no capability beyond the viewer baseline.

    Signals that a stronger authentication strategy may still be worth trying.
    """
    if permissions.level != Level.VIEWER:
        return False
    return len(available_operations(permissions, catalog)) <= len(viewer_baseline(catalog))


def operation_count_by_category(
    permissions: PermissionSet,
    catalog: tuple[CapabilityCategory, ...] = CAPABILITY_CATALOG,
) -> dict[str, int]:
    """Number of operations in each unlocked category."""
    return {c.name: len(c.operation_names) for c in available_categories(permissions, catalog)}


def permission_summary(
    permissions: PermissionSet,
    catalog: tuple[CapabilityCategory, ...] = CAPABILITY_CATALOG,
) -> dict[str, Any]:
    """Summarize what a permission set unlocks, for logs and status output."""
    restrictions: list[str] = []
    if not permissions.manage_users:
        restrictions.append("User Management")
    if not permissions.manage_system:
        restrictions.append("System Administration")
    if not permissions.manage_displays:
        restrictions.append("Display Management")
    if not permissions.view_reports:
        restrictions.append("Advanced Analytics")

    all_operations: set[str] = set()
    for category in catalog:
        all_operations.update(category.operation_names)

    return {
        "level": permissions.level.label,
        "total_operations": len(all_operations),
        "available_operations": len(available_operations(permissions, catalog)),
        "categories": [c.name for c in available_categories(permissions, catalog)],
        "restrictions": restrictions,
    }
