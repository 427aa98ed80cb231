"""
Default action permissions per role and default module visibility.

The matrix is a single table: one row per action, one column per role.
It is checked for completeness when this module is imported, so a new
action or role that is not given a level everywhere fails at startup
instead of silently resolving to "no access".

Organizations may deviate from these defaults through overrides; the
Owner column is never overridable.
"""
from types import MappingProxyType
from typing import Mapping

from app.features.permissions.exceptions import MatrixIncompleteError
from app.features.permissions.taxonomy import (
    ALL_ACTIONS,
    ALL_MODULES,
    ModuleId,
    PermissionLevel,
    Role,
    validate_action,
)


A = PermissionLevel.ALL
O = PermissionLevel.OWN
I = PermissionLevel.INVOLVED  # noqa: E741
N = PermissionLevel.NONE

MATRIX_COLUMNS: tuple[Role, ...] = (Role.VIEWER, Role.MEMBER, Role.LEAD, Role.OWNER)

# action                          viewer member lead owner
DEFAULT_MATRIX_TABLE: dict[str, tuple[PermissionLevel, ...]] = {
    "property:read":                (A, A, A, A),
    "property:create":              (N, A, A, A),
    "property:update":              (N, O, A, A),
    "property:delete":              (N, O, A, A),
    "property:export":              (N, A, A, A),
    "property:share":               (N, A, A, A),
    "property:publish_portal":      (N, A, A, A),
    "property:reassign_agent":      (N, N, A, A),
    "property:import":              (N, N, A, A),
    "property:bulk_update":         (N, N, A, A),
    "property:add_comment":         (N, A, A, A),
    "property:manage_contacts":     (N, O, A, A),

    "client:read":                  (A, A, A, A),
    "client:create":                (N, A, A, A),
    "client:update":                (N, O, A, A),
    "client:delete":                (N, O, A, A),
    "client:export":                (N, A, A, A),
    "client:share":                 (N, A, A, A),
    "client:import":                (N, N, A, A),
    "client:reassign_agent":        (N, N, A, A),
    "client:bulk_update":           (N, N, A, A),
    "client:add_comment":           (N, A, A, A),
    "client:manage_contacts":       (N, O, A, A),

    "messaging:read":               (N, A, A, A),
    "messaging:send_message":       (N, A, A, A),
    "messaging:create_channel":     (N, N, A, A),
    "messaging:update_channel":     (N, N, A, A),
    "messaging:delete_channel":     (N, N, A, A),
    "messaging:archive_channel":    (N, N, A, A),
    "messaging:manage_members":     (N, N, A, A),
    "messaging:create_dm":          (N, A, A, A),
    "messaging:create_group":       (N, A, A, A),
    "messaging:delete_message":     (N, O, A, A),
    "messaging:edit_message":       (N, O, O, A),

    "calendar:read":                (A, A, A, A),
    "calendar:create":              (N, A, A, A),
    "calendar:update":              (N, O, A, A),
    "calendar:delete":              (N, O, A, A),
    "calendar:invite":              (N, A, A, A),
    "calendar:respond_invite":      (N, A, A, A),
    "calendar:manage_reminders":    (N, O, A, A),

    "document:read":                (A, A, A, A),
    "document:create":              (N, A, A, A),
    "document:update":              (N, O, A, A),
    "document:delete":              (N, O, A, A),
    "document:share":               (N, A, A, A),
    "document:export":              (N, A, A, A),
    "document:manage_links":        (N, O, A, A),

    "report:view":                  (N, N, A, A),
    "report:export":                (N, N, A, A),
    "report:view_analytics":        (N, N, A, A),
    "report:view_metrics":          (N, N, A, A),

    "deal:read":                    (A, A, A, A),
    "deal:create":                  (N, A, A, A),
    "deal:update":                  (N, I, A, A),
    "deal:accept":                  (N, I, A, A),
    "deal:cancel":                  (N, I, A, A),
    "deal:complete":                (N, I, A, A),
    "deal:propose_terms":           (N, I, A, A),

    "matchmaking:view":             (N, A, A, A),
    "matchmaking:run":              (N, A, A, A),
    "matchmaking:view_analytics":   (N, A, A, A),

    "audience:read":                (N, O, A, A),
    "audience:create":              (N, A, A, A),
    "audience:update":              (N, O, A, A),
    "audience:delete":              (N, O, A, A),
    "audience:sync":                (N, O, A, A),

    "social:read":                  (A, A, A, A),
    "social:create_post":           (N, A, A, A),
    "social:update_post":           (N, O, A, A),
    "social:delete_post":           (N, O, A, A),
    "social:comment":               (N, A, A, A),
    "social:like":                  (N, A, A, A),
    "social:manage_profile":        (N, O, O, A),
    "social:manage_connections":    (N, A, A, A),

    "task:read":                    (A, A, A, A),
    "task:create":                  (N, A, A, A),
    "task:update":                  (N, O, A, A),
    "task:delete":                  (N, O, A, A),
    "task:add_comment":             (N, A, A, A),
    "task:assign":                  (N, N, A, A),

    "admin:view_users":             (N, N, A, A),
    "admin:invite_users":           (N, N, A, A),
    "admin:remove_users":           (N, N, N, A),
    "admin:manage_roles":           (N, N, N, A),
    "admin:manage_integrations":    (N, N, N, A),
    "admin:manage_api_keys":        (N, N, N, A),
    "admin:manage_webhooks":        (N, N, N, A),
    "admin:view_audit_log":         (N, N, A, A),
    "admin:transfer_ownership":     (N, N, N, A),
    "admin:manage_org_settings":    (N, N, N, A),

    "template:read":                (A, A, A, A),
    "template:use":                 (N, A, A, A),
    "template:create":              (N, N, A, A),
    "template:update":              (N, N, A, A),
    "template:delete":              (N, N, A, A),

    "xe:view_config":               (N, N, A, A),
    "xe:manage_config":             (N, N, N, A),
    "xe:sync_properties":           (N, O, A, A),
    "xe:view_history":              (N, O, A, A),

    "n8n:view_config":              (N, N, A, A),
    "n8n:manage_config":            (N, N, N, A),
    "n8n:manage_workflows":         (N, N, A, A),

    "notification:read":            (O, O, A, A),
    "notification:mark_read":       (O, O, A, A),
    "notification:manage_settings": (O, O, O, A),

    "referral:view":                (N, A, A, A),
    "referral:apply":               (N, A, A, A),
    "referral:track":               (N, O, A, A),
    "referral:admin_approve":       (N, N, N, A),
    "referral:admin_deny":          (N, N, N, A),
    "referral:admin_manage":        (N, N, N, A),
}


def build_matrix(
    table: Mapping[str, tuple[PermissionLevel, ...]],
    actions: tuple[str, ...] = ALL_ACTIONS,
    columns: tuple[Role, ...] = MATRIX_COLUMNS,
) -> Mapping[Role, Mapping[str, PermissionLevel]]:
    """
    Turn the row-per-action table into an immutable Role -> Action -> Level map.

    Raises:
        MatrixIncompleteError: if any (role, action) pair is missing, a row has
            the wrong width, or the table names actions outside the catalog.
    """
    if set(columns) != set(Role):
        missing_roles = set(Role) - set(columns)
        raise MatrixIncompleteError((role.name, "*") for role in missing_roles)

    missing: list[tuple[str, str]] = []
    unexpected: list[tuple[str, str]] = []

    for action in actions:
        row = table.get(action)
        if row is None:
            missing.extend((role.name, action) for role in columns)
        elif len(row) != len(columns):
            missing.extend((role.name, action) for role in columns[len(row):])
            unexpected.extend(("?", action) for _ in row[len(columns):])

    known = set(actions)
    unexpected.extend(("*", action) for action in table if action not in known)

    if missing or unexpected:
        raise MatrixIncompleteError(missing, unexpected)

    rows: dict[Role, dict[str, PermissionLevel]] = {role: {} for role in columns}
    for action in actions:
        for role, level in zip(columns, table[action]):
            rows[role][action] = PermissionLevel(level)

    return MappingProxyType({role: MappingProxyType(row) for role, row in rows.items()})


DEFAULT_ACTION_PERMISSIONS: Mapping[Role, Mapping[str, PermissionLevel]] = build_matrix(DEFAULT_MATRIX_TABLE)


# ============================================================================
# Module Defaults
# ============================================================================

DEFAULT_VIEWER_MODULES: frozenset[ModuleId] = frozenset({
    ModuleId.DASHBOARD,
    ModuleId.MLS,
    ModuleId.CRM,
    ModuleId.CALENDAR,
    ModuleId.DOCUMENTS,
    ModuleId.REPORTS,
})

MEMBER_MODULES: frozenset[ModuleId] = ALL_MODULES - {ModuleId.ADMIN}


def get_default_action_permission(role: Role, action: str) -> PermissionLevel:
    """Default level for an action, before organization overrides."""
    return DEFAULT_ACTION_PERMISSIONS[role][validate_action(action)]


def get_accessible_actions(role: Role) -> list[str]:
    """Actions the role can perform at any level above "none" by default."""
    return [action for action, level in DEFAULT_ACTION_PERMISSIONS[role].items() if level.is_allowed]


def get_full_access_actions(role: Role) -> list[str]:
    """Actions the role can perform on every entity by default."""
    return [action for action, level in DEFAULT_ACTION_PERMISSIONS[role].items() if level is PermissionLevel.ALL]


def default_role_modules(role: Role) -> frozenset[ModuleId]:
    """Role-tier default module set, before any module-access records."""
    if role in (Role.OWNER, Role.LEAD):
        return ALL_MODULES
    if role is Role.MEMBER:
        return MEMBER_MODULES
    return DEFAULT_VIEWER_MODULES
