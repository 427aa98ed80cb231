"""
Static taxonomy for action-level authorization.

Defines:
- Roles, ranked from Viewer (lowest) to Owner (highest)
- Permission levels an action can resolve to
- The closed catalog of "<namespace>:<verb>" actions
- Feature modules whose visibility is gated separately from actions
- Mapping of raw identity-provider role claims to roles
"""
import enum
from typing import Optional

from app.features.permissions.exceptions import UnknownActionError
from app.utils import get_logger


log = get_logger(__name__)


class Role(enum.IntEnum):
    """Organization role. The integer value is the rank used for hierarchy checks."""
    VIEWER = 1
    MEMBER = 2
    LEAD = 3
    OWNER = 4

    @classmethod
    def lowest(cls) -> "Role":
        return cls.VIEWER

    @classmethod
    def parse(cls, value: "str | int | Role") -> "Role":
        """Parse a role from its name ("lead", "LEAD") or rank (3)."""
        if isinstance(value, Role):
            return value
        if isinstance(value, int):
            return cls(value)
        try:
            return cls[value.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown role: {value!r}") from None


class PermissionLevel(str, enum.Enum):
    """
    Granularity of an action grant.

    - all: full access to the action
    - own: only on entities the user owns or is assigned to
    - involved: only on entities the user participates in (e.g. deals)
    - none: no access
    """
    ALL = "all"
    OWN = "own"
    INVOLVED = "involved"
    NONE = "none"

    @property
    def is_allowed(self) -> bool:
        return self is not PermissionLevel.NONE

    @property
    def requires_ownership(self) -> bool:
        return self in (PermissionLevel.OWN, PermissionLevel.INVOLVED)


PERMISSION_LEVEL_NAMES: dict[PermissionLevel, str] = {
    PermissionLevel.ALL: "Full Access",
    PermissionLevel.OWN: "Own Only",
    PermissionLevel.INVOLVED: "Involved Only",
    PermissionLevel.NONE: "No Access",
}


class ModuleId(str, enum.Enum):
    """Coarse feature areas whose visibility is resolved per user."""
    DASHBOARD = "dashboard"
    FEED = "feed"
    MLS = "mls"
    CRM = "crm"
    SOCIAL = "social"
    AUDIENCES = "audiences"
    DEALS = "deals"
    CALENDAR = "calendar"
    DOCUMENTS = "documents"
    REPORTS = "reports"
    EMPLOYEES = "employees"
    ADMIN = "admin"


ALL_MODULES: frozenset[ModuleId] = frozenset(ModuleId)


class EntityType(str, enum.Enum):
    """Kinds of entities an ownership or involvement check can target."""
    PROPERTY = "property"
    CLIENT = "client"
    DOCUMENT = "document"
    EVENT = "event"
    TASK = "task"
    DEAL = "deal"
    POST = "post"
    AUDIENCE = "audience"
    NOTIFICATION = "notification"
    MESSAGE = "message"


# ============================================================================
# Action Catalog
# ============================================================================

# Every action the engine knows about, with a human-readable description.
# Order matters only for display: actions are grouped by namespace.
ACTION_DESCRIPTIONS: dict[str, str] = {
    # Properties (MLS)
    "property:read": "View property listings",
    "property:create": "Create new property listings",
    "property:update": "Edit property details",
    "property:delete": "Delete property listings",
    "property:export": "Export property data",
    "property:share": "Share properties with others",
    "property:publish_portal": "Publish properties to external portals",
    "property:reassign_agent": "Change the assigned agent on properties",
    "property:import": "Import properties from external sources",
    "property:bulk_update": "Update multiple properties at once",
    "property:add_comment": "Add comments to properties",
    "property:manage_contacts": "Manage property contacts",

    # Clients (CRM)
    "client:read": "View client information",
    "client:create": "Create new clients",
    "client:update": "Edit client details",
    "client:delete": "Delete clients",
    "client:export": "Export client data",
    "client:share": "Share clients with other agents",
    "client:import": "Import clients from external sources",
    "client:reassign_agent": "Change the assigned agent on clients",
    "client:bulk_update": "Update multiple clients at once",
    "client:add_comment": "Add comments to clients",
    "client:manage_contacts": "Manage client contacts",

    # Messaging
    "messaging:read": "View messages and channels",
    "messaging:send_message": "Send messages in channels and DMs",
    "messaging:create_channel": "Create new channels",
    "messaging:update_channel": "Edit channel settings",
    "messaging:delete_channel": "Delete channels",
    "messaging:archive_channel": "Archive channels",
    "messaging:manage_members": "Add/remove channel members",
    "messaging:create_dm": "Start direct message conversations",
    "messaging:create_group": "Create group conversations",
    "messaging:delete_message": "Delete messages",
    "messaging:edit_message": "Edit sent messages",

    # Calendar
    "calendar:read": "View calendar events",
    "calendar:create": "Create calendar events",
    "calendar:update": "Edit calendar events",
    "calendar:delete": "Delete calendar events",
    "calendar:invite": "Invite others to events",
    "calendar:respond_invite": "Respond to event invitations",
    "calendar:manage_reminders": "Manage event reminders",

    # Documents
    "document:read": "View documents",
    "document:create": "Upload documents",
    "document:update": "Edit document details",
    "document:delete": "Delete documents",
    "document:share": "Share documents with others",
    "document:export": "Export documents",
    "document:manage_links": "Manage shareable document links",

    # Reports
    "report:view": "View reports",
    "report:export": "Export reports",
    "report:view_analytics": "View detailed analytics",
    "report:view_metrics": "View performance metrics",

    # Deals
    "deal:read": "View deal information",
    "deal:create": "Create new deals",
    "deal:update": "Update deal details",
    "deal:accept": "Accept deal proposals",
    "deal:cancel": "Cancel deals",
    "deal:complete": "Mark deals as completed",
    "deal:propose_terms": "Propose new deal terms",

    # Matchmaking
    "matchmaking:view": "View property-client matches",
    "matchmaking:run": "Run matchmaking",
    "matchmaking:view_analytics": "View matchmaking analytics",

    # Audiences
    "audience:read": "View audiences",
    "audience:create": "Create new audiences",
    "audience:update": "Edit audience details",
    "audience:delete": "Delete audiences",
    "audience:sync": "Sync audience members",

    # Social feed
    "social:read": "View social feed",
    "social:create_post": "Create social posts",
    "social:update_post": "Edit posts",
    "social:delete_post": "Delete posts",
    "social:comment": "Comment on posts",
    "social:like": "Like posts",
    "social:manage_profile": "Manage agent profile",
    "social:manage_connections": "Manage agent connections",

    # Tasks
    "task:read": "View tasks",
    "task:create": "Create tasks",
    "task:update": "Edit tasks",
    "task:delete": "Delete tasks",
    "task:add_comment": "Add task comments",
    "task:assign": "Assign tasks to users",

    # Administration
    "admin:view_users": "View organization users",
    "admin:invite_users": "Invite users to organization",
    "admin:remove_users": "Remove users from organization",
    "admin:manage_roles": "Manage user roles",
    "admin:manage_integrations": "Manage integrations",
    "admin:manage_api_keys": "Manage API keys",
    "admin:manage_webhooks": "Manage webhooks",
    "admin:view_audit_log": "View audit logs",
    "admin:transfer_ownership": "Transfer organization ownership",
    "admin:manage_org_settings": "Manage organization settings",

    # Templates
    "template:read": "View document templates",
    "template:use": "Use templates to generate documents",
    "template:create": "Create new templates",
    "template:update": "Edit templates",
    "template:delete": "Delete templates",

    # XE portal integration
    "xe:view_config": "View portal integration settings",
    "xe:manage_config": "Manage portal integration",
    "xe:sync_properties": "Sync properties to the portal",
    "xe:view_history": "View portal sync history",

    # n8n automation
    "n8n:view_config": "View automation configuration",
    "n8n:manage_config": "Manage automation settings",
    "n8n:manage_workflows": "Manage automation workflows",

    # Notifications
    "notification:read": "View notifications",
    "notification:mark_read": "Mark notifications as read",
    "notification:manage_settings": "Manage notification settings",

    # Referrals
    "referral:view": "View referral program information",
    "referral:apply": "Apply to join the referral program",
    "referral:track": "Track referral conversions",
    "referral:admin_approve": "Approve referral applications",
    "referral:admin_deny": "Deny referral applications",
    "referral:admin_manage": "Manage referral program settings",
}

ALL_ACTIONS: tuple[str, ...] = tuple(ACTION_DESCRIPTIONS)


def _group_by_namespace(actions: tuple[str, ...]) -> dict[str, tuple[str, ...]]:
    grouped: dict[str, list[str]] = {}
    for action in actions:
        namespace, _, verb = action.partition(":")
        if not namespace or not verb or ":" in verb:
            raise ValueError(f"Malformed action in catalog: {action!r}")
        grouped.setdefault(namespace, []).append(action)
    return {namespace: tuple(items) for namespace, items in grouped.items()}


ACTION_MODULES: dict[str, tuple[str, ...]] = _group_by_namespace(ALL_ACTIONS)

_ACTION_SET = frozenset(ALL_ACTIONS)


def is_known_action(action: str) -> bool:
    return action in _ACTION_SET


def validate_action(action: str) -> str:
    """Return the action unchanged, or raise UnknownActionError if it is not in the catalog."""
    if action not in _ACTION_SET:
        raise UnknownActionError(action)
    return action


def get_action_module(action: str) -> str:
    """Namespace part of an action ("property:update" -> "property")."""
    return validate_action(action).split(":", 1)[0]


def get_action_name(action: str) -> str:
    """Verb part of an action ("property:update" -> "update")."""
    return validate_action(action).split(":", 1)[1]


# ============================================================================
# Role Hierarchy and Claims
# ============================================================================

def role_has_privilege(actor: Role, target: Role) -> bool:
    """True if actor ranks strictly above target (actor may manage target)."""
    return actor > target


ROLE_CLAIMS: dict[str, Role] = {
    "org:admin": Role.OWNER,
    "org:owner": Role.OWNER,
    "owner": Role.OWNER,
    "org:lead": Role.LEAD,
    "lead": Role.LEAD,
    "org:member": Role.MEMBER,
    "member": Role.MEMBER,
    "org:viewer": Role.VIEWER,
    "viewer": Role.VIEWER,
}


def role_from_claim(claim: Optional[str]) -> Role:
    """
    Map a raw identity-provider role claim to a Role.

    Unknown or missing claims map to the lowest-privilege role.
    """
    if claim:
        role = ROLE_CLAIMS.get(claim.strip().lower())
        if role is not None:
            return role
    log.warning(f"Unrecognized role claim {claim!r}, falling back to {Role.lowest().name}")
    return Role.lowest()


def role_to_claim(role: Role) -> str:
    """Canonical claim string for a role."""
    return {
        Role.OWNER: "org:admin",
        Role.LEAD: "org:lead",
        Role.MEMBER: "org:member",
        Role.VIEWER: "org:viewer",
    }[role]
