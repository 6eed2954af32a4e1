"""
Entity kinds handled by the migration, in dependency order.

Every kind is declared after the kinds it references. The order of this
list is the import order.
"""

from typing import Any, List

from sqlalchemy import Boolean, column, false, or_

from .models.record import SourceRow
from .models.schema import (
    ArrayForeignKey,
    DuplicatePolicy,
    EntitySpec,
    ForeignKey,
    RemoteTable,
    StepKind,
    UnmappedPolicy,
)
from .services.schema_registry import SchemaRegistry
from .services.transformer import parse_id_list, parse_json

BOTH_STEPS = [StepKind.MYSQL_TO_LOCAL, StepKind.LOCAL_TO_REMOTE]

ORG_COLUMNS = ["organisationUid", "organisationRef", "organisation_id", "organisationId", "orgUid", "org_id"]
BRANCH_COLUMNS = ["branchUid", "branch_id", "branchId"]
OWNER_COLUMNS = ["ownerUid", "owner", "owner_id"]

DEFAULT_AVATAR = "https://cdn-icons-png.flaticon.com/128/1144/1144709.png"
DEFAULT_PASSWORD_HASH = "$2b$10$defaultpasswordhash"

DEFAULT_PREFERENCES = {
    "theme": "light",
    "language": "en",
    "notifications": True,
    "shiftAutoEnd": False,
}


def _org_fk(required: bool = True) -> ForeignKey:
    return ForeignKey(["organisationUid"], "organisation", ORG_COLUMNS, required=required)


def _branch_fk(required: bool = False) -> ForeignKey:
    return ForeignKey(["branchUid"], "branch", BRANCH_COLUMNS, required=required)


def _owner_fk() -> ForeignKey:
    return ForeignKey(["ownerUid"], "user", OWNER_COLUMNS)


def _placeholder(template: str):
    """Fallback built from the legacy id, e.g. ``ORG{id}``."""
    def build(row: SourceRow) -> str:
        return template.format(id=row.old_id)
    return build


def _username(row: SourceRow) -> str:
    email = row.get("email") or ""
    return email.split("@")[0] or f"user{row.old_id}"


def _preferences(value: Any, row: SourceRow) -> dict:
    preferences = dict(DEFAULT_PREFERENCES)
    if isinstance(value, dict):
        preferences.update(value)
    return preferences


def _id_list(value: Any, row: SourceRow):
    return parse_id_list(value) or None


def _check_in(value: Any, row: SourceRow) -> Any:
    return value if value is not None else row.get("createdAt")


def _json_or(default: Any):
    def build(value: Any, row: SourceRow) -> Any:
        return parse_json(value, default)
    return build


not_deleted = column("isDeleted", Boolean) == false()

# The local schema soft-deletes rows; local-to-remote leaves those behind
LOCAL_NOT_DELETED = {StepKind.LOCAL_TO_REMOTE: not_deleted}


ENTITIES: List[EntitySpec] = [
    # Organisations
    EntitySpec(
        key="organisation",
        group="orgs",
        label="Organisations",
        source_table="organisation",
        natural_keys=[["ref"]],
        json_fields=["address"],
        fallbacks={
            "name": "Unknown Organisation",
            "email": _placeholder("org{id}@example.com"),
            "ref": _placeholder("ORG{id}"),
            "status": "active",
        },
        defaults={"isDeleted": False},
        source_filter=not_deleted,
        steps=BOTH_STEPS,
    ),
    EntitySpec(
        key="organisation_settings",
        group="orgs",
        label="Org Settings",
        source_table="organisation_settings",
        foreign_keys=[_org_fk()],
        natural_keys=[["organisationUid"]],
        json_fields=["contact", "regional", "branding", "business", "notifications", "preferences"],
        optional_table=True,
        steps=BOTH_STEPS,
    ),
    EntitySpec(
        key="organisation_appearance",
        group="orgs",
        label="Org Appearance",
        source_table="organisation_appearance",
        foreign_keys=[_org_fk()],
        natural_keys=[["organisationUid"]],
        optional_table=True,
        steps=BOTH_STEPS,
    ),
    EntitySpec(
        key="organisation_hours",
        group="orgs",
        label="Org Hours",
        source_table="organisation_hours",
        foreign_keys=[_org_fk()],
        natural_keys=[["organisationUid"]],
        json_fields=["weeklySchedule", "schedule", "specialHours"],
        optional_table=True,
        steps=BOTH_STEPS,
    ),
    # Branches
    EntitySpec(
        key="branch",
        group="branches",
        label="Branches",
        source_table="branch",
        foreign_keys=[_org_fk()],
        natural_keys=[["ref"]],
        json_fields=["address"],
        fallbacks={
            "name": "Unknown Branch",
            "email": _placeholder("branch{id}@example.com"),
            "ref": _placeholder("BRN{id}"),
            "status": "active",
            "country": "SA",
        },
        defaults={"isDeleted": False},
        step_filters=dict(LOCAL_NOT_DELETED),
        steps=BOTH_STEPS,
    ),
    # Devices: orgID keeps pointing at the organisation, branchID stays as read
    EntitySpec(
        key="device",
        group="devices",
        label="Devices",
        source_table="device",
        id_columns=["id", "uid"],
        foreign_keys=[
            ForeignKey(["organisationUid", "orgID"], "organisation", ["orgID"] + ORG_COLUMNS),
            ForeignKey(["branchUid"], "branch", ["branchID"] + BRANCH_COLUMNS),
        ],
        fields={"branchID": ["branchID"]},
        natural_keys=[["deviceID"]],
        existing_filter={"isDeleted": False},
        json_fields=["analytics"],
        fallbacks={"deviceID": _placeholder("DEVICE{id}")},
        defaults={"isDeleted": False},
        step_filters=dict(LOCAL_NOT_DELETED),
        steps=BOTH_STEPS,
    ),
    # Licenses
    EntitySpec(
        key="license",
        group="licenses",
        label="Licenses",
        source_table="licenses",
        foreign_keys=[_org_fk()],
        natural_keys=[["licenseKey"], ["organisationUid", "type"]],
        json_fields=["features"],
        defaults={"type": "perpetual"},
        steps=BOTH_STEPS,
    ),
    # Users
    EntitySpec(
        key="user",
        group="users",
        label="Users",
        source_table="users",
        foreign_keys=[
            ForeignKey(["organisationRef"], "organisation", ORG_COLUMNS, required=False, as_string=True),
            ForeignKey(["organisationUid"], "organisation", ORG_COLUMNS, required=False),
            _branch_fk(),
        ],
        array_keys=[
            ArrayForeignKey("managedBranches", "branch", ["managedBranches"], UnmappedPolicy.DROP),
            ArrayForeignKey(
                "managedDoors", "device",
                ["managedDoors", "managed_doors", "doors", "deviceIds"],
                UnmappedPolicy.PRESERVE,
            ),
            ArrayForeignKey("managedStaff", "user", ["managedStaff"], UnmappedPolicy.DROP, deferred=True),
        ],
        fields={"assignedClientIds": ["assignedClientIds", "assigned_client_ids", "assignedClients", "clientIds"]},
        json_fields=["preferences"],
        transforms={"preferences": _preferences, "assignedClientIds": _id_list},
        fallbacks={
            "username": _username,
            "password": DEFAULT_PASSWORD_HASH,
            "email": _placeholder("user{id}@example.com"),
            "role": "user",
            "status": "active",
            "accessLevel": "user",
        },
        defaults={"photoURL": DEFAULT_AVATAR, "avatar": DEFAULT_AVATAR},
        natural_keys=[["email"]],
        duplicate_policy=DuplicatePolicy.UPDATE_IF_NEWER,
        step_filters=dict(LOCAL_NOT_DELETED),
        steps=BOTH_STEPS,
    ),
    EntitySpec(
        key="user_profile",
        group="users",
        label="User Profiles",
        source_table="user_profile",
        foreign_keys=[_owner_fk()],
        natural_keys=[["ownerUid"]],
        step_filters=dict(LOCAL_NOT_DELETED),
        steps=BOTH_STEPS,
    ),
    EntitySpec(
        key="user_employment_profile",
        group="users",
        label="Employment Profiles",
        source_table="user_employeement_profile",
        foreign_keys=[_owner_fk()],
        natural_keys=[["ownerUid"]],
        step_filters=dict(LOCAL_NOT_DELETED),
        steps=BOTH_STEPS,
    ),
    EntitySpec(
        key="user_target",
        group="users",
        label="User Targets",
        source_table="user_targets",
        target_table="user_target",
        foreign_keys=[ForeignKey(
            ["userUid"], "user",
            ["userUid", "userTargetUid", "user", "owner", "ownerUid", "owner_id", "user_id", "userId"],
        )],
        natural_keys=[["userUid"]],
        json_fields=["history"],
        fallbacks={"targetCurrency": "ZAR"},
        duplicate_policy=DuplicatePolicy.UPDATE_IF_NEWER,
        steps=BOTH_STEPS,
    ),
    EntitySpec(
        key="user_rewards",
        group="users",
        label="User Rewards",
        source_table="user_rewards",
        foreign_keys=[ForeignKey(["ownerUid"], "user", OWNER_COLUMNS + ["user", "user_id"])],
        natural_keys=[["ownerUid"]],
        defaults={"currentXP": 0, "totalXP": 0, "level": 1},
        duplicate_policy=DuplicatePolicy.UPDATE_IF_NEWER,
    ),
    # Attendance, restricted to a window by its importer
    EntitySpec(
        key="attendance",
        group="attendance",
        label="Attendance",
        source_table="attendance",
        foreign_keys=[
            _owner_fk(),
            _org_fk(required=False),
            _branch_fk(),
            ForeignKey(["verifiedByUid"], "user", ["verifiedByUid", "verifiedBy", "verifiedBy_id"], required=False),
        ],
        natural_keys=[["ownerUid", "checkIn"]],
        transforms={
            "checkIn": _check_in,
            "placesOfInterest": _json_or(None),
            "breakDetails": _json_or([]),
        },
        defaults={
            "status": "present",
            "earlyMinutes": 0,
            "lateMinutes": 0,
            "breakCount": 0,
            "distanceTravelledKm": 0,
        },
    ),
    EntitySpec(
        key="check_in",
        group="checkins",
        label="Check-ins",
        source_table="check_ins",
        foreign_keys=[_owner_fk(), _org_fk(required=False), _branch_fk()],
        natural_keys=[["ownerUid", "checkInTime"]],
        optional_table=True,
    ),
    # Orders
    EntitySpec(
        key="order",
        group="orders",
        label="Orders",
        source_table="order",
        foreign_keys=[
            ForeignKey(["placedByUid"], "user", ["placedByUid", "placedBy", "placedById"]),
            _org_fk(),
            _branch_fk(),
        ],
        natural_keys=[["orderNumber", "organisationUid"]],
        fallbacks={"orderNumber": _placeholder("ORD-{id}")},
        defaults={"totalAmount": 0, "totalItems": 0, "status": "IN_FULFILLMENT"},
    ),
    # Transactional kinds have no unique code, so rows are matched on their
    # owning reference plus creation time
    EntitySpec(
        key="order_item",
        group="orders",
        label="Order Items",
        source_table="order_item",
        foreign_keys=[ForeignKey(["orderUid"], "order", ["orderUid", "order", "orderId", "order_id"])],
        natural_keys=[["orderUid", "createdAt", "quantity", "unitPrice"]],
        defaults={"quantity": 1, "unitPrice": 0, "totalPrice": 0, "isShipped": False},
    ),
    EntitySpec(
        key="journal",
        group="journals",
        label="Journals",
        source_table="journal",
        foreign_keys=[_owner_fk(), _org_fk(), _branch_fk()],
        natural_keys=[["ownerUid", "createdAt"], ["ownerUid", "timestamp"]],
        defaults={"isDeleted": False},
    ),
    EntitySpec(
        key="asset",
        group="assets",
        label="Assets",
        source_table="asset",
        foreign_keys=[_owner_fk(), _org_fk(), _branch_fk()],
        natural_keys=[["ownerUid", "createdAt"], ["ownerUid", "serialNumber"]],
        defaults={"isDeleted": False},
    ),
    EntitySpec(
        key="feedback",
        group="feedback",
        label="Feedback",
        source_table="feedback",
        foreign_keys=[_org_fk(required=False), _branch_fk()],
        natural_keys=[["token"], ["organisationUid", "createdAt"], ["title", "createdAt"]],
        json_fields=["attachments"],
        exclude=["taskUid", "clientUid"],
    ),
    EntitySpec(
        key="reseller",
        group="resellers",
        label="Resellers",
        source_table="reseller",
        foreign_keys=[_org_fk(), _branch_fk()],
        natural_keys=[["organisationUid", "name", "createdAt"], ["organisationUid", "name"]],
        json_fields=["address"],
    ),
    EntitySpec(
        key="banner",
        group="banners",
        label="Banners",
        source_table="banners",
        foreign_keys=[_org_fk(), _branch_fk()],
        natural_keys=[["organisationUid", "title", "createdAt"], ["organisationUid", "title"]],
    ),
    EntitySpec(
        key="project",
        group="projects",
        label="Projects",
        source_table="project",
        foreign_keys=[_org_fk(), _branch_fk()],
        natural_keys=[["organisationUid", "name", "createdAt"], ["organisationUid", "name"]],
        json_fields=["address"],
        source_filter=or_(not_deleted, column("isDeleted").is_(None)),
        exclude=["clientUid", "assignedUserUid"],
    ),
]


# Tables copied verbatim by fetch-remote, primary keys included
REMOTE_TABLES: List[RemoteTable] = [
    RemoteTable("orgs", "organisation", "Organisations"),
    RemoteTable("orgs", "organisation_settings", "Org Settings", depends_on=["organisation"]),
    RemoteTable("orgs", "organisation_appearance", "Org Appearance", depends_on=["organisation"]),
    RemoteTable("orgs", "organisation_hours", "Org Hours", depends_on=["organisation"]),
    RemoteTable("branches", "branch", "Branches", depends_on=["organisation"]),
    RemoteTable("licenses", "licenses", "Licenses", depends_on=["organisation"]),
    RemoteTable("users", "users", "Users", depends_on=["organisation", "branch"]),
    RemoteTable("users", "user_profile", "User Profiles", depends_on=["users"]),
    RemoteTable("users", "user_employeement_profile", "Employment Profiles", depends_on=["users"]),
    RemoteTable("users", "user_target", "User Targets", depends_on=["users"]),
    RemoteTable("devices", "device", "Devices", pk="id", depends_on=["organisation", "branch"]),
]


def build_registry() -> SchemaRegistry:
    """Registry of every entity kind, checked for dependency order."""
    registry = SchemaRegistry(ENTITIES)
    registry.validate_order()
    return registry
