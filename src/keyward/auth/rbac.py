"""Role and permission catalogue.

Learn: Roles are rows in the roles table and are granted per account in
account_roles. The catalogue below seeds that table and backs the static
GET /roles and GET /permissions listings.
"""

ADMIN_ROLE = "admin"
USER_ROLE = "user"

DEFAULT_ROLES: dict[str, str] = {
    ADMIN_ROLE: "Manage accounts, roles and permissions",
    USER_ROLE: "Regular account",
}

PERMISSIONS: list[str] = ["read", "write", "delete"]
