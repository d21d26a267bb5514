# Auth module for the Contracts & Escrow service
# Provides role-based access control and authentication dependencies

from auth.roles import (
    UserType,
    Permission,
    ROLE_PERMISSIONS,
    get_permissions_for_role,
    has_permission,
    has_any_permission,
    actor_role_for,
)

from auth.decorators import (
    AuthError,
    require_user_type,
    require_permission,
    get_user_type,
)

__all__ = [
    # Roles
    "UserType",
    "Permission",
    "ROLE_PERMISSIONS",
    "get_permissions_for_role",
    "has_permission",
    "has_any_permission",
    "actor_role_for",

    # Decorators
    "AuthError",
    "require_user_type",
    "require_permission",
    "get_user_type",
]
