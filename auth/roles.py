# Role-Based Access Control for the Contracts & Escrow service
# This module defines user roles and the permissions each role carries

from enum import Enum
from typing import List, Set

from core.contract_state import ActorRole
from database.models import UserType


class Permission(str, Enum):
    """Fine-grained permissions for contract and escrow endpoints."""

    # Brand permissions
    DRAFT_CONTRACTS = "draft_contracts"
    RESEND_CONTRACTS = "resend_contracts"
    FUND_MILESTONES = "fund_milestones"
    RELEASE_MILESTONES = "release_milestones"
    VIEW_OWN_LEDGER = "view_own_ledger"

    # Influencer permissions
    VIEW_OWN_EARNINGS = "view_own_earnings"

    # Common permissions
    VIEW_OWN_CONTRACTS = "view_own_contracts"
    NEGOTIATE_CONTRACTS = "negotiate_contracts"
    SIGN_CONTRACTS = "sign_contracts"
    VIEW_OWN_MILESTONES = "view_own_milestones"

    # Admin permissions
    VIEW_ALL_CONTRACTS = "view_all_contracts"
    MANAGE_ESCROW = "manage_escrow"
    MARK_PAYOUTS_PAID = "mark_payouts_paid"


_COMMON = {
    Permission.VIEW_OWN_CONTRACTS,
    Permission.NEGOTIATE_CONTRACTS,
    Permission.SIGN_CONTRACTS,
    Permission.VIEW_OWN_MILESTONES,
}

# Role to permissions mapping
ROLE_PERMISSIONS: dict[UserType, Set[Permission]] = {
    UserType.BRAND: {
        Permission.DRAFT_CONTRACTS,
        Permission.RESEND_CONTRACTS,
        Permission.FUND_MILESTONES,
        Permission.RELEASE_MILESTONES,
        Permission.VIEW_OWN_LEDGER,
        *_COMMON,
    },

    UserType.INFLUENCER: {
        Permission.VIEW_OWN_EARNINGS,
        *_COMMON,
    },

    UserType.ADMIN: {
        # Admin has ALL permissions
        *Permission.__members__.values()
    },
}

# The role a user acts under when applying contract events
ACTOR_ROLES: dict[UserType, ActorRole] = {
    UserType.BRAND: ActorRole.BRAND,
    UserType.INFLUENCER: ActorRole.INFLUENCER,
    UserType.ADMIN: ActorRole.PLATFORM,
}


def get_permissions_for_role(user_type: UserType) -> Set[Permission]:
    """Get all permissions for a given user type."""
    return ROLE_PERMISSIONS.get(user_type, set())


def has_permission(user_type: UserType, permission: Permission) -> bool:
    """Check if a user type has a specific permission."""
    return permission in get_permissions_for_role(user_type)


def has_any_permission(user_type: UserType, permissions: List[Permission]) -> bool:
    """Check if a user type has any of the given permissions."""
    user_permissions = get_permissions_for_role(user_type)
    return any(p in user_permissions for p in permissions)


def actor_role_for(user_type: UserType) -> ActorRole:
    return ACTOR_ROLES[user_type]
