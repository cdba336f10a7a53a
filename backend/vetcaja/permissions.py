"""
Permission System Constants and Definitions

WHY: Centralized permission definitions ensure consistency across the application.
All permission codes and role mappings defined here.

DESIGN PRINCIPLES:
- Permissions are granular (one action per permission)
- Categories group related permissions for UI display
- Default role mappings follow principle of least privilege
- Admin has all permissions by default
"""

# =============================================================================
# PERMISSION CATEGORIES
# =============================================================================

class PermissionCategory:
    """Permission categories for organization."""
    CAJA = "CAJA"
    REPORTS = "REPORTS"
    SYSTEM = "SYSTEM"


# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

# Each permission is defined as: (code, name, description, category)
PERMISSION_DEFINITIONS = [
    # CAJA PERMISSIONS
    (
        "VIEW_DRAWERS",
        "View Drawers",
        "View cash drawers, shifts and ledger entries",
        PermissionCategory.CAJA
    ),
    (
        "OPEN_DRAWER",
        "Open Drawer",
        "Open a cash drawer with a starting float",
        PermissionCategory.CAJA
    ),
    (
        "RECORD_CASH_TRANSACTION",
        "Record Cash Transaction",
        "Post deposits, withdrawals and adjustments to an open drawer",
        PermissionCategory.CAJA
    ),
    (
        "HANDOFF_SHIFT",
        "Hand Off Shift",
        "Pass custody of an open drawer to another cashier",
        PermissionCategory.CAJA
    ),
    (
        "CLOSE_DRAWER",
        "Close Drawer",
        "Count and close a cash drawer",
        PermissionCategory.CAJA
    ),
    (
        "RECONCILE_DRAWER",
        "Reconcile Drawer",
        "Confirm a closed drawer as reconciled",
        PermissionCategory.CAJA
    ),

    # REPORT PERMISSIONS
    (
        "VIEW_CASH_REPORTS",
        "View Cash Reports",
        "View drawer, cashier and discrepancy reports",
        PermissionCategory.REPORTS
    ),

    # SYSTEM PERMISSIONS
    (
        "SYSTEM_ADMIN",
        "System Administration",
        "Full tenant administration",
        PermissionCategory.SYSTEM
    ),
]


# =============================================================================
# DEFAULT ROLE PERMISSIONS
# =============================================================================

DEFAULT_ROLE_PERMISSIONS = {
    "admin": [code for code, _, _, _ in PERMISSION_DEFINITIONS],
    "manager": [
        "VIEW_DRAWERS",
        "OPEN_DRAWER",
        "RECORD_CASH_TRANSACTION",
        "HANDOFF_SHIFT",
        "CLOSE_DRAWER",
        "RECONCILE_DRAWER",
        "VIEW_CASH_REPORTS",
    ],
    "cashier": [
        "VIEW_DRAWERS",
        "OPEN_DRAWER",
        "RECORD_CASH_TRANSACTION",
        "HANDOFF_SHIFT",
        "CLOSE_DRAWER",
    ],
}

DEFAULT_ROLES = [
    ("admin", "Full clinic access"),
    ("manager", "Cash oversight, reconciliation and reports"),
    ("cashier", "Front desk cash handling"),
]


def get_all_permission_codes() -> list[str]:
    return [code for code, _, _, _ in PERMISSION_DEFINITIONS]
