from .tenancy import Tenant, Location
from .auth import User, Role, UserRole, Permission, RolePermission, SessionToken
from .security import SecurityEvent
from .cash import CashDrawer, CashShift, CashTransaction, DrawerStatus, ShiftStatus, open_slot_key

__all__ = [
    'Tenant', 'Location',
    'User', 'Role', 'UserRole', 'Permission', 'RolePermission', 'SessionToken',
    'SecurityEvent',
    'CashDrawer', 'CashShift', 'CashTransaction', 'DrawerStatus', 'ShiftStatus', 'open_slot_key',
]
