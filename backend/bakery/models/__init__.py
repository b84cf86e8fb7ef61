from .catalog import Category, Product, PRODUCT_STATUSES, CATEGORY_STATUSES
from .inventory import InventoryMovement, MOVEMENT_TYPES, MOVEMENT_SIGNS
from .sales import Sale, SaleLine, SALE_STATUSES, PAYMENT_METHODS
from .auth import Employee, SessionToken, EMPLOYEE_ROLES, EMPLOYEE_STATUSES
from .security import SecurityEvent

__all__ = [
    'Category', 'Product', 'PRODUCT_STATUSES', 'CATEGORY_STATUSES',
    'InventoryMovement', 'MOVEMENT_TYPES', 'MOVEMENT_SIGNS',
    'Sale', 'SaleLine', 'SALE_STATUSES', 'PAYMENT_METHODS',
    'Employee', 'SessionToken', 'EMPLOYEE_ROLES', 'EMPLOYEE_STATUSES',
    'SecurityEvent',
]
