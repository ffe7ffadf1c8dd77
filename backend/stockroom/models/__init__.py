from .auth import User, USER_ROLES
from .inventory import Category, Product, StockMovement
from .sales import Sale, SaleItem, SALE_STATUSES
from .documents import DocumentSequence

__all__ = [
    'User', 'USER_ROLES',
    'Category', 'Product', 'StockMovement',
    'Sale', 'SaleItem', 'SALE_STATUSES',
    'DocumentSequence',
]
