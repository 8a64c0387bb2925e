from .tenancy import Franchise, FranchiseStatus
from .inventory import Product, ProductAllocation, StockMovement, ProductCategory, ProductStatus, MovementKind
from .sales import Sale, SaleItem, PaymentMethod, SaleType, SaleStatus
from .transfers import Transfer, TransferHistory, TransferStatus, TransferMode
from .imports import ImportAuditLog, ImportKind, ImportStatus
from .documents import DocumentSequence

__all__ = [
    'Franchise', 'FranchiseStatus',
    'Product', 'ProductAllocation', 'StockMovement',
    'ProductCategory', 'ProductStatus', 'MovementKind',
    'Sale', 'SaleItem', 'PaymentMethod', 'SaleType', 'SaleStatus',
    'Transfer', 'TransferHistory', 'TransferStatus', 'TransferMode',
    'ImportAuditLog', 'ImportKind', 'ImportStatus',
    'DocumentSequence',
]
