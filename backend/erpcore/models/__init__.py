from .catalog import Product, Variant
from .inventory import (
    StockMovement,
    Vendor,
    InventoryTransaction,
    TransactionItem,
    TransactionStatus,
    ALLOWED_TRANSACTION_TRANSITIONS,
)
from .orders import Order, OrderItem, OrderLog
from .documents import DocumentSequence

__all__ = [
    'Product', 'Variant',
    'StockMovement', 'Vendor', 'InventoryTransaction', 'TransactionItem',
    'TransactionStatus', 'ALLOWED_TRANSACTION_TRANSITIONS',
    'Order', 'OrderItem', 'OrderLog',
    'DocumentSequence',
]
