from .tenancy import Business, Store
from .catalog import Product, ProductVariant
from .inventory import StoreInventory, InventoryLog, StockAlert
from .sales import Sale, SaleItem
from .returns import ReturnPolicy, Return, Refund, Exchange, StoreCredit

__all__ = [
    'Business', 'Store',
    'Product', 'ProductVariant',
    'StoreInventory', 'InventoryLog', 'StockAlert',
    'Sale', 'SaleItem',
    'ReturnPolicy', 'Return', 'Refund', 'Exchange', 'StoreCredit',
]
