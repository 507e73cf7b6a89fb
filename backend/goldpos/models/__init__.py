from .branches import Branch, Supplier, Customer
from .catalog import Product, GoldRate, MakingCharge, TaxConfiguration
from .sales import Order, OrderItem, FinancialTransaction
from .ownership import (
    ProductOwnership,
    OwnershipMovement,
    RawGoldOwnership,
    SupplierGoldBalance,
    RawGoldInventory,
    RawGoldTransfer,
)
from .purchases import CustomerPurchase, CustomerPurchaseItem, ProductManufacture
from .treasury import TreasuryAccount, TreasuryTransaction, SupplierTransaction, CashDrawerBalance
from .documents import DocumentSequence

__all__ = [
    'Branch', 'Supplier', 'Customer',
    'Product', 'GoldRate', 'MakingCharge', 'TaxConfiguration',
    'Order', 'OrderItem', 'FinancialTransaction',
    'ProductOwnership', 'OwnershipMovement', 'RawGoldOwnership',
    'SupplierGoldBalance', 'RawGoldInventory', 'RawGoldTransfer',
    'CustomerPurchase', 'CustomerPurchaseItem', 'ProductManufacture',
    'TreasuryAccount', 'TreasuryTransaction', 'SupplierTransaction', 'CashDrawerBalance',
    'DocumentSequence',
]
