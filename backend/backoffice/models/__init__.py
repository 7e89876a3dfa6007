from .catalog import Product, Customer, User
from .inventory import InventoryMovement
from .sales import Sale, SaleLine, Payment, PaymentAllocation
from .credit import Credit, Installment
from .documents import DocumentSequence

__all__ = [
    'Product', 'Customer', 'User',
    'InventoryMovement',
    'Sale', 'SaleLine', 'Payment', 'PaymentAllocation',
    'Credit', 'Installment',
    'DocumentSequence',
]
