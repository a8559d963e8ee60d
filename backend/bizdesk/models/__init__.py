from .tenancy import Business
from .auth import User, SessionToken
from .finance import Account, Transaction, AuditLog
from .inventory import Product, InventoryLog
from .customers import Customer, CreditTransaction, CustomerInteraction
from .sales import Sale, SaleLine, Receipt, Return, ReturnLine, DocumentSequence

__all__ = [
    'Business',
    'User', 'SessionToken',
    'Account', 'Transaction', 'AuditLog',
    'Product', 'InventoryLog',
    'Customer', 'CreditTransaction', 'CustomerInteraction',
    'Sale', 'SaleLine', 'Receipt', 'Return', 'ReturnLine', 'DocumentSequence',
]
