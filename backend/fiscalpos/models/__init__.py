from .branches import Branch, CashRegister, RegisterSession
from .auth import User, Role
from .inventory import Product, BranchStock, StockMovement
from .customers import Customer, LoyaltyTransaction, CreditTransaction
from .sales import Sale, SaleItem, SalePayment, PaymentMethod
from .fiscal import Invoice, CreditNote
from .documents import AuditEvent, DocumentSequence
from .alerts import Alert

__all__ = [
    'Branch', 'CashRegister', 'RegisterSession',
    'User', 'Role',
    'Product', 'BranchStock', 'StockMovement',
    'Customer', 'LoyaltyTransaction', 'CreditTransaction',
    'Sale', 'SaleItem', 'SalePayment', 'PaymentMethod',
    'Invoice', 'CreditNote',
    'AuditEvent', 'DocumentSequence',
    'Alert',
]
