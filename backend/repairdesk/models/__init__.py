from .enums import MovementType, TicketState, PartState, SaleStatus, PaymentMethod
from .tenancy import Organization, Branch
from .inventory import ProductVariant, StockLevel, Movement
from .documents import FolioSequence
from .tickets import Ticket, TicketPart, TicketHistory
from .sales import Sale, SaleLine, Payment
from .cash import CashRegister, CashCut

__all__ = [
    'MovementType', 'TicketState', 'PartState', 'SaleStatus', 'PaymentMethod',
    'Organization', 'Branch',
    'ProductVariant', 'StockLevel', 'Movement',
    'FolioSequence',
    'Ticket', 'TicketPart', 'TicketHistory',
    'Sale', 'SaleLine', 'Payment',
    'CashRegister', 'CashCut',
]
