"""Enumerations shared by models and services. Values are what the database stores."""

from enum import Enum


class MovementType(str, Enum):
    IN = "IN"
    OUT = "OUT"
    SALE = "SALE"
    ADJUST = "ADJUST"
    TRANSFER_OUT = "TRANSFER_OUT"
    TRANSFER_IN = "TRANSFER_IN"


class TicketState(str, Enum):
    RECEIVED = "RECEIVED"
    DIAGNOSING = "DIAGNOSING"
    AWAITING_PART = "AWAITING_PART"
    IN_REPAIR = "IN_REPAIR"
    REPAIRED = "REPAIRED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PartState(str, Enum):
    RESERVED = "RESERVED"
    CONSUMED = "CONSUMED"
    RELEASED = "RELEASED"


class SaleStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    CARD = "CARD"
    TRANSFER = "TRANSFER"
