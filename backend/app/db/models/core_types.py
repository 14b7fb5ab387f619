import enum


class ListStatus(str, enum.Enum):
    draft = "DRAFT"
    archived = "ARCHIVED"


class OrderStatus(str, enum.Enum):
    registered = "REGISTERED"
    confirmed = "CONFIRMED"
    shipped = "SHIPPED"
    received = "RECEIVED"
    closed = "CLOSED"
    invoiced = "INVOICED"
    archived = "ARCHIVED"


class TransferStatus(str, enum.Enum):
    registered = "REGISTERED"
    confirmed = "CONFIRMED"
    logistics_processed = "LOGISTICS_PROCESSED"
    shipped = "SHIPPED"
    received = "RECEIVED"
    closed = "CLOSED"
    accounting_processed = "ACCOUNTING_PROCESSED"
    archived = "ARCHIVED"
    rejected = "REJECTED"


class SequenceKind(str, enum.Enum):
    order = "ORDER"
    transfer = "TRANSFER"
