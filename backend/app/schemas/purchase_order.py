from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict

from backend.app.db.models.core_types import OrderStatus


class PurchaseOrderLineRead(BaseModel):
    product_id: int
    qty_ordered: int
    qty_received: int
    unit_price: float
    supplier_reference: str | None = None
    desired_delivery_date: date | None = None
    confirmed_delivery_date: date | None = None
    over_delivered: bool

    model_config = ConfigDict(from_attributes=True)


class OrderStatusHistoryRead(BaseModel):
    status: OrderStatus
    changed_at: datetime
    actor_id: str | None = None

    model_config = ConfigDict(from_attributes=True)


class PurchaseOrderRead(BaseModel):
    id: int
    order_number: str
    station_id: int
    supplier_id: int
    purchase_list_id: int | None = None
    status: OrderStatus
    total_amount: float
    carrier: str | None = None
    tracking_number: str | None = None
    shipping_document_ref: str | None = None
    shipped_at: datetime | None = None
    signed_delivery_document_ref: str | None = None
    received_at: datetime | None = None
    reception_notes: str | None = None
    created_at: datetime
    lines: list[PurchaseOrderLineRead] = []
    history: list[OrderStatusHistoryRead] = []

    model_config = ConfigDict(from_attributes=True)
