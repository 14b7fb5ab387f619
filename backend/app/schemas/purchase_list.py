from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict

from backend.app.db.models.core_types import ListStatus, OrderStatus


class PurchaseListItemRead(BaseModel):
    id: int
    product_id: int
    supplier_id: int
    quantity: int
    unit_price: float
    desired_delivery_date: date | None = None

    model_config = ConfigDict(from_attributes=True)


class PurchaseListRead(BaseModel):
    id: int
    station_id: int
    status: ListStatus
    created_by: str | None = None
    created_at: datetime
    archived_at: datetime | None = None
    items: list[PurchaseListItemRead] = []

    model_config = ConfigDict(from_attributes=True)


class OrderBrief(BaseModel):
    id: int
    order_number: str
    supplier_id: int
    status: OrderStatus
    total_amount: float

    model_config = ConfigDict(from_attributes=True)


class PurchaseListSummaryRead(BaseModel):
    purchase_list_id: int
    list_status: ListStatus
    general_status: str  # statut dérivé, ex. PARTIALLY_SHIPPED
    orders: list[OrderBrief]
