from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.app.api.deps import get_actor_id, get_db
from backend.app.db.models.core_types import OrderStatus
from backend.app.schemas.purchase_order import PurchaseOrderRead
from backend.services.orders import (
    OrderTransitionData,
    cancel_order,
    get_order,
    list_orders,
    transition_order,
    update_order_line,
)

router = APIRouter(prefix="/purchase-orders")


class ReceivedLine(BaseModel):
    product_id: int
    qty_received: int = Field(ge=0)


class ConfirmedLine(BaseModel):
    product_id: int
    confirmed_delivery_date: date


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    shipping_document_ref: str | None = Field(default=None, max_length=255)
    carrier: str | None = Field(default=None, max_length=128)
    tracking_number: str | None = Field(default=None, max_length=128)
    signed_delivery_document_ref: str | None = Field(default=None, max_length=255)
    reception_notes: str | None = None
    received_lines: list[ReceivedLine] = Field(default_factory=list)
    confirmed_lines: list[ConfirmedLine] = Field(default_factory=list)


class OrderLineUpdate(BaseModel):
    quantity: int | None = Field(default=None, gt=0)
    unit_price: Decimal | None = Field(default=None, ge=0)


@router.get("", response_model=list[PurchaseOrderRead])
def list_pos(
    station_id: int | None = None,
    supplier_id: int | None = None,
    status: OrderStatus | None = None,
    db: Session = Depends(get_db),
):
    return list_orders(db, station_id=station_id, supplier_id=supplier_id, status=status)


@router.get("/{order_id}", response_model=PurchaseOrderRead)
def get_po(order_id: int, db: Session = Depends(get_db)):
    return get_order(db, order_id)


@router.post("/{order_id}/status", response_model=PurchaseOrderRead)
def update_po_status(
    order_id: int,
    payload: OrderStatusUpdate,
    db: Session = Depends(get_db),
    actor_id: str | None = Depends(get_actor_id),
):
    data = OrderTransitionData(
        shipping_document_ref=payload.shipping_document_ref,
        carrier=payload.carrier,
        tracking_number=payload.tracking_number,
        signed_delivery_document_ref=payload.signed_delivery_document_ref,
        reception_notes=payload.reception_notes,
        received_quantities={ln.product_id: ln.qty_received for ln in payload.received_lines},
        confirmed_delivery_dates={ln.product_id: ln.confirmed_delivery_date for ln in payload.confirmed_lines},
    )
    return transition_order(db, order_id=order_id, target=payload.status, actor_id=actor_id, data=data)


@router.patch("/{order_id}/lines/{product_id}", response_model=PurchaseOrderRead)
def update_po_line(order_id: int, product_id: int, payload: OrderLineUpdate, db: Session = Depends(get_db)):
    return update_order_line(
        db,
        order_id=order_id,
        product_id=product_id,
        quantity=payload.quantity,
        unit_price=payload.unit_price,
    )


@router.delete("/{order_id}", status_code=204)
def cancel_po(order_id: int, station_id: int | None = None, db: Session = Depends(get_db)):
    cancel_order(db, order_id=order_id, station_id=station_id)
