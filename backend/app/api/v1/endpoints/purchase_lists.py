from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.app.api.deps import get_actor_id, get_db
from backend.app.schemas.purchase_list import OrderBrief, PurchaseListRead, PurchaseListSummaryRead
from backend.services.procurement import (
    ItemInput,
    add_item,
    convert_purchase_list,
    create_purchase_list,
    delete_purchase_list,
    get_draft_list,
    get_purchase_list,
    purchase_list_summary,
    remove_item,
)

router = APIRouter()


class PurchaseListItemCreate(BaseModel):
    product_id: int
    supplier_id: int
    quantity: int = Field(gt=0)
    unit_price: Decimal | None = Field(default=None, ge=0)
    desired_delivery_date: date | None = None


class PurchaseListCreate(BaseModel):
    station_id: int
    items: list[PurchaseListItemCreate] = Field(default_factory=list)


class StationItemAdd(PurchaseListItemCreate):
    station_id: int


def _item_input(item: PurchaseListItemCreate) -> ItemInput:
    return ItemInput(
        product_id=item.product_id,
        supplier_id=item.supplier_id,
        quantity=item.quantity,
        unit_price=item.unit_price,
        desired_delivery_date=item.desired_delivery_date,
    )


@router.post("/purchase-lists", response_model=PurchaseListRead, status_code=201)
def create_list(
    payload: PurchaseListCreate,
    db: Session = Depends(get_db),
    actor_id: str | None = Depends(get_actor_id),
):
    return create_purchase_list(
        db,
        station_id=payload.station_id,
        items=[_item_input(i) for i in payload.items],
        actor_id=actor_id,
    )


@router.get("/purchase-lists/{list_id}", response_model=PurchaseListRead)
def read_list(list_id: int, db: Session = Depends(get_db)):
    return get_purchase_list(db, list_id)


@router.get("/stations/{station_id}/purchase-list", response_model=PurchaseListRead)
def read_station_draft(station_id: int, db: Session = Depends(get_db)):
    purchase_list = get_draft_list(db, station_id)
    if not purchase_list:
        raise HTTPException(status_code=404, detail="No draft purchase list for this station")
    return purchase_list


@router.post("/purchase-lists/items", response_model=PurchaseListRead)
def add_list_item(
    payload: StationItemAdd,
    db: Session = Depends(get_db),
    actor_id: str | None = Depends(get_actor_id),
):
    return add_item(
        db,
        station_id=payload.station_id,
        product_id=payload.product_id,
        supplier_id=payload.supplier_id,
        quantity=payload.quantity,
        unit_price=payload.unit_price,
        desired_delivery_date=payload.desired_delivery_date,
        actor_id=actor_id,
    )


@router.delete("/purchase-lists/{list_id}/items/{item_id}", response_model=PurchaseListRead)
def delete_list_item(list_id: int, item_id: int, db: Session = Depends(get_db)):
    return remove_item(db, list_id=list_id, item_id=item_id)


@router.delete("/purchase-lists/{list_id}", status_code=204)
def delete_list(list_id: int, db: Session = Depends(get_db)):
    delete_purchase_list(db, list_id=list_id)


@router.post("/purchase-lists/{list_id}/convert")
def convert_list(
    list_id: int,
    db: Session = Depends(get_db),
    actor_id: str | None = Depends(get_actor_id),
):
    order_ids = convert_purchase_list(db, list_id=list_id, actor_id=actor_id)
    return {"purchase_list_id": list_id, "order_ids": order_ids}


@router.get("/purchase-lists/{list_id}/orders", response_model=PurchaseListSummaryRead)
def read_list_orders(list_id: int, db: Session = Depends(get_db)):
    summary = purchase_list_summary(db, list_id=list_id)
    return PurchaseListSummaryRead(
        purchase_list_id=summary["purchase_list_id"],
        list_status=summary["list_status"],
        general_status=summary["general_status"],
        orders=[OrderBrief.model_validate(o) for o in summary["orders"]],
    )
