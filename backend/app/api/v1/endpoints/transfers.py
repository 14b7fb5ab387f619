from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.app.api.deps import get_actor_id, get_db
from backend.app.db.models.core_types import TransferStatus
from backend.app.schemas.transfer import TransferRead
from backend.services.transfers import (
    TransferLineInput,
    TransferTransitionData,
    approve_transfer,
    create_transfer_request,
    delete_transfer_request,
    get_transfer,
    list_transfers,
    reject_transfer,
    transition_transfer,
    update_transfer_lines,
)

router = APIRouter(prefix="/transfers")


class TransferLineCreate(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)


class TransferCreate(BaseModel):
    requesting_station_id: int
    source_station_id: int
    lines: list[TransferLineCreate] = Field(min_length=1)


class TransferLinesUpdate(BaseModel):
    lines: list[TransferLineCreate] = Field(min_length=1)


class GrantedLine(BaseModel):
    product_id: int
    qty_granted: int = Field(ge=0)


class TransferApprove(BaseModel):
    lines: list[GrantedLine] = Field(default_factory=list)


class TransferReject(BaseModel):
    reason: str = Field(min_length=1)


class ReceivedLine(BaseModel):
    product_id: int
    qty_received: int = Field(ge=0)


class TransferStatusUpdate(BaseModel):
    status: TransferStatus
    approved_lines: list[GrantedLine] | None = None
    rejection_reason: str | None = None
    shipping_document_ref: str | None = Field(default=None, max_length=255)
    signed_delivery_document_ref: str | None = Field(default=None, max_length=255)
    received_lines: list[ReceivedLine] = Field(default_factory=list)


def _line_inputs(lines: list[TransferLineCreate]) -> list[TransferLineInput]:
    return [TransferLineInput(product_id=ln.product_id, quantity=ln.quantity) for ln in lines]


@router.post("", response_model=TransferRead, status_code=201)
def create_transfer(
    payload: TransferCreate,
    db: Session = Depends(get_db),
    actor_id: str | None = Depends(get_actor_id),
):
    return create_transfer_request(
        db,
        requesting_station_id=payload.requesting_station_id,
        source_station_id=payload.source_station_id,
        lines=_line_inputs(payload.lines),
        actor_id=actor_id,
    )


@router.get("", response_model=list[TransferRead])
def list_all(
    requesting_station_id: int | None = None,
    source_station_id: int | None = None,
    status: TransferStatus | None = None,
    db: Session = Depends(get_db),
):
    return list_transfers(
        db,
        requesting_station_id=requesting_station_id,
        source_station_id=source_station_id,
        status=status,
    )


@router.get("/{transfer_id}", response_model=TransferRead)
def read_transfer(transfer_id: int, db: Session = Depends(get_db)):
    return get_transfer(db, transfer_id)


@router.put("/{transfer_id}/lines", response_model=TransferRead)
def replace_lines(transfer_id: int, payload: TransferLinesUpdate, db: Session = Depends(get_db)):
    return update_transfer_lines(db, transfer_id=transfer_id, lines=_line_inputs(payload.lines))


@router.delete("/{transfer_id}", status_code=204)
def delete_transfer(transfer_id: int, db: Session = Depends(get_db)):
    delete_transfer_request(db, transfer_id=transfer_id)


@router.post("/{transfer_id}/approve", response_model=TransferRead)
def approve(
    transfer_id: int,
    payload: TransferApprove,
    db: Session = Depends(get_db),
    actor_id: str | None = Depends(get_actor_id),
):
    return approve_transfer(
        db,
        transfer_id=transfer_id,
        approved_lines=[(ln.product_id, ln.qty_granted) for ln in payload.lines],
        actor_id=actor_id,
    )


@router.post("/{transfer_id}/reject", response_model=TransferRead)
def reject(
    transfer_id: int,
    payload: TransferReject,
    db: Session = Depends(get_db),
    actor_id: str | None = Depends(get_actor_id),
):
    return reject_transfer(db, transfer_id=transfer_id, reason=payload.reason, actor_id=actor_id)


@router.post("/{transfer_id}/status", response_model=TransferRead)
def update_status(
    transfer_id: int,
    payload: TransferStatusUpdate,
    db: Session = Depends(get_db),
    actor_id: str | None = Depends(get_actor_id),
):
    approved = None
    if payload.approved_lines is not None:
        approved = [(ln.product_id, ln.qty_granted) for ln in payload.approved_lines]

    data = TransferTransitionData(
        approved_lines=approved,
        rejection_reason=payload.rejection_reason,
        shipping_document_ref=payload.shipping_document_ref,
        signed_delivery_document_ref=payload.signed_delivery_document_ref,
        received_quantities=[(ln.product_id, ln.qty_received) for ln in payload.received_lines],
    )
    return transition_transfer(
        db,
        transfer_id=transfer_id,
        target=payload.status,
        actor_id=actor_id,
        data=data,
    )
