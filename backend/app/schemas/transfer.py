from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from backend.app.db.models.core_types import TransferStatus


class TransferLineRead(BaseModel):
    product_id: int
    qty_requested: int
    qty_granted: int | None = None  # None = non statué
    qty_received: int | None = None

    model_config = ConfigDict(from_attributes=True)


class TransferStatusHistoryRead(BaseModel):
    status: TransferStatus
    changed_at: datetime
    actor_id: str | None = None

    model_config = ConfigDict(from_attributes=True)


class TransferRead(BaseModel):
    id: int
    transfer_number: str
    requesting_station_id: int
    source_station_id: int
    status: TransferStatus
    rejection_reason: str | None = None
    shipping_document_ref: str | None = None
    shipped_at: datetime | None = None
    signed_delivery_document_ref: str | None = None
    received_at: datetime | None = None
    created_at: datetime
    lines: list[TransferLineRead] = []
    history: list[TransferStatusHistoryRead] = []

    model_config = ConfigDict(from_attributes=True)
