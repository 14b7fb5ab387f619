"""
Demandes de transfert inter-stations.

Cycle de vie :
    REGISTERED -> CONFIRMED -> LOGISTICS_PROCESSED -> SHIPPED -> RECEIVED
        -> CLOSED -> ACCOUNTING_PROCESSED -> ARCHIVED
    REGISTERED -> REJECTED           (motif obligatoire, terminal)
    * -> ARCHIVED                    (depuis tout statut non terminal)

L'approbation (REGISTERED -> CONFIRMED) fixe la quantité accordée de chaque
ligne citée, 0 compris ; les lignes non citées restent sans quantité
accordée. Lignes + statut changent dans la même transaction.

Le stock n'est pas touché ici : les abonnés (register_transfer_listener)
sont notifiés après commit de chaque transition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Mapping, Sequence, Union

from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import (
    Product,
    Station,
    TransferRequest,
    TransferRequestLine,
    TransferStatusHistory,
    utcnow,
)
from backend.app.db.models.core_types import SequenceKind, TransferStatus
from backend.services.errors import (
    GuardConditionError,
    InvalidStateError,
    ValidationError,
)
from backend.services.lifecycle import TRANSFER_LIFECYCLE
from backend.services.numbering import next_number
from backend.services.store import find, find_many, remove, require, save, transaction

logger = logging.getLogger(__name__)

ENTITY = TRANSFER_LIFECYCLE.entity

QuantityEntries = Union[Mapping[int, int], Iterable[tuple[int, int]]]


@dataclass
class TransferLineInput:
    product_id: int
    quantity: int


@dataclass
class TransferTransitionData:
    # CONFIRMED : product_id -> quantité accordée
    approved_lines: QuantityEntries | None = None
    # REJECTED
    rejection_reason: str | None = None
    # SHIPPED / RECEIVED
    shipping_document_ref: str | None = None
    signed_delivery_document_ref: str | None = None
    received_quantities: QuantityEntries = field(default_factory=dict)


@dataclass(frozen=True)
class TransferStatusChange:
    transfer_id: int
    transfer_number: str
    source: TransferStatus
    target: TransferStatus
    changed_at: datetime
    actor_id: str | None


TransferListener = Callable[[TransferStatusChange], None]
_listeners: list[TransferListener] = []


def register_transfer_listener(listener: TransferListener) -> TransferListener:
    _listeners.append(listener)
    return listener


def unregister_transfer_listener(listener: TransferListener) -> None:
    if listener in _listeners:
        _listeners.remove(listener)


def _notify(change: TransferStatusChange) -> None:
    for listener in list(_listeners):
        try:
            listener(change)
        except Exception:
            # la transition est déjà commitée : on trace, on n'annule pas
            logger.exception(
                "Transfer listener %r failed for %s -> %s",
                listener, change.transfer_number, change.target.value,
            )


# ---------- Helpers ----------
def _quantity_map(entries: QuantityEntries, field_name: str, transfer_id: int) -> dict[int, int]:
    pairs = entries.items() if isinstance(entries, Mapping) else entries
    result: dict[int, int] = {}
    for product_id, qty in pairs:
        if product_id in result:
            raise ValidationError(
                field_name,
                f"product {product_id} listed twice",
                entity=ENTITY,
                entity_id=transfer_id,
            )
        # pas de troncature silencieuse : 7.9 n'est pas 7
        if isinstance(qty, bool) or not isinstance(qty, int) or qty < 0:
            raise ValidationError(
                field_name,
                f"quantity for product {product_id} must be an integer >= 0, got {qty!r}",
                entity=ENTITY,
                entity_id=transfer_id,
            )
        result[product_id] = qty
    return result


def _validate_lines(db: Session, lines: Sequence[TransferLineInput]) -> None:
    if not lines:
        raise ValidationError("lines", "a transfer request needs at least one line")
    seen: set[int] = set()
    for ln in lines:
        product = find(db, Product, ln.product_id)
        if product is None or not product.active:
            raise ValidationError("product_id", f"product_id {ln.product_id} does not exist or is inactive")
        if ln.quantity is None or ln.quantity <= 0:
            raise ValidationError("quantity", f"quantity must be > 0 (product {ln.product_id})")
        if ln.product_id in seen:
            raise ValidationError("product_id", f"product {ln.product_id} listed twice")
        seen.add(ln.product_id)


def _require_station(db: Session, station_id: int, field_name: str) -> Station:
    station = find(db, Station, station_id)
    if station is None or not station.active:
        raise ValidationError(field_name, f"{field_name} {station_id} does not exist or is inactive")
    return station


def _record_status(transfer: TransferRequest, status: TransferStatus, actor_id: str | None) -> None:
    transfer.status = status
    transfer.history.append(TransferStatusHistory(status=status, changed_at=utcnow(), actor_id=actor_id))


def _require_registered(transfer: TransferRequest, action: str) -> None:
    if transfer.status != TransferStatus.registered:
        raise InvalidStateError(
            ENTITY, transfer.id, transfer.status, f"only a REGISTERED request can be {action}"
        )


# ---------- CRUD ----------
def create_transfer_request(
    db: Session,
    *,
    requesting_station_id: int,
    source_station_id: int,
    lines: Sequence[TransferLineInput],
    actor_id: str | None = None,
) -> TransferRequest:
    if requesting_station_id == source_station_id:
        raise ValidationError(
            "source_station_id", "requesting station and source station must be different"
        )

    with transaction(db):
        _require_station(db, requesting_station_id, "requesting_station_id")
        _require_station(db, source_station_id, "source_station_id")
        _validate_lines(db, lines)

        transfer = TransferRequest(
            transfer_number=next_number(db, SequenceKind.transfer),
            requesting_station_id=requesting_station_id,
            source_station_id=source_station_id,
            created_by=actor_id,
        )
        for ln in lines:
            transfer.lines.append(TransferRequestLine(product_id=ln.product_id, qty_requested=ln.quantity))
        _record_status(transfer, TransferStatus.registered, actor_id)
        save(db, transfer)

    logger.info(
        "Transfer %s registered: station %s <- station %s (%d line(s))",
        transfer.transfer_number, requesting_station_id, source_station_id, len(lines),
    )
    return transfer


def get_transfer(db: Session, transfer_id: int) -> TransferRequest:
    return require(db, TransferRequest, transfer_id, entity=ENTITY)


def list_transfers(db: Session, **filters) -> list[TransferRequest]:
    return find_many(db, TransferRequest, **{k: v for k, v in filters.items() if v is not None})


def update_transfer_lines(
    db: Session,
    *,
    transfer_id: int,
    lines: Sequence[TransferLineInput],
) -> TransferRequest:
    with transaction(db):
        transfer = require(db, TransferRequest, transfer_id, for_update=True, entity=ENTITY)
        _require_registered(transfer, "modified")
        _validate_lines(db, lines)

        transfer.lines.clear()
        db.flush()
        for ln in lines:
            transfer.lines.append(TransferRequestLine(product_id=ln.product_id, qty_requested=ln.quantity))
        db.flush()

    return transfer


def delete_transfer_request(db: Session, *, transfer_id: int) -> None:
    with transaction(db):
        transfer = require(db, TransferRequest, transfer_id, for_update=True, entity=ENTITY)
        _require_registered(transfer, "deleted")
        remove(db, transfer)

    logger.info("Transfer %s deleted", transfer_id)


# ---------- Gardes + effets par statut d'entrée ----------
def _enter_confirmed(transfer: TransferRequest, data: TransferTransitionData) -> None:
    if data.approved_lines is None:
        raise GuardConditionError(ENTITY, transfer.id, TransferStatus.confirmed, "approved_lines")

    granted = _quantity_map(data.approved_lines, "approved_lines", transfer.id)
    lines_by_product = {line.product_id: line for line in transfer.lines}

    unknown = sorted(set(granted) - set(lines_by_product))
    if unknown:
        raise ValidationError(
            "approved_lines",
            f"products {unknown} are not part of transfer {transfer.transfer_number}",
            entity=ENTITY,
            entity_id=transfer.id,
        )

    for product_id, qty in granted.items():
        line = lines_by_product[product_id]
        if qty > line.qty_requested:
            raise ValidationError(
                "approved_lines",
                f"granted quantity {qty} exceeds requested {line.qty_requested} for product {product_id}",
                entity=ENTITY,
                entity_id=transfer.id,
            )

    # 0 = refusé pour ce produit ; ligne absente = reste non statuée
    for product_id, qty in granted.items():
        lines_by_product[product_id].qty_granted = qty


def _enter_rejected(transfer: TransferRequest, data: TransferTransitionData) -> None:
    reason = (data.rejection_reason or "").strip()
    if not reason:
        raise GuardConditionError(ENTITY, transfer.id, TransferStatus.rejected, "rejection_reason")
    transfer.rejection_reason = reason


def _enter_shipped(transfer: TransferRequest, data: TransferTransitionData) -> None:
    if not (data.shipping_document_ref or "").strip():
        raise GuardConditionError(ENTITY, transfer.id, TransferStatus.shipped, "shipping_document_ref")
    transfer.shipping_document_ref = data.shipping_document_ref.strip()
    transfer.shipped_at = utcnow()


def _enter_received(transfer: TransferRequest, data: TransferTransitionData) -> None:
    if not (data.signed_delivery_document_ref or "").strip():
        raise GuardConditionError(ENTITY, transfer.id, TransferStatus.received, "signed_delivery_document_ref")

    received = _quantity_map(data.received_quantities, "received_quantities", transfer.id)
    lines_by_product = {line.product_id: line for line in transfer.lines}
    for product_id, qty in received.items():
        line = lines_by_product.get(product_id)
        if line is None:
            raise ValidationError(
                "received_quantities",
                f"product {product_id} is not part of transfer {transfer.transfer_number}",
                entity=ENTITY,
                entity_id=transfer.id,
            )
        line.qty_received = qty
        if line.qty_granted is not None and qty > line.qty_granted:
            logger.warning(
                "Transfer %s product %s: received %s > granted %s",
                transfer.transfer_number, product_id, qty, line.qty_granted,
            )

    transfer.signed_delivery_document_ref = data.signed_delivery_document_ref.strip()
    transfer.received_at = utcnow()


_ON_ENTER = {
    TransferStatus.confirmed: _enter_confirmed,
    TransferStatus.rejected: _enter_rejected,
    TransferStatus.shipped: _enter_shipped,
    TransferStatus.received: _enter_received,
}


# ---------- Transitions ----------
def transition_transfer(
    db: Session,
    *,
    transfer_id: int,
    target: TransferStatus,
    actor_id: str | None = None,
    data: TransferTransitionData | None = None,
) -> TransferRequest:
    target = TRANSFER_LIFECYCLE.coerce(transfer_id, target)
    data = data or TransferTransitionData()

    with transaction(db):
        transfer = require(db, TransferRequest, transfer_id, for_update=True, entity=ENTITY)
        source = transfer.status
        TRANSFER_LIFECYCLE.check_transition(transfer.id, source, target)

        on_enter = _ON_ENTER.get(target)
        if on_enter is not None:
            on_enter(transfer, data)

        _record_status(transfer, target, actor_id)
        db.flush()
        change = TransferStatusChange(
            transfer_id=transfer.id,
            transfer_number=transfer.transfer_number,
            source=source,
            target=target,
            changed_at=transfer.history[-1].changed_at,
            actor_id=actor_id,
        )

    logger.info(
        "Transfer %s: %s -> %s (actor=%s)",
        transfer.transfer_number, source.value, target.value, actor_id,
    )
    _notify(change)
    return transfer


def approve_transfer(
    db: Session,
    *,
    transfer_id: int,
    approved_lines: QuantityEntries,
    actor_id: str | None = None,
) -> TransferRequest:
    return transition_transfer(
        db,
        transfer_id=transfer_id,
        target=TransferStatus.confirmed,
        actor_id=actor_id,
        data=TransferTransitionData(approved_lines=approved_lines),
    )


def reject_transfer(
    db: Session,
    *,
    transfer_id: int,
    reason: str | None,
    actor_id: str | None = None,
) -> TransferRequest:
    return transition_transfer(
        db,
        transfer_id=transfer_id,
        target=TransferStatus.rejected,
        actor_id=actor_id,
        data=TransferTransitionData(rejection_reason=reason),
    )
