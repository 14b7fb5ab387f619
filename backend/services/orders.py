"""
Commandes fournisseurs : création (depuis le convertisseur), cycle de vie,
édition des lignes.

Règles :
    REGISTERED -> CONFIRMED -> SHIPPED -> RECEIVED -> CLOSED -> INVOICED -> ARCHIVED
    + ARCHIVED depuis tout statut non terminal (classement administratif)

Gardes évaluées avec la transition :
    CONFIRMED  lignes présentes et quantités > 0
    SHIPPED    shipping_document_ref
    RECEIVED   signed_delivery_document_ref

Chaque transition ajoute une entrée à l'historique (statut, date, acteur).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Mapping, Sequence

from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import (
    PurchaseOrder,
    PurchaseOrderLine,
    OrderStatusHistory,
    utcnow,
)
from backend.app.db.models.core_types import OrderStatus, SequenceKind
from backend.services.errors import (
    GuardConditionError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from backend.services.lifecycle import ORDER_LIFECYCLE
from backend.services.numbering import next_number
from backend.services.store import find_many, remove, require, save, transaction

logger = logging.getLogger(__name__)

ENTITY = ORDER_LIFECYCLE.entity


@dataclass
class OrderLineInput:
    product_id: int
    quantity: int
    unit_price: Decimal
    desired_delivery_date: date | None = None
    supplier_reference: str | None = None


@dataclass
class OrderTransitionData:
    shipping_document_ref: str | None = None
    carrier: str | None = None
    tracking_number: str | None = None
    signed_delivery_document_ref: str | None = None
    reception_notes: str | None = None
    # par product_id
    received_quantities: Mapping[int, int] = field(default_factory=dict)
    confirmed_delivery_dates: Mapping[int, date] = field(default_factory=dict)


def recompute_total(order: PurchaseOrder) -> Decimal:
    total = sum(
        (Decimal(line.qty_ordered) * Decimal(line.unit_price) for line in order.lines),
        Decimal("0"),
    )
    order.total_amount = total
    return total


def record_status(order: PurchaseOrder, status: OrderStatus, actor_id: str | None) -> None:
    order.status = status
    order.history.append(OrderStatusHistory(status=status, changed_at=utcnow(), actor_id=actor_id))


def open_order(
    db: Session,
    *,
    station_id: int,
    supplier_id: int,
    lines: Sequence[OrderLineInput],
    purchase_list_id: int | None = None,
    actor_id: str | None = None,
) -> PurchaseOrder:
    """
    Crée une commande REGISTERED et ses lignes.

    Ne commit pas : appelé à l'intérieur de la transaction du convertisseur.
    """
    order = PurchaseOrder(
        order_number=next_number(db, SequenceKind.order),
        station_id=station_id,
        supplier_id=supplier_id,
        purchase_list_id=purchase_list_id,
        created_by=actor_id,
    )
    for ln in lines:
        order.lines.append(
            PurchaseOrderLine(
                product_id=ln.product_id,
                qty_ordered=ln.quantity,
                qty_received=0,
                unit_price=ln.unit_price,
                desired_delivery_date=ln.desired_delivery_date,
                supplier_reference=ln.supplier_reference,
            )
        )
    recompute_total(order)
    record_status(order, OrderStatus.registered, actor_id)
    return save(db, order)  # flush : order.id


def get_order(db: Session, order_id: int) -> PurchaseOrder:
    return require(db, PurchaseOrder, order_id, entity=ENTITY)


def list_orders(db: Session, **filters) -> list[PurchaseOrder]:
    return find_many(db, PurchaseOrder, **{k: v for k, v in filters.items() if v is not None})


def _line_for(order: PurchaseOrder, product_id: int) -> PurchaseOrderLine:
    for line in order.lines:
        if line.product_id == product_id:
            return line
    raise ValidationError(
        "product_id",
        f"product {product_id} is not on order {order.id}",
        entity=ENTITY,
        entity_id=order.id,
    )


# ---------- Gardes + effets par statut d'entrée ----------
def _enter_confirmed(order: PurchaseOrder, data: OrderTransitionData) -> None:
    if not order.lines:
        raise GuardConditionError(ENTITY, order.id, OrderStatus.confirmed, "lines", "order has no lines")
    for line in order.lines:
        if line.qty_ordered is None or line.qty_ordered <= 0:
            raise GuardConditionError(ENTITY, order.id, OrderStatus.confirmed, f"lines[{line.product_id}].qty_ordered")

    for product_id, confirmed_date in data.confirmed_delivery_dates.items():
        _line_for(order, product_id).confirmed_delivery_date = confirmed_date


def _enter_shipped(order: PurchaseOrder, data: OrderTransitionData) -> None:
    if not (data.shipping_document_ref or "").strip():
        raise GuardConditionError(ENTITY, order.id, OrderStatus.shipped, "shipping_document_ref")

    order.shipping_document_ref = data.shipping_document_ref.strip()
    order.carrier = data.carrier
    order.tracking_number = data.tracking_number
    order.shipped_at = utcnow()


def _enter_received(order: PurchaseOrder, data: OrderTransitionData) -> None:
    if not (data.signed_delivery_document_ref or "").strip():
        raise GuardConditionError(ENTITY, order.id, OrderStatus.received, "signed_delivery_document_ref")

    for product_id, qty in data.received_quantities.items():
        if isinstance(qty, bool) or not isinstance(qty, int) or qty < 0:
            raise ValidationError(
                "qty_received",
                f"received quantity for product {product_id} must be an integer >= 0, got {qty!r}",
                entity=ENTITY,
                entity_id=order.id,
            )
        line = _line_for(order, product_id)
        line.qty_received = qty
        # sur-livraison acceptée, mais signalée
        line.over_delivered = qty > line.qty_ordered
        if line.over_delivered:
            logger.warning(
                "Over-delivery on order %s product %s: received=%s ordered=%s",
                order.order_number, product_id, qty, line.qty_ordered,
            )

    order.signed_delivery_document_ref = data.signed_delivery_document_ref.strip()
    order.reception_notes = data.reception_notes
    order.received_at = utcnow()


_ON_ENTER = {
    OrderStatus.confirmed: _enter_confirmed,
    OrderStatus.shipped: _enter_shipped,
    OrderStatus.received: _enter_received,
}


def transition_order(
    db: Session,
    *,
    order_id: int,
    target: OrderStatus,
    actor_id: str | None = None,
    data: OrderTransitionData | None = None,
) -> PurchaseOrder:
    target = ORDER_LIFECYCLE.coerce(order_id, target)
    data = data or OrderTransitionData()

    with transaction(db):
        order = require(db, PurchaseOrder, order_id, for_update=True, entity=ENTITY)
        source = order.status
        ORDER_LIFECYCLE.check_transition(order.id, source, target)

        on_enter = _ON_ENTER.get(target)
        if on_enter is not None:
            on_enter(order, data)

        record_status(order, target, actor_id)
        db.flush()

    logger.info("Order %s: %s -> %s (actor=%s)", order.order_number, source.value, target.value, actor_id)
    return order


def update_order_line(
    db: Session,
    *,
    order_id: int,
    product_id: int,
    quantity: int | None = None,
    unit_price: Decimal | None = None,
) -> PurchaseOrder:
    with transaction(db):
        order = require(db, PurchaseOrder, order_id, for_update=True, entity=ENTITY)
        if ORDER_LIFECYCLE.is_terminal(order.status):
            raise InvalidStateError(ENTITY, order.id, order.status, "lines of a terminal order cannot change")

        line = _line_for(order, product_id)
        if quantity is not None:
            if quantity <= 0:
                raise ValidationError("quantity", "quantity must be > 0", entity=ENTITY, entity_id=order.id)
            line.qty_ordered = quantity
        if unit_price is not None:
            if Decimal(unit_price) < 0:
                raise ValidationError("unit_price", "unit price must be >= 0", entity=ENTITY, entity_id=order.id)
            line.unit_price = Decimal(unit_price)

        recompute_total(order)
        db.flush()

    return order


def cancel_order(db: Session, *, order_id: int, station_id: int | None = None) -> None:
    """Annulation (suppression) d'une commande encore REGISTERED, par sa station."""
    with transaction(db):
        order = require(db, PurchaseOrder, order_id, for_update=True, entity=ENTITY)
        if station_id is not None and order.station_id != station_id:
            raise NotFoundError(ENTITY, order_id)
        if order.status != OrderStatus.registered:
            raise InvalidStateError(ENTITY, order.id, order.status, "only a REGISTERED order can be cancelled")
        number = order.order_number
        remove(db, order)

    logger.info("Order %s cancelled", number)
