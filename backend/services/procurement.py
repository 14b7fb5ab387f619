"""
Procurement service.

Listes d'achat d'une station (DRAFT -> ARCHIVED) et conversion en commandes
fournisseurs.

Conversion :
    1 liste DRAFT non vide -> 1 commande REGISTERED par fournisseur présent
    (lignes copiées depuis les items), liste archivée, items supprimés.
    Le tout dans UNE transaction : soit tout est écrit, soit rien.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import (
    Station,
    Supplier,
    Product,
    ProductSupplier,
    PurchaseList,
    PurchaseListItem,
    PurchaseOrder,
    utcnow,
)
from backend.app.db.models.core_types import ListStatus
from backend.services.errors import (
    EmptyListError,
    InvalidStateError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from backend.services.lifecycle import summarize_statuses
from backend.services.orders import OrderLineInput, open_order
from backend.services.store import find, find_many, remove, require, transaction

logger = logging.getLogger(__name__)

ENTITY = "purchase_list"


@dataclass
class ItemInput:
    product_id: int
    supplier_id: int
    quantity: int
    unit_price: Decimal | None = None
    desired_delivery_date: date | None = None


# ---------- Validation ----------
def _require_active(db: Session, model, entity_id: int, field: str):
    entity = find(db, model, entity_id)
    if entity is None or not entity.active:
        raise ValidationError(field, f"{field} {entity_id} does not exist or is inactive")
    return entity


def _validate_item(db: Session, product_id: int, supplier_id: int, quantity: int) -> None:
    _require_active(db, Product, product_id, "product_id")
    _require_active(db, Supplier, supplier_id, "supplier_id")
    if quantity is None or quantity <= 0:
        raise ValidationError("quantity", f"quantity must be > 0 (product {product_id})")


def _catalogue_entry(db: Session, product_id: int, supplier_id: int) -> ProductSupplier | None:
    return db.get(ProductSupplier, (product_id, supplier_id))


def _resolve_unit_price(db: Session, product_id: int, supplier_id: int, unit_price) -> Decimal:
    if unit_price is not None:
        price = Decimal(unit_price)
    else:
        entry = _catalogue_entry(db, product_id, supplier_id)
        if entry is None:
            raise ValidationError(
                "unit_price",
                f"no unit price given and product {product_id} is not in supplier {supplier_id} catalogue",
            )
        price = Decimal(entry.unit_price)
    if price < 0:
        raise ValidationError("unit_price", "unit price must be >= 0")
    return price


def _require_draft(purchase_list: PurchaseList, action: str) -> None:
    if purchase_list.status != ListStatus.draft:
        raise InvalidStateError(ENTITY, purchase_list.id, purchase_list.status, f"only a DRAFT list can be {action}")


# ---------- Lecture ----------
def get_purchase_list(db: Session, list_id: int) -> PurchaseList:
    return require(db, PurchaseList, list_id, entity=ENTITY)


def get_draft_list(db: Session, station_id: int) -> PurchaseList | None:
    return (
        db.execute(
            select(PurchaseList)
            .where(PurchaseList.station_id == station_id)
            .where(PurchaseList.status == ListStatus.draft)
        )
        .scalars()
        .first()
    )


# ---------- Écriture ----------
def _lock_draft(db: Session, draft: PurchaseList) -> PurchaseList:
    purchase_list = require(db, PurchaseList, draft.id, for_update=True, entity=ENTITY)
    _require_draft(purchase_list, "modified")
    return purchase_list


def _open_draft_list(
    db: Session,
    station_id: int,
    actor_id: str | None,
    *,
    reuse_existing: bool = False,
) -> PurchaseList:
    """
    Ouvre la liste DRAFT de la station.

    reuse_existing=True (ajout d'article) : une liste DRAFT déjà présente, même
    commitée par une requête concurrente pendant notre insert, est reprise et
    verrouillée au lieu de lever InvalidStateError.
    """
    _require_active(db, Station, station_id, "station_id")

    existing = get_draft_list(db, station_id)
    if existing is not None:
        if reuse_existing:
            return _lock_draft(db, existing)
        raise InvalidStateError(
            ENTITY, existing.id, existing.status, f"station {station_id} already has a draft purchase list"
        )

    purchase_list = PurchaseList(station_id=station_id, status=ListStatus.draft, created_by=actor_id)
    try:
        with db.begin_nested():
            db.add(purchase_list)
    except IntegrityError as exc:
        # une autre requête a ouvert la liste entre-temps
        existing = get_draft_list(db, station_id)
        if existing is None:
            # déjà convertie ou supprimée : rejouer la requête suffit
            raise TransientError(f"draft purchase list of station {station_id} changed concurrently") from exc
        if reuse_existing:
            logger.info("Station %s draft list %s opened concurrently, reusing it", station_id, existing.id)
            return _lock_draft(db, existing)
        raise InvalidStateError(
            ENTITY,
            existing.id,
            ListStatus.draft,
            f"station {station_id} already has a draft purchase list",
        ) from exc
    return purchase_list


def _put_item(db: Session, purchase_list: PurchaseList, item: ItemInput) -> PurchaseListItem:
    _validate_item(db, item.product_id, item.supplier_id, item.quantity)
    price = _resolve_unit_price(db, item.product_id, item.supplier_id, item.unit_price)

    for existing in purchase_list.items:
        if existing.product_id == item.product_id and existing.supplier_id == item.supplier_id:
            # même article / même fournisseur : on remplace, pas de doublon
            existing.quantity = item.quantity
            existing.unit_price = price
            if item.desired_delivery_date is not None:
                existing.desired_delivery_date = item.desired_delivery_date
            return existing

    new_item = PurchaseListItem(
        product_id=item.product_id,
        supplier_id=item.supplier_id,
        quantity=item.quantity,
        unit_price=price,
        desired_delivery_date=item.desired_delivery_date,
    )
    purchase_list.items.append(new_item)
    return new_item


def create_purchase_list(
    db: Session,
    *,
    station_id: int,
    items: Iterable[ItemInput] = (),
    actor_id: str | None = None,
) -> PurchaseList:
    with transaction(db):
        purchase_list = _open_draft_list(db, station_id, actor_id)
        for item in items:
            _put_item(db, purchase_list, item)
        db.flush()

    logger.info("Purchase list %s opened for station %s", purchase_list.id, station_id)
    return purchase_list


def add_item(
    db: Session,
    *,
    station_id: int,
    product_id: int,
    supplier_id: int,
    quantity: int,
    unit_price: Decimal | None = None,
    desired_delivery_date: date | None = None,
    actor_id: str | None = None,
) -> PurchaseList:
    """Ajoute un article à la liste DRAFT de la station (créée au premier ajout)."""
    item = ItemInput(product_id, supplier_id, quantity, unit_price, desired_delivery_date)
    with transaction(db):
        purchase_list = _open_draft_list(db, station_id, actor_id, reuse_existing=True)
        _put_item(db, purchase_list, item)
        db.flush()

    return purchase_list


def remove_item(db: Session, *, list_id: int, item_id: int) -> PurchaseList:
    with transaction(db):
        purchase_list = require(db, PurchaseList, list_id, for_update=True, entity=ENTITY)
        _require_draft(purchase_list, "modified")

        item = next((i for i in purchase_list.items if i.id == item_id), None)
        if item is None:
            raise NotFoundError("purchase_list_item", item_id)
        purchase_list.items.remove(item)
        db.flush()

    return purchase_list


def delete_purchase_list(db: Session, *, list_id: int) -> None:
    with transaction(db):
        purchase_list = require(db, PurchaseList, list_id, for_update=True, entity=ENTITY)
        _require_draft(purchase_list, "deleted")
        remove(db, purchase_list)

    logger.info("Purchase list %s deleted", list_id)


# ---------- Conversion ----------
def convert_purchase_list(db: Session, *, list_id: int, actor_id: str | None = None) -> list[int]:
    """
    Convertit une liste DRAFT en commandes, une par fournisseur.

    Retourne les ids des commandes créées, dans l'ordre de première
    apparition des fournisseurs dans la liste.
    """
    with transaction(db):
        # verrou ligne : une conversion concurrente attend, puis voit ARCHIVED
        purchase_list = require(db, PurchaseList, list_id, for_update=True, entity=ENTITY)
        _require_draft(purchase_list, "converted")

        items = list(purchase_list.items)
        if not items:
            raise EmptyListError(list_id)

        for item in items:
            _validate_item(db, item.product_id, item.supplier_id, item.quantity)

        items_by_supplier: dict[int, list[PurchaseListItem]] = {}
        for item in items:
            items_by_supplier.setdefault(item.supplier_id, []).append(item)

        order_ids: list[int] = []
        for supplier_id, supplier_items in items_by_supplier.items():
            lines = []
            for item in supplier_items:
                entry = _catalogue_entry(db, item.product_id, supplier_id)
                lines.append(
                    OrderLineInput(
                        product_id=item.product_id,
                        quantity=item.quantity,
                        unit_price=item.unit_price,
                        desired_delivery_date=item.desired_delivery_date,
                        supplier_reference=entry.supplier_reference if entry else None,
                    )
                )
            order = open_order(
                db,
                station_id=purchase_list.station_id,
                supplier_id=supplier_id,
                lines=lines,
                purchase_list_id=purchase_list.id,
                actor_id=actor_id,
            )
            order_ids.append(order.id)

        # items copiés dans les commandes, pas déplacés
        purchase_list.items.clear()
        purchase_list.status = ListStatus.archived
        purchase_list.archived_at = utcnow()
        db.flush()

    logger.info(
        "Purchase list %s converted into %d order(s): %s (actor=%s)",
        list_id, len(order_ids), order_ids, actor_id,
    )
    return order_ids


def purchase_list_summary(db: Session, *, list_id: int) -> dict:
    """Commandes issues d'une liste + statut général du groupe."""
    purchase_list = require(db, PurchaseList, list_id, entity=ENTITY)
    orders: list[PurchaseOrder] = find_many(db, PurchaseOrder, purchase_list_id=purchase_list.id)
    return {
        "purchase_list_id": purchase_list.id,
        "list_status": purchase_list.status,
        "general_status": summarize_statuses(o.status for o in orders),
        "orders": orders,
    }
