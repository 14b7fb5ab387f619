from datetime import date
from decimal import Decimal

import pytest

from backend.app.db.models.core_types import ListStatus
from backend.app.db.models.models_v1 import PurchaseList, Supplier
from backend.services import procurement
from backend.services.errors import InvalidStateError, NotFoundError, ValidationError
from backend.services.procurement import (
    ItemInput,
    add_item,
    convert_purchase_list,
    create_purchase_list,
    delete_purchase_list,
    get_draft_list,
    remove_item,
)


def test_add_item_opens_draft_on_first_addition(db_session, catalog):
    assert get_draft_list(db_session, catalog.north) is None

    plist = add_item(
        db_session,
        station_id=catalog.north,
        product_id=catalog.product_a,
        supplier_id=catalog.supplier_x,
        quantity=3,
        actor_id="buyer-1",
    )

    assert plist.status == ListStatus.draft
    assert plist.created_by == "buyer-1"
    assert get_draft_list(db_session, catalog.north).id == plist.id
    (item,) = plist.items
    # prix catalogue par défaut
    assert Decimal(item.unit_price) == Decimal("2.50")


def test_add_same_product_supplier_replaces_quantity(db_session, catalog):
    add_item(db_session, station_id=catalog.north, product_id=catalog.product_a, supplier_id=catalog.supplier_x, quantity=3)
    plist = add_item(
        db_session,
        station_id=catalog.north,
        product_id=catalog.product_a,
        supplier_id=catalog.supplier_x,
        quantity=8,
        desired_delivery_date=date(2026, 11, 2),
    )

    (item,) = plist.items
    assert item.quantity == 8
    assert item.desired_delivery_date == date(2026, 11, 2)


def test_add_item_without_any_price_is_rejected(db_session, catalog):
    # C n'est pas au catalogue du fournisseur X
    with pytest.raises(ValidationError) as excinfo:
        add_item(db_session, station_id=catalog.north, product_id=catalog.product_c, supplier_id=catalog.supplier_x, quantity=1)
    assert excinfo.value.context["field"] == "unit_price"

    plist = add_item(
        db_session,
        station_id=catalog.north,
        product_id=catalog.product_c,
        supplier_id=catalog.supplier_x,
        quantity=1,
        unit_price=Decimal("11.00"),
    )
    assert Decimal(plist.items[0].unit_price) == Decimal("11.00")


@pytest.mark.parametrize("quantity", [0, -2])
def test_non_positive_quantity_is_rejected(db_session, catalog, quantity):
    with pytest.raises(ValidationError) as excinfo:
        add_item(
            db_session,
            station_id=catalog.north,
            product_id=catalog.product_a,
            supplier_id=catalog.supplier_x,
            quantity=quantity,
        )
    assert excinfo.value.context["field"] == "quantity"


def test_unknown_or_inactive_references_are_rejected(db_session, catalog):
    with pytest.raises(ValidationError):
        add_item(db_session, station_id=catalog.north, product_id=999, supplier_id=catalog.supplier_x, quantity=1)

    db_session.get(Supplier, catalog.supplier_y).active = False
    db_session.commit()
    with pytest.raises(ValidationError) as excinfo:
        add_item(db_session, station_id=catalog.north, product_id=catalog.product_c, supplier_id=catalog.supplier_y, quantity=1)
    assert excinfo.value.context["field"] == "supplier_id"

    with pytest.raises(ValidationError) as excinfo:
        create_purchase_list(db_session, station_id=999)
    assert excinfo.value.context["field"] == "station_id"


def test_one_draft_list_per_station(db_session, catalog):
    create_purchase_list(db_session, station_id=catalog.north)

    with pytest.raises(InvalidStateError):
        create_purchase_list(db_session, station_id=catalog.north)

    # une autre station n'est pas concernée
    other = create_purchase_list(db_session, station_id=catalog.south)
    assert other.status == ListStatus.draft


def test_new_draft_allowed_after_conversion(db_session, catalog):
    plist = create_purchase_list(
        db_session,
        station_id=catalog.north,
        items=[ItemInput(catalog.product_a, catalog.supplier_x, 1)],
    )
    convert_purchase_list(db_session, list_id=plist.id)

    fresh = create_purchase_list(db_session, station_id=catalog.north)
    assert fresh.id != plist.id
    assert get_draft_list(db_session, catalog.north).id == fresh.id


def test_remove_item(db_session, catalog):
    plist = create_purchase_list(
        db_session,
        station_id=catalog.north,
        items=[
            ItemInput(catalog.product_a, catalog.supplier_x, 1),
            ItemInput(catalog.product_c, catalog.supplier_y, 2),
        ],
    )
    first_item_id = plist.items[0].id

    plist = remove_item(db_session, list_id=plist.id, item_id=first_item_id)
    assert [i.product_id for i in plist.items] == [catalog.product_c]

    with pytest.raises(NotFoundError):
        remove_item(db_session, list_id=plist.id, item_id=first_item_id)


def test_archived_list_is_read_only(db_session, catalog):
    plist = create_purchase_list(
        db_session,
        station_id=catalog.north,
        items=[ItemInput(catalog.product_a, catalog.supplier_x, 1)],
    )
    list_id = plist.id
    convert_purchase_list(db_session, list_id=list_id)

    with pytest.raises(InvalidStateError):
        delete_purchase_list(db_session, list_id=list_id)
    with pytest.raises(InvalidStateError):
        remove_item(db_session, list_id=list_id, item_id=1)


def test_delete_draft_list(db_session, catalog):
    plist = create_purchase_list(
        db_session,
        station_id=catalog.north,
        items=[ItemInput(catalog.product_a, catalog.supplier_x, 1)],
    )
    list_id = plist.id

    delete_purchase_list(db_session, list_id=list_id)

    assert db_session.get(PurchaseList, list_id) is None
    assert get_draft_list(db_session, catalog.north) is None


@pytest.fixture
def stale_draft_lookup(monkeypatch):
    """
    Première lecture de la liste DRAFT aveugle (None) : simule une requête
    concurrente qui commit sa liste entre notre lecture et notre insert.
    """
    real = procurement.get_draft_list
    calls = []

    def lookup(db, station_id):
        calls.append(station_id)
        if len(calls) == 1:
            return None
        return real(db, station_id)

    monkeypatch.setattr(procurement, "get_draft_list", lookup)
    return calls


def test_add_item_reuses_draft_opened_concurrently(db_session, catalog, stale_draft_lookup):
    """
    GIVEN une liste DRAFT déjà commitée pour la station (avec A)
    WHEN add_item(B) ne la voit pas et tente d'en créer une seconde
    THEN l'index unique refuse l'insert, la liste existante est reprise
         et B y est ajouté
    """
    existing = create_purchase_list(
        db_session,
        station_id=catalog.north,
        items=[ItemInput(catalog.product_a, catalog.supplier_x, 1)],
    )
    stale_draft_lookup.clear()

    plist = add_item(
        db_session,
        station_id=catalog.north,
        product_id=catalog.product_b,
        supplier_id=catalog.supplier_x,
        quantity=2,
    )

    assert len(stale_draft_lookup) == 2
    assert plist.id == existing.id
    assert sorted(i.product_id for i in plist.items) == [catalog.product_a, catalog.product_b]

    db_session.expire_all()
    drafts = db_session.query(PurchaseList).filter_by(station_id=catalog.north, status=ListStatus.draft).all()
    assert [d.id for d in drafts] == [existing.id]
    assert len(drafts[0].items) == 2


def test_create_list_still_refused_when_draft_opened_concurrently(db_session, catalog, stale_draft_lookup):
    existing = create_purchase_list(db_session, station_id=catalog.north)
    stale_draft_lookup.clear()

    with pytest.raises(InvalidStateError) as excinfo:
        create_purchase_list(db_session, station_id=catalog.north)

    assert excinfo.value.context["entity_id"] == existing.id
    assert not excinfo.value.retryable
    assert db_session.query(PurchaseList).filter_by(station_id=catalog.north).count() == 1
