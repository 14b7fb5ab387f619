from types import SimpleNamespace

import pytest

from backend.app.db.models.models_v1 import NumberSequence, OrderStatusHistory, PurchaseList, Station
from backend.services.errors import NotFoundError
from backend.services.store import entity_name, require


@pytest.mark.parametrize(
    "tablename, expected",
    [
        ("stations", "station"),
        ("purchase_lists", "purchase_list"),
        ("order_status_history", "order_status_history"),
        # un seul "s" retiré, jamais une suite de "s"
        ("address", "address"),
        ("business", "business"),
    ],
)
def test_entity_name_singularizes_one_trailing_s(tablename, expected):
    assert entity_name(SimpleNamespace(__tablename__=tablename)) == expected


def test_entity_name_of_mapped_models():
    assert entity_name(Station) == "station"
    assert entity_name(PurchaseList) == "purchase_list"
    assert entity_name(OrderStatusHistory) == "order_status_history"
    assert entity_name(NumberSequence) == "number_sequence"


def test_require_unknown_id_names_the_entity(db_session, catalog):
    with pytest.raises(NotFoundError) as excinfo:
        require(db_session, Station, 999)
    assert excinfo.value.context == {"entity": "station", "entity_id": 999}

    with pytest.raises(NotFoundError) as excinfo:
        require(db_session, Station, 999, entity="depot")
    assert excinfo.value.context["entity"] == "depot"


def test_require_returns_the_row(db_session, catalog):
    assert require(db_session, Station, catalog.north).name == "Station Nord"
    assert require(db_session, Station, catalog.south, for_update=True).city == "Marseille"
