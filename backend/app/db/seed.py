from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.db.session import SessionLocal
from backend.app.db.models.models_v1 import Product, ProductSupplier, Station, Supplier
from backend.app.logging_setup import setup_logging

logger = logging.getLogger(__name__)

STATIONS = [
    ("Station Nord", "Lille"),
    ("Station Sud", "Marseille"),
    ("Station Ouest", "Nantes"),
]

SUPPLIERS = [
    ("Cartonnages Dupont", "41234567800012"),
    ("Plastiques Martin", "52345678900023"),
]

PRODUCTS = [
    ("CART-40", "Carton 40x30x30", "carton"),
    ("FILM-500", "Film étirable 500mm", "rouleau"),
    ("PAL-EUR", "Palette Europe", "unit"),
]

# (sku, fournisseur, prix, référence fournisseur, conditionnement, unités/colis)
CATALOGUE = [
    ("CART-40", "Cartonnages Dupont", Decimal("1.20"), "CD-4030", "paquet", 25),
    ("PAL-EUR", "Cartonnages Dupont", Decimal("9.50"), "CD-PAL", None, None),
    ("FILM-500", "Plastiques Martin", Decimal("14.90"), "PM-F500", "carton", 6),
    ("CART-40", "Plastiques Martin", Decimal("1.35"), None, None, None),
]


def _get_or_add(db: Session, model, lookup: dict, **values):
    obj = db.scalar(select(model).filter_by(**lookup))
    if obj is None:
        obj = model(**lookup, **values)
        db.add(obj)
        db.flush()
    return obj


def run_seed(db: Session | None = None) -> None:
    own_session = db is None
    db = db or SessionLocal()
    try:
        # 1) Stations
        for name, city in STATIONS:
            _get_or_add(db, Station, {"name": name}, city=city, active=True)

        # 2) Fournisseurs
        suppliers = {
            name: _get_or_add(db, Supplier, {"name": name}, siret=siret, active=True)
            for name, siret in SUPPLIERS
        }

        # 3) Produits
        products = {
            sku: _get_or_add(db, Product, {"sku": sku}, name=name, packaging_unit=unit, active=True)
            for sku, name, unit in PRODUCTS
        }

        # 4) Catalogue produit x fournisseur
        for sku, supplier_name, price, ref, packaging, per_package in CATALOGUE:
            key = (products[sku].id, suppliers[supplier_name].id)
            if db.get(ProductSupplier, key) is None:
                db.add(
                    ProductSupplier(
                        product_id=key[0],
                        supplier_id=key[1],
                        unit_price=price,
                        supplier_reference=ref,
                        packaging_unit=packaging,
                        units_per_package=per_package,
                    )
                )

        db.commit()
        logger.info(
            "SEED OK: %d stations, %d suppliers, %d products, %d catalogue rows",
            len(STATIONS), len(SUPPLIERS), len(PRODUCTS), len(CATALOGUE),
        )
    except Exception:
        db.rollback()
        raise
    finally:
        if own_session:
            db.close()


if __name__ == "__main__":
    setup_logging()
    run_seed()
