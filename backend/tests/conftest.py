import threading
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from backend.app.api.deps import get_db
from backend.app.db.base import Base
from backend.app.db.models import models_v1  # noqa: F401  (enregistre les tables)
from backend.app.db.models.models_v1 import Product, ProductSupplier, Station, Supplier
from backend.app.db.session import build_engine
from backend.app.main import app
from backend.services import transfers
from backend.services.errors import OrchestrationError


@pytest.fixture(scope="function")
def engine():
    """Base SQLite en mémoire, schéma neuf pour chaque test."""
    eng = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture(scope="function")
def db_session(engine) -> Session:
    """
    Session DB isolée par test.

    Les services commit eux-mêmes (transaction(db)) : l'isolation vient de la
    base jetable, pas d'un rollback englobant.
    """
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def file_engine(tmp_path):
    """Base SQLite sur fichier : plusieurs connexions réelles (tests de concurrence)."""
    eng = build_engine(f"sqlite:///{tmp_path / 'race.db'}", connect_args={"check_same_thread": False, "timeout": 5})
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


def build_catalog(db: Session) -> SimpleNamespace:
    """
    Données de référence minimales :
    - 2 stations, 2 fournisseurs (X, Y), 3 produits (A, B, C)
    - catalogue : A et B chez X, C chez Y (avec référence fournisseur)
    """
    north = Station(name="Station Nord", city="Lille")
    south = Station(name="Station Sud", city="Marseille")
    supplier_x = Supplier(name="Fournisseur X")
    supplier_y = Supplier(name="Fournisseur Y")
    product_a = Product(sku="SKU-A", name="Produit A")
    product_b = Product(sku="SKU-B", name="Produit B")
    product_c = Product(sku="SKU-C", name="Produit C")
    db.add_all([north, south, supplier_x, supplier_y, product_a, product_b, product_c])
    db.flush()

    db.add_all(
        [
            ProductSupplier(product_id=product_a.id, supplier_id=supplier_x.id, unit_price=Decimal("2.50"), supplier_reference="X-A"),
            ProductSupplier(product_id=product_b.id, supplier_id=supplier_x.id, unit_price=Decimal("4.00"), supplier_reference="X-B"),
            ProductSupplier(product_id=product_c.id, supplier_id=supplier_y.id, unit_price=Decimal("10.00"), supplier_reference="Y-C"),
        ]
    )
    db.commit()

    return SimpleNamespace(
        north=north.id,
        south=south.id,
        supplier_x=supplier_x.id,
        supplier_y=supplier_y.id,
        product_a=product_a.id,
        product_b=product_b.id,
        product_c=product_c.id,
    )


@pytest.fixture(scope="function")
def catalog(db_session) -> SimpleNamespace:
    return build_catalog(db_session)


@pytest.fixture(scope="function")
def file_sessions(file_engine):
    """Fabrique de sessions indépendantes sur la base fichier."""
    return sessionmaker(bind=file_engine, autoflush=False, autocommit=False)


@pytest.fixture(scope="function")
def file_catalog(file_sessions) -> SimpleNamespace:
    with file_sessions() as db:
        return build_catalog(db)


@pytest.fixture(scope="function")
def race(file_sessions):
    """
    Lance `fn(db)` dans n threads démarrés ensemble, une session chacun.

    Renvoie, par thread, la valeur de retour ou l'OrchestrationError levée.
    """

    def run(fn, n=2):
        barrier = threading.Barrier(n)
        outcomes = []
        lock = threading.Lock()

        def worker():
            with file_sessions() as db:
                barrier.wait()
                try:
                    result = fn(db)
                except OrchestrationError as exc:
                    result = exc
                with lock:
                    outcomes.append(result)

        threads = [threading.Thread(target=worker) for _ in range(n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)
        assert len(outcomes) == n
        return outcomes

    return run


@pytest.fixture(scope="function")
def client(db_session):
    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _reset_transfer_listeners():
    # registre module-level : ne pas laisser fuir un abonné d'un test à l'autre
    saved = list(transfers._listeners)
    yield
    transfers._listeners[:] = saved
