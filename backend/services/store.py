"""
Accès entités (find / find_many / save / remove) et unité de travail.

Les services n'ouvrent jamais de Session eux-mêmes : ils reçoivent celle de
l'appelant et délimitent leurs écritures avec `transaction(db)`.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from backend.services.errors import NotFoundError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def find(db: Session, model: type[T], entity_id: Any, *, for_update: bool = False) -> T | None:
    stmt = select(model).where(model.id == entity_id)
    if for_update:
        # relit la ligne verrouillée, même si l'objet est déjà dans l'identity map
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return db.execute(stmt).scalar_one_or_none()


def entity_name(model: type) -> str:
    """Nom singulier d'une table : "stations" -> "station", "address" inchangé."""
    name = model.__tablename__
    if name.endswith("s") and not name.endswith("ss"):
        return name[:-1]
    return name


def require(
    db: Session,
    model: type[T],
    entity_id: Any,
    *,
    for_update: bool = False,
    entity: str | None = None,
) -> T:
    found = find(db, model, entity_id, for_update=for_update)
    if found is None:
        raise NotFoundError(entity or entity_name(model), entity_id)
    return found


def find_many(db: Session, model: type[T], **filters: Any) -> list[T]:
    stmt = select(model).filter_by(**filters).order_by(model.id.asc())
    return list(db.execute(stmt).scalars().all())


def save(db: Session, entity: T) -> T:
    db.add(entity)
    db.flush()
    return entity


def remove(db: Session, entity: Any) -> None:
    db.delete(entity)
    db.flush()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Unité de travail explicite : commit si tout passe, rollback sinon.

    Usage:
        with transaction(db):
            ...
    Les conflits du store (verrou, sérialisation, version périmée) remontent
    en TransientError ; toute autre exception est propagée telle quelle.
    """
    try:
        yield db
        db.commit()
    except (OperationalError, StaleDataError) as exc:
        db.rollback()
        logger.warning("Store contention, transaction rolled back: %s", exc)
        raise TransientError(f"store contention: {exc}") from exc
    except Exception:
        db.rollback()
        raise
