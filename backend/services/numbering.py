"""
Numérotation des commandes et transferts : {PREFIX}-{année}-{séquence:06d}.

Un compteur par (type, année) dans `number_sequences`, incrémenté sous
verrou (FOR UPDATE) dans la transaction de l'appelant : deux appels
concurrents ne peuvent pas obtenir le même numéro, et un rollback de
l'appelant rend le numéro.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import NumberSequence
from backend.app.db.models.core_types import SequenceKind

logger = logging.getLogger(__name__)

PREFIXES = {
    SequenceKind.order: "CMD",
    SequenceKind.transfer: "TRF",
}
SEQUENCE_WIDTH = 6


def format_number(kind: SequenceKind, year: int, value: int) -> str:
    return f"{PREFIXES[kind]}-{year}-{value:0{SEQUENCE_WIDTH}d}"


def _locked_sequence(db: Session, kind: SequenceKind, year: int) -> NumberSequence | None:
    return (
        db.execute(
            select(NumberSequence)
            .where(NumberSequence.kind == kind)
            .where(NumberSequence.year == year)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        .scalars()
        .first()
    )


def next_number(db: Session, kind: SequenceKind, year: int | None = None) -> str:
    """
    Retourne le prochain numéro pour `kind` / `year` (année courante UTC par défaut).

    Doit être appelé dans une transaction ouverte ; ne commit pas.
    """
    kind = SequenceKind(kind)
    if year is None:
        year = datetime.now(timezone.utc).year

    seq = _locked_sequence(db, kind, year)
    if seq is None:
        # premier numéro de l'année : un autre appelant peut insérer en même temps
        try:
            with db.begin_nested():
                db.add(NumberSequence(kind=kind, year=year, last_value=0))
        except IntegrityError:
            logger.info("Sequence %s/%s created concurrently, retrying", kind.value, year)
        seq = _locked_sequence(db, kind, year)

    seq.last_value += 1
    db.flush()
    return format_number(kind, year, seq.last_value)
