"""
Cycles de vie des documents (commande fournisseur, demande de transfert).

Un seul moteur, paramétré par document : chaîne ordonnée de statuts, arêtes
supplémentaires, statuts terminaux. La table d'adjacence est explicite ;
toute transition absente de la table est refusée.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from backend.app.db.models.core_types import OrderStatus, TransferStatus
from backend.services.errors import InvalidTransitionError, ValidationError


@dataclass(frozen=True)
class Lifecycle:
    entity: str
    chain: tuple
    transitions: Mapping[Any, frozenset]
    terminal: frozenset = field(default_factory=frozenset)

    def coerce(self, entity_id, value):
        """Statut connu de ce cycle de vie ; ValidationError sinon (ex. cible inconnue)."""
        for status in self.transitions:
            if value == status or value == getattr(status, "value", status):
                return status
        raise ValidationError(
            "target",
            f"unknown {self.entity} status {value!r}",
            entity=self.entity,
            entity_id=entity_id,
        )

    def allowed_targets(self, current) -> frozenset:
        return self.transitions.get(current, frozenset())

    def can_transition(self, current, target) -> bool:
        return target in self.allowed_targets(current)

    def check_transition(self, entity_id, current, target) -> None:
        if not self.can_transition(current, target):
            raise InvalidTransitionError(self.entity, entity_id, current, target)

    def is_terminal(self, status) -> bool:
        return status in self.terminal

    def rank(self, status) -> int:
        """Position dans la chaîne ; -1 pour un statut hors chaîne (ex. REJECTED)."""
        try:
            return self.chain.index(status)
        except ValueError:
            return -1


def build_lifecycle(
    entity: str,
    chain: Iterable,
    *,
    extra_edges: Mapping[Any, Iterable] | None = None,
    archive_from_anywhere: Any = None,
    terminal: Iterable = (),
) -> Lifecycle:
    """
    Chaîne linéaire (chaque statut -> son successeur) + arêtes supplémentaires.

    `archive_from_anywhere` : statut atteignable depuis tout statut non
    terminal (classement administratif).
    """
    chain = tuple(chain)
    terminal = frozenset(terminal)
    edges: dict[Any, set] = {status: set() for status in chain}

    for source, target in zip(chain, chain[1:]):
        edges[source].add(target)

    for source, targets in (extra_edges or {}).items():
        edges.setdefault(source, set()).update(targets)
        for target in targets:
            edges.setdefault(target, set())

    if archive_from_anywhere is not None:
        for source in edges:
            if source not in terminal and source != archive_from_anywhere:
                edges[source].add(archive_from_anywhere)

    for status in terminal:
        edges[status] = set()

    return Lifecycle(
        entity=entity,
        chain=chain,
        transitions={source: frozenset(targets) for source, targets in edges.items()},
        terminal=terminal,
    )


ORDER_LIFECYCLE = build_lifecycle(
    "purchase_order",
    (
        OrderStatus.registered,
        OrderStatus.confirmed,
        OrderStatus.shipped,
        OrderStatus.received,
        OrderStatus.closed,
        OrderStatus.invoiced,
        OrderStatus.archived,
    ),
    archive_from_anywhere=OrderStatus.archived,
    terminal=(OrderStatus.archived,),
)

TRANSFER_LIFECYCLE = build_lifecycle(
    "transfer_request",
    (
        TransferStatus.registered,
        TransferStatus.confirmed,
        TransferStatus.logistics_processed,
        TransferStatus.shipped,
        TransferStatus.received,
        TransferStatus.closed,
        TransferStatus.accounting_processed,
        TransferStatus.archived,
    ),
    extra_edges={TransferStatus.registered: (TransferStatus.rejected,)},
    archive_from_anywhere=TransferStatus.archived,
    terminal=(TransferStatus.archived, TransferStatus.rejected),
)


def summarize_statuses(statuses: Iterable[OrderStatus]) -> str:
    """
    Statut général d'un groupe de commandes (issues d'une même liste).

    - toutes au même statut -> ce statut
    - sinon -> PARTIALLY_<statut le plus avancé présent>
    - REGISTERED n'a pas de forme partielle
    - groupe vide -> EMPTY
    """
    statuses = [OrderStatus(s) for s in statuses]
    if not statuses:
        return "EMPTY"

    for status in reversed(ORDER_LIFECYCLE.chain):
        count = statuses.count(status)
        if count == len(statuses):
            return status.value
        if count > 0:
            if status == OrderStatus.registered:
                return status.value
            return f"PARTIALLY_{status.value}"

    return "UNKNOWN"
