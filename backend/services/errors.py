"""
Erreurs métier du moteur commandes / transferts.

Chaque erreur transporte un `context` (entité, id, statut courant, statut
visé, champ fautif) pour que la couche API puisse produire un message précis.
Seule `TransientError` est rejouable telle quelle.
"""

from __future__ import annotations

from typing import Any


class OrchestrationError(Exception):
    retryable = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def __str__(self) -> str:
        return self.message


class NotFoundError(OrchestrationError):
    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(f"{entity} {entity_id} not found", entity=entity, entity_id=entity_id)


class InvalidStateError(OrchestrationError):
    def __init__(self, entity: str, entity_id: Any, status: Any, message: str) -> None:
        super().__init__(
            f"{entity} {entity_id} is {_label(status)}: {message}",
            entity=entity,
            entity_id=entity_id,
            status=_label(status),
        )


class EmptyListError(OrchestrationError):
    def __init__(self, list_id: Any) -> None:
        super().__init__(
            f"purchase list {list_id} has no items",
            entity="purchase_list",
            entity_id=list_id,
        )


class InvalidTransitionError(OrchestrationError):
    def __init__(self, entity: str, entity_id: Any, source: Any, target: Any) -> None:
        super().__init__(
            f"{entity} {entity_id}: transition {_label(source)} -> {_label(target)} is not allowed",
            entity=entity,
            entity_id=entity_id,
            status=_label(source),
            target=_label(target),
        )


class GuardConditionError(OrchestrationError):
    def __init__(self, entity: str, entity_id: Any, target: Any, field: str, message: str | None = None) -> None:
        super().__init__(
            message or f"{entity} {entity_id}: '{field}' is required to enter {_label(target)}",
            entity=entity,
            entity_id=entity_id,
            target=_label(target),
            field=field,
        )


class ValidationError(OrchestrationError):
    def __init__(self, field: str, message: str, **context: Any) -> None:
        super().__init__(message, field=field, **context)


class TransientError(OrchestrationError):
    retryable = True


def _label(status: Any) -> Any:
    return getattr(status, "value", status)
