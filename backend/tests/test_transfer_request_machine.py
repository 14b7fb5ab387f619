import logging
import threading

import pytest

from backend.app.db.models.core_types import TransferStatus
from backend.app.db.models.models_v1 import TransferRequest
from backend.services.errors import (
    GuardConditionError,
    InvalidStateError,
    InvalidTransitionError,
    TransientError,
    ValidationError,
)
from backend.services.transfers import (
    TransferLineInput,
    TransferTransitionData,
    approve_transfer,
    create_transfer_request,
    delete_transfer_request,
    register_transfer_listener,
    reject_transfer,
    transition_transfer,
    update_transfer_lines,
)


@pytest.fixture
def transfer_id(db_session, catalog) -> int:
    """Demande REGISTERED : Nord demande à Sud 10 x A et 4 x B."""
    transfer = create_transfer_request(
        db_session,
        requesting_station_id=catalog.north,
        source_station_id=catalog.south,
        lines=[TransferLineInput(catalog.product_a, 10), TransferLineInput(catalog.product_b, 4)],
        actor_id="station-nord",
    )
    return transfer.id


def _line(transfer, product_id):
    return next(ln for ln in transfer.lines if ln.product_id == product_id)


def test_create_numbers_and_records_history(db_session, transfer_id):
    transfer = db_session.get(TransferRequest, transfer_id)
    assert transfer.transfer_number.startswith("TRF-")
    assert transfer.transfer_number.endswith("-000001")
    assert transfer.status == TransferStatus.registered
    assert [(h.status, h.actor_id) for h in transfer.history] == [(TransferStatus.registered, "station-nord")]
    assert all(ln.qty_granted is None for ln in transfer.lines)


def test_create_validation(db_session, catalog):
    with pytest.raises(ValidationError):
        create_transfer_request(
            db_session,
            requesting_station_id=catalog.north,
            source_station_id=catalog.north,
            lines=[TransferLineInput(catalog.product_a, 1)],
        )
    with pytest.raises(ValidationError):
        create_transfer_request(
            db_session, requesting_station_id=catalog.north, source_station_id=catalog.south, lines=[]
        )
    with pytest.raises(ValidationError):
        create_transfer_request(
            db_session,
            requesting_station_id=catalog.north,
            source_station_id=catalog.south,
            lines=[TransferLineInput(catalog.product_a, 1), TransferLineInput(catalog.product_a, 2)],
        )
    with pytest.raises(ValidationError):
        create_transfer_request(
            db_session,
            requesting_station_id=catalog.north,
            source_station_id=catalog.south,
            lines=[TransferLineInput(catalog.product_a, 0)],
        )


def test_partial_approval(db_session, catalog, transfer_id):
    """
    GIVEN une demande REGISTERED avec A demandé = 10
    WHEN approve(A accordé = 7)
    THEN CONFIRMED, A.granted == 7, B non statué
    """
    transfer = approve_transfer(
        db_session, transfer_id=transfer_id, approved_lines=[(catalog.product_a, 7)], actor_id="station-sud"
    )

    assert transfer.status == TransferStatus.confirmed
    assert _line(transfer, catalog.product_a).qty_granted == 7
    assert _line(transfer, catalog.product_b).qty_granted is None
    assert transfer.history[-1].actor_id == "station-sud"


def test_granted_zero_is_kept_as_zero(db_session, catalog, transfer_id):
    transfer = approve_transfer(
        db_session,
        transfer_id=transfer_id,
        approved_lines={catalog.product_a: 0, catalog.product_b: 4},
    )
    assert _line(transfer, catalog.product_a).qty_granted == 0
    assert _line(transfer, catalog.product_b).qty_granted == 4


@pytest.mark.parametrize(
    "approved",
    [
        [("A", 11)],  # plus que demandé
        [("A", -1)],
        [("C", 1)],  # produit hors demande
        [("A", 1), ("A", 2)],  # doublon
    ],
)
def test_invalid_approvals_leave_request_untouched(db_session, catalog, transfer_id, approved):
    products = {"A": catalog.product_a, "C": catalog.product_c}
    entries = [(products[key], qty) for key, qty in approved]

    with pytest.raises(ValidationError):
        approve_transfer(db_session, transfer_id=transfer_id, approved_lines=entries)

    transfer = db_session.get(TransferRequest, transfer_id)
    assert transfer.status == TransferStatus.registered
    assert all(ln.qty_granted is None for ln in transfer.lines)


def test_confirm_without_approved_lines_is_a_guard_failure(db_session, transfer_id):
    with pytest.raises(GuardConditionError) as excinfo:
        transition_transfer(db_session, transfer_id=transfer_id, target=TransferStatus.confirmed)
    assert excinfo.value.context["field"] == "approved_lines"


def test_reject_requires_reason_and_is_terminal(db_session, catalog, transfer_id):
    with pytest.raises(GuardConditionError):
        reject_transfer(db_session, transfer_id=transfer_id, reason="  ")

    transfer = reject_transfer(db_session, transfer_id=transfer_id, reason="Stock insuffisant")
    assert transfer.status == TransferStatus.rejected
    assert transfer.rejection_reason == "Stock insuffisant"

    with pytest.raises(InvalidTransitionError):
        approve_transfer(db_session, transfer_id=transfer_id, approved_lines=[(catalog.product_a, 1)])
    with pytest.raises(InvalidTransitionError):
        transition_transfer(db_session, transfer_id=transfer_id, target=TransferStatus.archived)


def test_full_flow_with_documents(db_session, catalog, transfer_id, caplog):
    approve_transfer(db_session, transfer_id=transfer_id, approved_lines=[(catalog.product_a, 7), (catalog.product_b, 4)])
    transition_transfer(db_session, transfer_id=transfer_id, target=TransferStatus.logistics_processed)

    with pytest.raises(GuardConditionError):
        transition_transfer(db_session, transfer_id=transfer_id, target=TransferStatus.shipped)
    transition_transfer(
        db_session,
        transfer_id=transfer_id,
        target=TransferStatus.shipped,
        data=TransferTransitionData(shipping_document_ref="BT-77"),
    )

    with pytest.raises(GuardConditionError):
        transition_transfer(db_session, transfer_id=transfer_id, target=TransferStatus.received)
    with caplog.at_level(logging.WARNING, logger="backend.services.transfers"):
        transfer = transition_transfer(
            db_session,
            transfer_id=transfer_id,
            target=TransferStatus.received,
            data=TransferTransitionData(
                signed_delivery_document_ref="BTS-77",
                received_quantities={catalog.product_a: 8, catalog.product_b: 4},
            ),
        )

    assert _line(transfer, catalog.product_a).qty_received == 8
    assert "received 8 > granted 7" in caplog.text
    assert transfer.shipping_document_ref == "BT-77"
    assert transfer.signed_delivery_document_ref == "BTS-77"

    for target in (TransferStatus.closed, TransferStatus.accounting_processed, TransferStatus.archived):
        transfer = transition_transfer(db_session, transfer_id=transfer_id, target=target)
    assert [h.status for h in transfer.history][-3:] == [
        TransferStatus.closed,
        TransferStatus.accounting_processed,
        TransferStatus.archived,
    ]


def test_lines_editable_only_while_registered(db_session, catalog, transfer_id):
    transfer = update_transfer_lines(
        db_session,
        transfer_id=transfer_id,
        lines=[TransferLineInput(catalog.product_a, 3), TransferLineInput(catalog.product_c, 2)],
    )
    assert [(ln.product_id, ln.qty_requested) for ln in transfer.lines] == [
        (catalog.product_a, 3),
        (catalog.product_c, 2),
    ]

    approve_transfer(db_session, transfer_id=transfer_id, approved_lines=[(catalog.product_a, 3)])

    with pytest.raises(InvalidStateError):
        update_transfer_lines(db_session, transfer_id=transfer_id, lines=[TransferLineInput(catalog.product_a, 1)])
    with pytest.raises(InvalidStateError):
        delete_transfer_request(db_session, transfer_id=transfer_id)


def test_delete_registered_request(db_session, transfer_id):
    delete_transfer_request(db_session, transfer_id=transfer_id)
    assert db_session.get(TransferRequest, transfer_id) is None


def test_listeners_notified_after_commit(db_session, catalog, transfer_id):
    seen = []

    @register_transfer_listener
    def on_change(change):
        # la transition est déjà visible en base
        persisted = db_session.get(TransferRequest, change.transfer_id)
        seen.append((change.source, change.target, persisted.status))

    approve_transfer(db_session, transfer_id=transfer_id, approved_lines=[(catalog.product_a, 5)])

    assert seen == [(TransferStatus.registered, TransferStatus.confirmed, TransferStatus.confirmed)]


def test_failing_listener_does_not_undo_transition(db_session, catalog, transfer_id, caplog):
    @register_transfer_listener
    def broken(change):
        raise RuntimeError("ledger down")

    transfer = reject_transfer(db_session, transfer_id=transfer_id, reason="Hors délai")

    assert transfer.status == TransferStatus.rejected
    assert "Transfer listener" in caplog.text
    db_session.expire_all()
    assert db_session.get(TransferRequest, transfer_id).status == TransferStatus.rejected


def test_failed_guard_does_not_notify(db_session, transfer_id):
    seen = []
    register_transfer_listener(seen.append)

    with pytest.raises(GuardConditionError):
        reject_transfer(db_session, transfer_id=transfer_id, reason=None)

    assert seen == []


def test_fractional_grant_is_rejected_not_truncated(db_session, catalog, transfer_id):
    with pytest.raises(ValidationError) as excinfo:
        approve_transfer(db_session, transfer_id=transfer_id, approved_lines={catalog.product_a: 7.9})

    assert excinfo.value.context["field"] == "approved_lines"
    transfer = db_session.get(TransferRequest, transfer_id)
    assert transfer.status == TransferStatus.registered
    assert _line(transfer, catalog.product_a).qty_granted is None


def test_unknown_target_is_a_validation_error(db_session, transfer_id):
    with pytest.raises(ValidationError) as excinfo:
        transition_transfer(db_session, transfer_id=transfer_id, target="BOGUS")

    assert excinfo.value.context["field"] == "target"
    assert excinfo.value.context["entity"] == "transfer_request"


@pytest.mark.concurrency
def test_concurrent_approvals_only_one_wins(race, file_sessions, file_catalog):
    """
    GIVEN une demande REGISTERED (A demandé = 10)
    WHEN deux approbations concurrentes (7 et 3)
    THEN une seule passe : un seul CONFIRMED dans l'historique,
         quantité accordée = celle du gagnant
    """
    with file_sessions() as db:
        transfer_id = create_transfer_request(
            db,
            requesting_station_id=file_catalog.north,
            source_station_id=file_catalog.south,
            lines=[TransferLineInput(file_catalog.product_a, 10)],
        ).id

    grants = iter([7, 3])
    lock = threading.Lock()

    def approve(db):
        with lock:
            granted = next(grants)
        approve_transfer(db, transfer_id=transfer_id, approved_lines=[(file_catalog.product_a, granted)])
        return granted

    outcomes = race(approve)

    winners = [o for o in outcomes if isinstance(o, int)]
    assert len(winners) == 1
    loser = next(o for o in outcomes if not isinstance(o, int))
    assert isinstance(loser, (TransientError, InvalidTransitionError))

    with file_sessions() as db:
        transfer = db.get(TransferRequest, transfer_id)
        assert transfer.status == TransferStatus.confirmed
        assert [h.status for h in transfer.history] == [TransferStatus.registered, TransferStatus.confirmed]
        assert transfer.lines[0].qty_granted == winners[0]
