"""
Test per il DocumentService
Progetto: Gestionale Preventivi e Fatture

Dopo un'operazione fallita la sessione ha fatto rollback: i documenti
vanno sempre riletti con get_document prima delle verifiche.
"""

import datetime
import uuid
from decimal import Decimal

import pytest
from sqlalchemy.exc import InvalidRequestError

from app.core.exceptions import (
    BusinessValidationError,
    DocumentLockedError,
    IllegalTransitionError,
    InvalidLineInputError,
    NotFoundError,
    WriteConflictError,
)
from app.schemas.document import (
    DocumentCreate,
    DocumentUpdate,
    LineCreate,
    LineReorder,
    LineUpdate,
    NotesUpdate,
    QuoteStatus,
)
from app.services.calculator import aggregate

pytestmark = pytest.mark.asyncio

ALLOWED_QUOTE_TRANSITIONS = {
    ("DRAFT", "SENT"),
    ("DRAFT", "CANCELLED"),
    ("SENT", "APPROVED"),
    ("SENT", "REJECTED"),
    ("APPROVED", "REJECTED"),
    ("REJECTED", "APPROVED"),
}


def line(concept: str = "Voce", **kwargs) -> LineCreate:
    return LineCreate(concept=concept, **kwargs)


def assert_totals_consistent(document) -> None:
    """I totali salvati coincidono con l'aggregazione delle righe."""
    totals = aggregate(document.lines)
    assert document.subtotal == totals.subtotal
    assert document.tax_amount == totals.tax_amount
    assert document.total == totals.total
    assert document.total == document.subtotal + document.tax_amount


async def bring_quote_to(service, db, status: str) -> uuid.UUID:
    """Crea un preventivo con una riga e lo porta nello stato richiesto."""
    document = await service.create_document(
        db,
        DocumentCreate(
            client_reference="CLI-0001",
            lines=[line("Consulenza", quantity="2", unit_price="100", discount_percent="10", tax_rate="21")],
        ),
    )
    document_id = document.id
    if status == "DRAFT":
        return document_id
    if status == "CANCELLED":
        await service.cancel_document(db, document_id)
        return document_id

    await service.change_status(db, document_id, "SENT")
    if status == "APPROVED" or status == "INVOICED":
        await service.change_status(db, document_id, "APPROVED")
    elif status == "REJECTED":
        await service.change_status(db, document_id, "REJECTED")
    elif status == "EXPIRED":
        await service.expire_quote(db, document_id)

    if status == "INVOICED":
        await service.convert_to_invoice(db, document_id)
    return document_id


# ============================================================
# Test creazione e lettura
# ============================================================


class TestCreateDocument:
    """Test per la creazione dei preventivi."""

    async def test_create_empty_draft(self, db, service, quote_data):
        document = await service.create_document(db, quote_data, actor_id="user-1")

        assert document.document_type == "quote"
        assert document.status == QuoteStatus.DRAFT.value
        assert document.number == "BORR-%02d-0001" % (datetime.date.today().year % 100)
        assert document.provisional_number == document.number
        assert not document.has_final_number
        assert document.total == Decimal("0.00")
        assert document.lines == []
        assert document.created_by == "user-1"
        assert document.valid_until == datetime.date.today() + datetime.timedelta(days=30)

    async def test_create_with_lines(self, db, service, sample_line):
        document = await service.create_document(
            db,
            DocumentCreate(client_reference="CLI-0001", lines=[sample_line, line("Sopralluogo", unit_price="50", tax_rate="10")]),
        )

        assert [l.line_order for l in document.lines] == [1, 2]
        assert document.subtotal == Decimal("230.00")
        assert document.tax_amount == Decimal("42.80")
        assert document.total == Decimal("272.80")

    async def test_default_tax_rate_applied(self, db, service, quote_data):
        document = await service.create_document(db, quote_data)

        added = await service.add_line(db, document.id, line("Senza aliquota", unit_price="100"))

        assert added.tax_rate == Decimal("21.00")
        assert added.tax_amount == Decimal("21.00")

    async def test_create_with_invalid_line_rejected(self, db, service):
        with pytest.raises(InvalidLineInputError):
            await service.create_document(
                db,
                DocumentCreate(client_reference="CLI-0001", lines=[line(quantity="0")]),
            )

    async def test_get_document_not_found(self, db, service):
        with pytest.raises(NotFoundError):
            await service.get_document(db, uuid.uuid4())

    async def test_get_document_reloads_lines(self, db, service, quote_data, sample_line):
        document = await service.create_document(db, quote_data)
        await service.add_line(db, document.id, sample_line)

        reloaded = await service.get_document(db, document.id)

        assert len(reloaded.lines) == 1
        assert reloaded.total == Decimal("217.80")


# ============================================================
# Test righe
# ============================================================


class TestLines:
    """Test per aggiunta, modifica e rimozione delle righe."""

    async def test_reference_example_totals(self, db, service, quote_data, sample_line):
        document = await service.create_document(db, quote_data)

        added = await service.add_line(db, document.id, sample_line)

        assert added.subtotal == Decimal("180.00")
        assert added.tax_amount == Decimal("37.80")
        assert added.total == Decimal("217.80")
        reloaded = await service.get_document(db, document.id)
        assert reloaded.subtotal == Decimal("180.00")
        assert reloaded.tax_amount == Decimal("37.80")
        assert reloaded.total == Decimal("217.80")

    async def test_totals_consistent_after_each_operation(self, db, service, quote_data):
        document = await service.create_document(db, quote_data)
        document_id = document.id

        first = await service.add_line(db, document_id, line("A", quantity="3", unit_price="19.99", tax_rate="22"))
        assert_totals_consistent(await service.get_document(db, document_id))

        second = await service.add_line(db, document_id, line("B", quantity="1.5", unit_price="0.333", discount_percent="7.5", tax_rate="10"))
        assert_totals_consistent(await service.get_document(db, document_id))

        await service.update_line(db, first.id, LineUpdate(discount_percent="12.5"))
        assert_totals_consistent(await service.get_document(db, document_id))

        await service.remove_line(db, second.id)
        reloaded = await service.get_document(db, document_id)
        assert_totals_consistent(reloaded)
        assert len(reloaded.lines) == 1

    async def test_line_order_appends(self, db, service, quote_data):
        document = await service.create_document(db, quote_data)

        lines = [await service.add_line(db, document.id, line(f"Voce {i}")) for i in range(3)]
        orders = [l.line_order for l in lines]
        await service.remove_line(db, lines[1].id)
        appended = await service.add_line(db, document.id, line("Ultima"))

        assert orders == [1, 2, 3]
        assert appended.line_order == 4

    async def test_add_invalid_line_leaves_document_unchanged(self, db, service, quote_data, sample_line):
        document = await service.create_document(db, quote_data)
        document_id = document.id
        await service.add_line(db, document_id, sample_line)

        with pytest.raises(InvalidLineInputError):
            await service.add_line(db, document_id, line(discount_percent="150"))

        reloaded = await service.get_document(db, document_id)
        assert len(reloaded.lines) == 1
        assert reloaded.total == Decimal("217.80")

    async def test_document_total_over_limit_rejected(self, db, service, quote_data):
        """Test righe valide ma totale di documento oltre la scala della colonna."""
        document = await service.create_document(db, quote_data)
        document_id = document.id
        big_line = line("Impianto", quantity="100", unit_price="90000000", tax_rate="0")
        await service.add_line(db, document_id, big_line)

        with pytest.raises(InvalidLineInputError) as exc_info:
            await service.add_line(db, document_id, big_line)

        assert exc_info.value.extra["field"] == "total"
        reloaded = await service.get_document(db, document_id)
        assert len(reloaded.lines) == 1
        assert reloaded.total == Decimal("9000000000.00")

    async def test_line_amount_over_limit_rejected(self, db, service, quote_data):
        document = await service.create_document(db, quote_data)
        document_id = document.id

        with pytest.raises(InvalidLineInputError) as exc_info:
            await service.add_line(db, document_id, line(quantity="1e15", unit_price="1"))

        assert exc_info.value.extra["field"] == "quantity"
        reloaded = await service.get_document(db, document_id)
        assert reloaded.lines == []

    async def test_update_line_partial(self, db, service, quote_data, sample_line):
        document = await service.create_document(db, quote_data)
        added = await service.add_line(db, document.id, sample_line)

        updated = await service.update_line(db, added.id, LineUpdate(quantity="3"))

        assert updated.quantity == Decimal("3.000")
        assert updated.concept == "Installazione impianto"
        assert updated.discount_percent == Decimal("10.00")
        assert updated.subtotal == Decimal("270.00")
        assert updated.tax_amount == Decimal("56.70")
        reloaded = await service.get_document(db, document.id)
        assert reloaded.total == Decimal("326.70")

    @pytest.mark.parametrize("field", ["concept", "quantity", "unit_price", "discount_percent", "tax_rate"])
    async def test_update_line_explicit_null_rejected(self, db, service, quote_data, sample_line, field):
        document = await service.create_document(db, quote_data)
        document_id = document.id
        added = await service.add_line(db, document_id, sample_line)
        line_id = added.id

        with pytest.raises(InvalidLineInputError) as exc_info:
            await service.update_line(db, line_id, LineUpdate(**{field: None}))

        assert exc_info.value.extra["field"] == field
        reloaded = await service.get_document(db, document_id)
        assert reloaded.lines[0].concept == "Installazione impianto"
        assert reloaded.total == Decimal("217.80")

    async def test_update_line_invalid_value_leaves_line_unchanged(self, db, service, quote_data, sample_line):
        document = await service.create_document(db, quote_data)
        document_id = document.id
        added = await service.add_line(db, document_id, sample_line)
        line_id = added.id

        with pytest.raises(InvalidLineInputError):
            await service.update_line(db, line_id, LineUpdate(concept="Nuova voce", quantity="-2"))

        reloaded = await service.get_document(db, document_id)
        assert reloaded.lines[0].concept == "Installazione impianto"
        assert reloaded.lines[0].quantity == Decimal("2.000")

    async def test_update_line_description_can_be_cleared(self, db, service, quote_data):
        document = await service.create_document(db, quote_data)
        added = await service.add_line(db, document.id, line(description="Dettaglio"))

        updated = await service.update_line(db, added.id, LineUpdate(description=None))

        assert updated.description is None

    async def test_update_missing_line(self, db, service):
        with pytest.raises(NotFoundError):
            await service.update_line(db, uuid.uuid4(), LineUpdate(quantity="1"))

    async def test_remove_missing_line(self, db, service):
        with pytest.raises(NotFoundError):
            await service.remove_line(db, uuid.uuid4())

    async def test_reorder_lines(self, db, service, quote_data):
        document = await service.create_document(db, quote_data)
        a = await service.add_line(db, document.id, line("A"))
        b = await service.add_line(db, document.id, line("B"))
        c = await service.add_line(db, document.id, line("C"))

        reordered = await service.reorder_lines(db, document.id, LineReorder(line_ids=[c.id, a.id, b.id]))

        assert [l.concept for l in reordered.lines] == ["C", "A", "B"]
        assert [l.line_order for l in reordered.lines] == [1, 2, 3]

    async def test_reorder_requires_all_lines(self, db, service, quote_data):
        document = await service.create_document(db, quote_data)
        document_id = document.id
        a = await service.add_line(db, document_id, line("A"))
        a_id = a.id
        await service.add_line(db, document_id, line("B"))

        with pytest.raises(BusinessValidationError):
            await service.reorder_lines(db, document_id, LineReorder(line_ids=[a_id]))

        reloaded = await service.get_document(db, document_id)
        assert [l.concept for l in reloaded.lines] == ["A", "B"]


# ============================================================
# Test blocco del documento
# ============================================================


class TestDocumentLock:
    """Test per il blocco delle modifiche dopo l'emissione."""

    async def test_issue_assigns_final_number(self, db, service, quote_data, sample_line):
        document = await service.create_document(db, quote_data)
        provisional = document.number
        await service.add_line(db, document.id, sample_line)

        sent = await service.change_status(db, document.id, "SENT", actor_id="user-2")

        assert sent.status == "SENT"
        assert sent.number.startswith("P-")
        assert sent.provisional_number == provisional
        assert sent.has_final_number
        assert sent.updated_by == "user-2"

    async def test_lines_locked_after_issue(self, db, service, quote_data, sample_line):
        document = await service.create_document(db, quote_data)
        document_id = document.id
        added = await service.add_line(db, document_id, sample_line)
        line_id = added.id
        await service.change_status(db, document_id, "SENT")

        with pytest.raises(DocumentLockedError):
            await service.add_line(db, document_id, line("Extra", unit_price="10"))
        with pytest.raises(DocumentLockedError):
            await service.update_line(db, line_id, LineUpdate(quantity="5"))
        with pytest.raises(DocumentLockedError):
            await service.remove_line(db, line_id)
        with pytest.raises(DocumentLockedError):
            await service.reorder_lines(db, document_id, LineReorder(line_ids=[line_id]))

        reloaded = await service.get_document(db, document_id)
        assert len(reloaded.lines) == 1
        assert reloaded.lines[0].quantity == Decimal("2.000")
        assert reloaded.total == Decimal("217.80")

    async def test_header_locked_after_issue(self, db, service, quote_data):
        document = await service.create_document(db, quote_data)
        document_id = document.id
        await service.change_status(db, document_id, "SENT")

        with pytest.raises(DocumentLockedError):
            await service.update_document(db, document_id, DocumentUpdate(client_reference="CLI-9999"))

        reloaded = await service.get_document(db, document_id)
        assert reloaded.client_reference == "CLI-0001"

    async def test_update_header_in_draft(self, db, service, quote_data):
        document = await service.create_document(db, quote_data)

        updated = await service.update_document(
            db,
            document.id,
            DocumentUpdate(client_reference="CLI-0002", valid_until=datetime.date(2030, 1, 31)),
        )

        assert updated.client_reference == "CLI-0002"
        assert updated.project_reference == "PRJ-0042"
        assert updated.valid_until == datetime.date(2030, 1, 31)

    @pytest.mark.parametrize("status", ["DRAFT", "SENT", "APPROVED", "REJECTED"])
    async def test_notes_editable_in_non_terminal_states(self, db, service, status):
        document_id = await bring_quote_to(service, db, status)

        updated = await service.update_notes(db, document_id, NotesUpdate(notes="  Consegna entro marzo  "))

        assert updated.notes == "Consegna entro marzo"
        assert updated.status == status

    @pytest.mark.parametrize("status", ["EXPIRED", "INVOICED", "CANCELLED"])
    async def test_notes_locked_in_terminal_states(self, db, service, status):
        document_id = await bring_quote_to(service, db, status)

        with pytest.raises(DocumentLockedError):
            await service.update_notes(db, document_id, NotesUpdate(notes="Troppo tardi"))


# ============================================================
# Test cambi di stato
# ============================================================


class TestStatusChanges:
    """Test per le transizioni eseguite dal service."""

    @pytest.mark.parametrize(
        "current,requested",
        [
            (current.value, requested.value)
            for current in QuoteStatus
            for requested in QuoteStatus
            if (current.value, requested.value) not in ALLOWED_QUOTE_TRANSITIONS
        ],
    )
    async def test_illegal_transition_leaves_status_unchanged(self, db, service, current, requested):
        document_id = await bring_quote_to(service, db, current)
        before = await service.get_document(db, document_id)
        number_before = before.number

        with pytest.raises(IllegalTransitionError):
            await service.change_status(db, document_id, requested)

        reloaded = await service.get_document(db, document_id)
        assert reloaded.status == current
        assert reloaded.number == number_before

    @pytest.mark.parametrize("current,requested", sorted(ALLOWED_QUOTE_TRANSITIONS))
    async def test_allowed_transition(self, db, service, current, requested):
        document_id = await bring_quote_to(service, db, current)

        document = await service.change_status(db, document_id, requested)

        assert document.status == requested

    async def test_approved_rejected_roundtrip_keeps_number(self, db, service):
        document_id = await bring_quote_to(service, db, "APPROVED")
        number = (await service.get_document(db, document_id)).number

        await service.change_status(db, document_id, "REJECTED")
        document = await service.change_status(db, document_id, "APPROVED")

        assert document.number == number

    async def test_cancel_draft(self, db, service, quote_data):
        document = await service.create_document(db, quote_data)
        provisional = document.number

        cancelled = await service.cancel_document(db, document.id)

        assert cancelled.status == "CANCELLED"
        assert cancelled.number == provisional
        assert not cancelled.has_final_number

    @pytest.mark.parametrize("status", ["SENT", "APPROVED", "REJECTED", "EXPIRED", "INVOICED", "CANCELLED"])
    async def test_cancel_only_from_draft(self, db, service, status):
        document_id = await bring_quote_to(service, db, status)

        with pytest.raises(IllegalTransitionError):
            await service.cancel_document(db, document_id)

        reloaded = await service.get_document(db, document_id)
        assert reloaded.status == status

    async def test_expire_sent_quote(self, db, service):
        document_id = await bring_quote_to(service, db, "SENT")

        expired = await service.expire_quote(db, document_id)

        assert expired.status == "EXPIRED"

    @pytest.mark.parametrize("status", ["DRAFT", "APPROVED", "REJECTED"])
    async def test_expire_requires_sent(self, db, service, status):
        document_id = await bring_quote_to(service, db, status)

        with pytest.raises(IllegalTransitionError):
            await service.expire_quote(db, document_id)

        reloaded = await service.get_document(db, document_id)
        assert reloaded.status == status

    async def test_status_history(self, db, service):
        document_id = await bring_quote_to(service, db, "APPROVED")

        history = await service.list_status_history(db, document_id)

        assert [(h.from_status, h.to_status) for h in history] == [
            ("DRAFT", "SENT"),
            ("SENT", "APPROVED"),
        ]
        assert all(h.channel == "status" for h in history)

    async def test_history_read_only_through_query(self, db, service):
        """Test storico: la relazione non si carica implicitamente, la query sì."""
        document_id = await bring_quote_to(service, db, "SENT")
        document = await service.get_document(db, document_id)

        with pytest.raises(InvalidRequestError):
            document.status_changes

        history = await service.list_status_history(db, document_id)
        assert [h.to_status for h in history] == ["SENT"]

    async def test_tax_breakdown(self, db, service, quote_data):
        document = await service.create_document(db, quote_data)
        await service.add_line(db, document.id, line("A", unit_price="100", tax_rate="21"))
        await service.add_line(db, document.id, line("B", unit_price="50", tax_rate="10"))
        await service.add_line(db, document.id, line("C", unit_price="20", tax_rate="0"))

        totals = await service.get_tax_breakdown(db, document.id)

        assert [(e.tax_rate, e.taxable_base, e.tax_amount) for e in totals.tax_breakdown] == [
            (Decimal("21.00"), Decimal("100.00"), Decimal("21.00")),
            (Decimal("10.00"), Decimal("50.00"), Decimal("5.00")),
        ]
        assert totals.total == Decimal("196.00")


# ============================================================
# Test concorrenza ottimistica
# ============================================================


class TestExpectedVersion:
    """Test per il controllo della versione attesa."""

    async def test_version_increments_on_change(self, db, service, quote_data):
        document = await service.create_document(db, quote_data)
        initial = document.version

        updated = await service.add_line(db, document.id, line("A"), expected_version=initial)

        reloaded = await service.get_document(db, updated.document_id)
        assert reloaded.version > initial

    async def test_stale_version_rejected(self, db, service, quote_data):
        document = await service.create_document(db, quote_data)
        document_id = document.id
        stale = document.version
        await service.add_line(db, document_id, line("A"))

        with pytest.raises(WriteConflictError) as exc_info:
            await service.add_line(db, document_id, line("B"), expected_version=stale)

        assert exc_info.value.extra["expected_version"] == stale
        reloaded = await service.get_document(db, document_id)
        assert [l.concept for l in reloaded.lines] == ["A"]

    async def test_stale_version_on_status_change(self, db, service, quote_data):
        document = await service.create_document(db, quote_data)
        document_id = document.id
        stale = document.version
        await service.update_notes(db, document_id, NotesUpdate(notes="Aggiornate"))

        with pytest.raises(WriteConflictError):
            await service.change_status(db, document_id, "SENT", expected_version=stale)

        reloaded = await service.get_document(db, document_id)
        assert reloaded.status == "DRAFT"


# ============================================================
# Test date di creazione e modifica
# ============================================================


class TestTimestamps:
    """Test per created_at e updated_at del documento."""

    async def test_updated_at_advances_on_every_change(self, db, service, quote_data, sample_line):
        document = await service.create_document(db, quote_data)
        document_id = document.id
        stored = await service.get_document(db, document_id)
        created_at = stored.created_at
        previous = stored.updated_at

        added = await service.add_line(db, document_id, sample_line)
        line_id = added.id
        operations = [
            lambda: service.update_line(db, line_id, LineUpdate(quantity="3")),
            lambda: service.remove_line(db, line_id),
            lambda: service.update_notes(db, document_id, NotesUpdate(notes="Aggiornate")),
            lambda: service.change_status(db, document_id, "SENT"),
        ]

        reloaded = await service.get_document(db, document_id)
        assert reloaded.updated_at > previous
        assert reloaded.created_at == created_at
        previous = reloaded.updated_at

        for operation in operations:
            await operation()

            reloaded = await service.get_document(db, document_id)
            assert reloaded.updated_at > previous
            assert reloaded.created_at == created_at
            previous = reloaded.updated_at

    async def test_failed_operation_keeps_updated_at(self, db, service, quote_data):
        document = await service.create_document(db, quote_data)
        document_id = document.id
        before = (await service.get_document(db, document_id)).updated_at

        with pytest.raises(IllegalTransitionError):
            await service.change_status(db, document_id, "APPROVED")

        reloaded = await service.get_document(db, document_id)
        assert reloaded.updated_at == before
