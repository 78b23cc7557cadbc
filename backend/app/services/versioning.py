"""
Nuove Versioni e Conversione in Fattura
Progetto: Gestionale Preventivi e Fatture

Costruisce i nuovi documenti a partire da uno esistente:
- nuova versione / duplicato: bozza dello stesso tipo con le righe copiate
- conversione: fattura emessa con righe e totali del preventivo approvato

Le righe vengono sempre copiate come nuovi record (nuovi ID, stessi valori),
mai condivise tra documenti. Le funzioni non accedono al database: la
persistenza e la numerazione restano al DocumentService.
"""

import datetime
import uuid
from typing import Iterable, Optional

from app.models import DocumentLine, SalesDocument
from app.schemas.document import DocumentType, InvoiceStatus, QuoteStatus
from app.services.calculator import aggregate
from app.services.state_machine import EDITABLE_STATUS


def copy_line(line: DocumentLine) -> DocumentLine:
    """Copia una riga: nuovo record con gli stessi valori economici e la stessa posizione."""
    return DocumentLine(
        id=uuid.uuid4(),
        concept=line.concept,
        description=line.description,
        quantity=line.quantity,
        unit_price=line.unit_price,
        discount_percent=line.discount_percent,
        tax_rate=line.tax_rate,
        subtotal=line.subtotal,
        tax_amount=line.tax_amount,
        total=line.total,
        line_order=line.line_order,
    )


def copy_lines(lines: Iterable[DocumentLine]) -> list[DocumentLine]:
    return [copy_line(line) for line in sorted(lines, key=lambda l: l.line_order)]


def _apply_totals(document: SalesDocument) -> SalesDocument:
    totals = aggregate(document.lines)
    document.subtotal = totals.subtotal
    document.tax_amount = totals.tax_amount
    document.total = totals.total
    return document


def requires_issue_before_version(source: SalesDocument) -> bool:
    """
    True se il documento di origine va emesso prima di crearne una nuova versione.

    Una bozza viene emessa (numerata e bloccata) così che quanto inviato
    al cliente resti documentato e immutabile.
    """
    return source.status == EDITABLE_STATUS[DocumentType(source.document_type)].value


def build_draft_copy(
    source: SalesDocument,
    provisional_number: str,
    actor_id: Optional[str] = None,
    valid_until: Optional[datetime.date] = None,
) -> SalesDocument:
    """
    Nuova bozza dello stesso tipo con cliente, progetto e righe dell'origine.

    Il nuovo documento non mantiene alcun legame con l'origine oltre
    al contenuto copiato.

    Args:
        source: Documento di origine
        provisional_number: Numero provvisorio della nuova bozza
        actor_id: Utente che esegue l'operazione
        valid_until: Validità della nuova bozza (solo preventivi)

    Returns:
        SalesDocument: La nuova bozza (non ancora aggiunta alla sessione)
    """
    draft = SalesDocument(
        id=uuid.uuid4(),
        document_type=source.document_type,
        number=provisional_number,
        provisional_number=provisional_number,
        status=EDITABLE_STATUS[DocumentType(source.document_type)].value,
        client_reference=source.client_reference,
        project_reference=source.project_reference,
        valid_until=valid_until if source.document_type == DocumentType.QUOTE.value else None,
        lines=copy_lines(source.lines),
        created_by=actor_id,
        updated_by=actor_id,
    )
    return _apply_totals(draft)


def build_invoice_from_quote(
    quote: SalesDocument,
    due_date: datetime.date,
    actor_id: Optional[str] = None,
) -> SalesDocument:
    """
    Fattura emessa con le righe e i totali del preventivo.

    Il numero definitivo viene assegnato dal NumberingService prima
    di aggiungere la fattura alla sessione.

    Args:
        quote: Preventivo approvato di origine
        due_date: Scadenza di pagamento
        actor_id: Utente che esegue la conversione

    Returns:
        SalesDocument: La fattura (senza numero, non ancora nella sessione)

    Raises:
        ValueError: Se il documento di origine non è un preventivo approvato
    """
    if quote.document_type != DocumentType.QUOTE.value or quote.status != QuoteStatus.APPROVED.value:
        raise ValueError("Solo un preventivo approvato può diventare una fattura")

    invoice = SalesDocument(
        id=uuid.uuid4(),
        document_type=DocumentType.INVOICE.value,
        status=InvoiceStatus.ISSUED.value,
        client_reference=quote.client_reference,
        project_reference=quote.project_reference,
        due_date=due_date,
        notes=quote.notes,
        source_document_id=quote.id,
        lines=copy_lines(quote.lines),
        created_by=actor_id,
        updated_by=actor_id,
    )
    return _apply_totals(invoice)
