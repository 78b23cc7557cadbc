"""
Macchina a Stati dei Documenti di Vendita
Progetto: Gestionale Preventivi e Fatture

Unica tabella delle transizioni per preventivi e fatture, con i permessi
di modifica (righe e note) che derivano dallo stato corrente. Ogni
percorso che modifica un documento passa da qui.
"""

import logging
from enum import Enum
from typing import Union

from app.core.exceptions import DocumentLockedError, IllegalTransitionError
from app.schemas.document import DocumentType, InvoiceStatus, QuoteStatus, TransitionChannel

# Logger per questo modulo
logger = logging.getLogger(__name__)

DocumentStatus = Union[QuoteStatus, InvoiceStatus]

# -------------------------------------------------------------------
# Tabella delle transizioni: stato → {stato di arrivo: canale}
# -------------------------------------------------------------------

# Un arco è percorribile solo dal canale indicato: APPROVED → INVOICED
# esiste solo per la conversione, SENT → EXPIRED solo per la scadenza.
QUOTE_TRANSITIONS: dict[QuoteStatus, dict[QuoteStatus, TransitionChannel]] = {
    QuoteStatus.DRAFT: {
        QuoteStatus.SENT: TransitionChannel.STATUS,
        QuoteStatus.CANCELLED: TransitionChannel.STATUS,
    },
    QuoteStatus.SENT: {
        QuoteStatus.APPROVED: TransitionChannel.STATUS,
        QuoteStatus.REJECTED: TransitionChannel.STATUS,
        QuoteStatus.EXPIRED: TransitionChannel.EXPIRY,
    },
    QuoteStatus.APPROVED: {
        QuoteStatus.REJECTED: TransitionChannel.STATUS,
        QuoteStatus.INVOICED: TransitionChannel.CONVERSION,
    },
    QuoteStatus.REJECTED: {
        QuoteStatus.APPROVED: TransitionChannel.STATUS,
    },
    QuoteStatus.EXPIRED: {},  # Stato finale
    QuoteStatus.INVOICED: {},  # Stato finale
    QuoteStatus.CANCELLED: {},  # Stato finale
}

INVOICE_TRANSITIONS: dict[InvoiceStatus, dict[InvoiceStatus, TransitionChannel]] = {
    InvoiceStatus.DRAFT: {
        InvoiceStatus.ISSUED: TransitionChannel.STATUS,
        InvoiceStatus.CANCELLED: TransitionChannel.STATUS,
    },
    InvoiceStatus.ISSUED: {
        InvoiceStatus.PAID: TransitionChannel.STATUS,
        InvoiceStatus.CANCELLED: TransitionChannel.STATUS,
    },
    InvoiceStatus.PAID: {},  # Stato finale
    InvoiceStatus.CANCELLED: {},  # Stato finale
}

# Transizione che emette il documento: assegna il numero definitivo e blocca le righe
ISSUING_STATUS: dict[DocumentType, DocumentStatus] = {
    DocumentType.QUOTE: QuoteStatus.SENT,
    DocumentType.INVOICE: InvoiceStatus.ISSUED,
}

# Unico stato in cui le righe sono modificabili
EDITABLE_STATUS: dict[DocumentType, DocumentStatus] = {
    DocumentType.QUOTE: QuoteStatus.DRAFT,
    DocumentType.INVOICE: InvoiceStatus.DRAFT,
}

_TABLES: dict[DocumentType, dict] = {
    DocumentType.QUOTE: QUOTE_TRANSITIONS,
    DocumentType.INVOICE: INVOICE_TRANSITIONS,
}

_STATUS_ENUMS: dict[DocumentType, type[Enum]] = {
    DocumentType.QUOTE: QuoteStatus,
    DocumentType.INVOICE: InvoiceStatus,
}


def _value(status: Union[str, Enum]) -> str:
    return status.value if isinstance(status, Enum) else str(status)


def parse_status(document_type: Union[DocumentType, str], status: Union[str, Enum]) -> DocumentStatus:
    """
    Converte una stringa nello stato del tipo di documento.

    Raises:
        ValueError: Se lo stato non esiste per quel tipo di documento
    """
    return _STATUS_ENUMS[DocumentType(document_type)](_value(status))


def allowed_transitions(
    document_type: Union[DocumentType, str],
    current_status: Union[str, Enum],
    channel: TransitionChannel = TransitionChannel.STATUS,
) -> list[DocumentStatus]:
    """
    Stati raggiungibili dallo stato corrente attraverso il canale indicato.

    Args:
        document_type: Tipo di documento
        current_status: Stato corrente
        channel: Canale della richiesta (default: cambio di stato esplicito)

    Returns:
        Lista degli stati di arrivo consentiti
    """
    table = _TABLES[DocumentType(document_type)]
    edges = table.get(parse_status(document_type, current_status), {})
    return [target for target, edge_channel in edges.items() if edge_channel == channel]


def check_transition(
    document_type: Union[DocumentType, str],
    current_status: Union[str, Enum],
    requested_status: Union[str, Enum],
    channel: TransitionChannel = TransitionChannel.STATUS,
) -> DocumentStatus:
    """
    Verifica che la transizione sia presente nella tabella per il canale.

    Args:
        document_type: Tipo di documento
        current_status: Stato corrente
        requested_status: Stato richiesto
        channel: Canale della richiesta

    Returns:
        Lo stato richiesto come enum

    Raises:
        IllegalTransitionError: Se lo stato richiesto non esiste o la transizione
            non è consentita da quel canale
    """
    current = _value(current_status)
    requested = _value(requested_status)

    try:
        target = parse_status(document_type, requested)
    except ValueError:
        logger.warning("Stato sconosciuto per %s: %s", _value(document_type), requested)
        raise IllegalTransitionError(
            current,
            requested,
            detail=f"Stato '{requested}' non valido per un documento di tipo '{_value(document_type)}'",
        )

    if target not in allowed_transitions(document_type, current, channel):
        logger.warning(
            "Transizione non consentita (%s, canale %s): %s -> %s",
            _value(document_type),
            channel.value,
            current,
            requested,
        )
        raise IllegalTransitionError(current, requested)

    return target


def is_issuing_transition(
    document_type: Union[DocumentType, str],
    current_status: Union[str, Enum],
    requested_status: Union[str, Enum],
) -> bool:
    """True se la transizione è quella di emissione (es. DRAFT → SENT per i preventivi)."""
    document_type = DocumentType(document_type)
    return (
        _value(current_status) == _value(EDITABLE_STATUS[document_type])
        and _value(requested_status) == _value(ISSUING_STATUS[document_type])
    )


def is_terminal(document_type: Union[DocumentType, str], status: Union[str, Enum]) -> bool:
    """True se lo stato non ha transizioni in uscita su nessun canale."""
    table = _TABLES[DocumentType(document_type)]
    return not table.get(parse_status(document_type, status))


def can_edit_lines(document_type: Union[DocumentType, str], status: Union[str, Enum]) -> bool:
    """Le righe sono modificabili solo in bozza."""
    return _value(status) == _value(EDITABLE_STATUS[DocumentType(document_type)])


def can_edit_notes(document_type: Union[DocumentType, str], status: Union[str, Enum]) -> bool:
    """Le note restano modificabili in ogni stato tranne quelli finali."""
    return not is_terminal(document_type, status)


def ensure_lines_editable(document_type: Union[DocumentType, str], status: Union[str, Enum]) -> None:
    """
    Verifica che le righe del documento siano modificabili.

    Raises:
        DocumentLockedError: Se lo stato blocca le righe
    """
    if not can_edit_lines(document_type, status):
        logger.warning("Modifica righe rifiutata: documento in stato %s", _value(status))
        raise DocumentLockedError(_value(status))


def ensure_header_editable(document_type: Union[DocumentType, str], status: Union[str, Enum]) -> None:
    """
    Verifica che i dati di testata (cliente, progetto, validità) siano modificabili.

    Seguono la stessa regola delle righe: solo in bozza.

    Raises:
        DocumentLockedError: Se lo stato blocca il documento
    """
    if not can_edit_lines(document_type, status):
        logger.warning("Modifica testata rifiutata: documento in stato %s", _value(status))
        raise DocumentLockedError(
            _value(status),
            detail=f"Documento bloccato: nello stato '{_value(status)}' la testata non è modificabile",
        )


def ensure_notes_editable(document_type: Union[DocumentType, str], status: Union[str, Enum]) -> None:
    """
    Verifica che le note del documento siano modificabili.

    Raises:
        DocumentLockedError: Se il documento è in uno stato finale
    """
    if not can_edit_notes(document_type, status):
        logger.warning("Modifica note rifiutata: documento in stato finale %s", _value(status))
        raise DocumentLockedError(
            _value(status),
            detail=f"Documento in stato finale '{_value(status)}': le note non sono modificabili",
        )
