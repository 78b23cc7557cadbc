"""
Router FastAPI per i Documenti di Vendita
Progetto: Gestionale Preventivi e Fatture

Definisce gli endpoint API per preventivi e fatture: testata, righe,
cambi di stato, nuove versioni e conversione in fattura.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import CurrentActor, ExpectedVersion
from app.schemas.document import (
    DocumentCreate,
    DocumentRead,
    DocumentTotalsRead,
    DocumentUpdate,
    LineCreate,
    LineRead,
    LineReorder,
    LineUpdate,
    NotesUpdate,
    StatusChange,
    StatusChangeRead,
)
from app.services.document_service import DocumentService

# Logger per questo modulo
logger = logging.getLogger(__name__)

# Istanza del service
document_service = DocumentService()

# Router con prefix e tag
router = APIRouter(
    prefix="/documents",
    tags=["Documenti di Vendita"],
)

# Router per le operazioni sulle singole righe
lines_router = APIRouter(
    prefix="/document-lines",
    tags=["Righe Documento"],
)


# -------------------------------------------------------------------
# Endpoints per la testata del documento
# -------------------------------------------------------------------

@router.post(
    "/",
    name="documento_crea",
    summary="Crea preventivo",
    description="Crea un preventivo in bozza con numero provvisorio. Opzionalmente include le righe iniziali.",
    response_model=DocumentRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_document(
    data: DocumentCreate,
    actor_id: CurrentActor,
    db: AsyncSession = Depends(get_db),
) -> DocumentRead:
    """
    Crea un nuovo preventivo in bozza.

    Raises:
        InvalidLineInputError: Se una riga iniziale non è valida
    """
    document = await document_service.create_document(db, data, actor_id=actor_id)
    return DocumentRead.model_validate(document)


@router.get(
    "/{document_id}",
    name="documento_dettaglio",
    summary="Dettaglio documento",
    description="Recupera un documento con righe e totali.",
    response_model=DocumentRead,
    status_code=status.HTTP_200_OK,
)
async def get_document(
    actor_id: CurrentActor,
    document_id: uuid.UUID = Path(..., description="UUID del documento"),
    db: AsyncSession = Depends(get_db),
) -> DocumentRead:
    document = await document_service.get_document(db, document_id)
    return DocumentRead.model_validate(document)


@router.patch(
    "/{document_id}",
    name="documento_aggiorna",
    summary="Aggiorna testata",
    description="Aggiorna cliente, progetto e validità di un documento in bozza.",
    response_model=DocumentRead,
    status_code=status.HTTP_200_OK,
)
async def update_document(
    data: DocumentUpdate,
    actor_id: CurrentActor,
    expected_version: ExpectedVersion,
    document_id: uuid.UUID = Path(..., description="UUID del documento"),
    db: AsyncSession = Depends(get_db),
) -> DocumentRead:
    document = await document_service.update_document(
        db, document_id, data, actor_id=actor_id, expected_version=expected_version
    )
    return DocumentRead.model_validate(document)


@router.patch(
    "/{document_id}/notes",
    name="documento_note",
    summary="Aggiorna note",
    description="Aggiorna le note. Consentito anche a documento bloccato, tranne negli stati finali.",
    response_model=DocumentRead,
    status_code=status.HTTP_200_OK,
)
async def update_notes(
    data: NotesUpdate,
    actor_id: CurrentActor,
    expected_version: ExpectedVersion,
    document_id: uuid.UUID = Path(..., description="UUID del documento"),
    db: AsyncSession = Depends(get_db),
) -> DocumentRead:
    document = await document_service.update_notes(
        db, document_id, data, actor_id=actor_id, expected_version=expected_version
    )
    return DocumentRead.model_validate(document)


@router.delete(
    "/{document_id}",
    name="documento_elimina",
    summary="Elimina (annulla) documento",
    description="Porta in CANCELLED un documento in bozza. I documenti non vengono mai cancellati fisicamente.",
    response_model=DocumentRead,
    status_code=status.HTTP_200_OK,
)
async def cancel_document(
    actor_id: CurrentActor,
    expected_version: ExpectedVersion,
    document_id: uuid.UUID = Path(..., description="UUID del documento"),
    db: AsyncSession = Depends(get_db),
) -> DocumentRead:
    document = await document_service.cancel_document(
        db, document_id, actor_id=actor_id, expected_version=expected_version
    )
    return DocumentRead.model_validate(document)


# -------------------------------------------------------------------
# Endpoints per lo stato del documento
# -------------------------------------------------------------------

@router.post(
    "/{document_id}/status",
    name="documento_cambia_stato",
    summary="Cambia stato",
    description="Cambia lo stato secondo la tabella delle transizioni. L'emissione assegna il numero definitivo.",
    response_model=DocumentRead,
    status_code=status.HTTP_200_OK,
)
async def change_status(
    data: StatusChange,
    actor_id: CurrentActor,
    expected_version: ExpectedVersion,
    document_id: uuid.UUID = Path(..., description="UUID del documento"),
    db: AsyncSession = Depends(get_db),
) -> DocumentRead:
    """
    Cambia lo stato di un documento.

    Raises:
        IllegalTransitionError: Se la transizione non è consentita (409)
    """
    document = await document_service.change_status(
        db, document_id, data.status, actor_id=actor_id, expected_version=expected_version
    )
    return DocumentRead.model_validate(document)


@router.post(
    "/{document_id}/expire",
    name="preventivo_scaduto",
    summary="Segna preventivo scaduto",
    description="Porta in EXPIRED un preventivo inviato.",
    response_model=DocumentRead,
    status_code=status.HTTP_200_OK,
)
async def expire_quote(
    actor_id: CurrentActor,
    expected_version: ExpectedVersion,
    document_id: uuid.UUID = Path(..., description="UUID del preventivo"),
    db: AsyncSession = Depends(get_db),
) -> DocumentRead:
    document = await document_service.expire_quote(
        db, document_id, actor_id=actor_id, expected_version=expected_version
    )
    return DocumentRead.model_validate(document)


@router.get(
    "/{document_id}/history",
    name="documento_storico",
    summary="Storico stati",
    description="Elenco cronologico dei cambi di stato del documento.",
    response_model=list[StatusChangeRead],
    status_code=status.HTTP_200_OK,
)
async def list_status_history(
    actor_id: CurrentActor,
    document_id: uuid.UUID = Path(..., description="UUID del documento"),
    db: AsyncSession = Depends(get_db),
) -> list[StatusChangeRead]:
    changes = await document_service.list_status_history(db, document_id)
    return [StatusChangeRead.model_validate(change) for change in changes]


@router.get(
    "/{document_id}/tax-breakdown",
    name="documento_riepilogo_iva",
    summary="Riepilogo IVA",
    description="Totali del documento e riepilogo IVA per aliquota (decrescente).",
    response_model=DocumentTotalsRead,
    status_code=status.HTTP_200_OK,
)
async def get_tax_breakdown(
    actor_id: CurrentActor,
    document_id: uuid.UUID = Path(..., description="UUID del documento"),
    db: AsyncSession = Depends(get_db),
) -> DocumentTotalsRead:
    totals = await document_service.get_tax_breakdown(db, document_id)
    return DocumentTotalsRead.model_validate(totals)


# -------------------------------------------------------------------
# Endpoints per versioni e conversione
# -------------------------------------------------------------------

@router.post(
    "/{document_id}/new-version",
    name="documento_nuova_versione",
    summary="Nuova versione",
    description="Crea una nuova bozza dal documento. Una bozza di origine viene prima emessa.",
    response_model=DocumentRead,
    status_code=status.HTTP_201_CREATED,
)
async def new_version(
    actor_id: CurrentActor,
    expected_version: ExpectedVersion,
    document_id: uuid.UUID = Path(..., description="UUID del documento di origine"),
    db: AsyncSession = Depends(get_db),
) -> DocumentRead:
    draft = await document_service.new_version(
        db, document_id, actor_id=actor_id, expected_version=expected_version
    )
    return DocumentRead.model_validate(draft)


@router.post(
    "/{document_id}/duplicate",
    name="documento_duplica",
    summary="Duplica documento",
    description="Copia il documento in una nuova bozza senza modificare l'origine.",
    response_model=DocumentRead,
    status_code=status.HTTP_201_CREATED,
)
async def duplicate_document(
    actor_id: CurrentActor,
    document_id: uuid.UUID = Path(..., description="UUID del documento di origine"),
    db: AsyncSession = Depends(get_db),
) -> DocumentRead:
    draft = await document_service.duplicate(db, document_id, actor_id=actor_id)
    return DocumentRead.model_validate(draft)


@router.post(
    "/{document_id}/convert",
    name="preventivo_converti",
    summary="Converti in fattura",
    description="Converte un preventivo approvato in fattura emessa e lo porta in INVOICED.",
    response_model=DocumentRead,
    status_code=status.HTTP_201_CREATED,
)
async def convert_to_invoice(
    actor_id: CurrentActor,
    expected_version: ExpectedVersion,
    document_id: uuid.UUID = Path(..., description="UUID del preventivo"),
    db: AsyncSession = Depends(get_db),
) -> DocumentRead:
    invoice = await document_service.convert_to_invoice(
        db, document_id, actor_id=actor_id, expected_version=expected_version
    )
    return DocumentRead.model_validate(invoice)


# -------------------------------------------------------------------
# Endpoints per le righe
# -------------------------------------------------------------------

@router.post(
    "/{document_id}/lines",
    name="riga_aggiungi",
    summary="Aggiungi riga",
    description="Aggiunge una riga in coda al documento in bozza e ricalcola i totali.",
    response_model=LineRead,
    status_code=status.HTTP_201_CREATED,
)
async def add_line(
    data: LineCreate,
    actor_id: CurrentActor,
    expected_version: ExpectedVersion,
    document_id: uuid.UUID = Path(..., description="UUID del documento"),
    db: AsyncSession = Depends(get_db),
) -> LineRead:
    """
    Aggiunge una riga al documento.

    Raises:
        DocumentLockedError: Se il documento non è in bozza (409)
        InvalidLineInputError: Se i dati della riga non sono validi (422)
    """
    line = await document_service.add_line(
        db, document_id, data, actor_id=actor_id, expected_version=expected_version
    )
    return LineRead.model_validate(line)


@router.put(
    "/{document_id}/lines/order",
    name="righe_ordina",
    summary="Riordina righe",
    description="Riassegna l'ordine delle righe secondo l'elenco di ID ricevuto.",
    response_model=DocumentRead,
    status_code=status.HTTP_200_OK,
)
async def reorder_lines(
    data: LineReorder,
    actor_id: CurrentActor,
    expected_version: ExpectedVersion,
    document_id: uuid.UUID = Path(..., description="UUID del documento"),
    db: AsyncSession = Depends(get_db),
) -> DocumentRead:
    document = await document_service.reorder_lines(
        db, document_id, data, actor_id=actor_id, expected_version=expected_version
    )
    return DocumentRead.model_validate(document)


@lines_router.patch(
    "/{line_id}",
    name="riga_aggiorna",
    summary="Aggiorna riga",
    description="Aggiorna i campi forniti di una riga e ricalcola i totali del documento.",
    response_model=LineRead,
    status_code=status.HTTP_200_OK,
)
async def update_line(
    data: LineUpdate,
    actor_id: CurrentActor,
    expected_version: ExpectedVersion,
    line_id: uuid.UUID = Path(..., description="UUID della riga"),
    db: AsyncSession = Depends(get_db),
) -> LineRead:
    line = await document_service.update_line(
        db, line_id, data, actor_id=actor_id, expected_version=expected_version
    )
    return LineRead.model_validate(line)


@lines_router.delete(
    "/{line_id}",
    name="riga_elimina",
    summary="Elimina riga",
    description="Elimina una riga e ricalcola i totali del documento.",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def remove_line(
    actor_id: CurrentActor,
    expected_version: ExpectedVersion,
    line_id: uuid.UUID = Path(..., description="UUID della riga"),
    db: AsyncSession = Depends(get_db),
) -> None:
    await document_service.remove_line(
        db, line_id, actor_id=actor_id, expected_version=expected_version
    )
