"""
Repository per i Documenti di Vendita
Progetto: Gestionale Preventivi e Fatture

Accesso al database per documenti, righe e storico stati. Distingue
"non trovato" (NotFoundError) da "scrittura in conflitto"
(WriteConflictError); non applica regole di business.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import NotFoundError, WriteConflictError
from app.models import DocumentLine, DocumentStatusChange, SalesDocument

# Logger per questo modulo
logger = logging.getLogger(__name__)


class DocumentRepository:
    """
    Repository per le operazioni di persistenza sui documenti.

    Tutti i metodi lavorano nella transazione della sessione ricevuta:
    il commit è responsabilità del chiamante.
    """

    async def _flush(self, db: AsyncSession) -> None:
        """Flush della sessione, traducendo le versioni obsolete in WriteConflictError."""
        try:
            await db.flush()
        except StaleDataError as e:
            logger.warning("Conflitto di scrittura durante il flush: %s", e)
            raise WriteConflictError() from e

    async def load_document(
        self,
        db: AsyncSession,
        document_id: uuid.UUID,
        for_update: bool = False,
    ) -> SalesDocument:
        """
        Carica un documento con le sue righe, sempre dallo stato salvato.

        Args:
            db: Sessione database
            document_id: UUID del documento
            for_update: Se True acquisisce il lock di riga (SELECT ... FOR UPDATE)

        Returns:
            SalesDocument: Il documento trovato

        Raises:
            NotFoundError: Se il documento non esiste
        """
        query = (
            select(SalesDocument)
            .where(SalesDocument.id == document_id)
            .options(selectinload(SalesDocument.lines))
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()

        result = await db.execute(query)
        document = result.scalar_one_or_none()

        if not document:
            logger.warning("Documento non trovato: %s", document_id)
            raise NotFoundError(f"Documento con ID {document_id} non trovato")

        return document

    async def save_document(self, db: AsyncSession, document: SalesDocument) -> SalesDocument:
        """
        Registra il documento (nuovo o modificato) nella sessione e fa il flush.

        Raises:
            WriteConflictError: Se il documento è stato aggiornato nel frattempo
        """
        db.add(document)
        await self._flush(db)
        return document

    async def load_lines(self, db: AsyncSession, document_id: uuid.UUID) -> list[DocumentLine]:
        """Righe di un documento ordinate per line_order."""
        result = await db.execute(
            select(DocumentLine)
            .where(DocumentLine.document_id == document_id)
            .order_by(DocumentLine.line_order)
        )
        return list(result.scalars().all())

    async def load_line(
        self,
        db: AsyncSession,
        line_id: uuid.UUID,
        document_id: Optional[uuid.UUID] = None,
    ) -> DocumentLine:
        """
        Carica una riga tramite ID.

        Args:
            db: Sessione database
            line_id: UUID della riga
            document_id: Se indicato, la riga deve appartenere a questo documento

        Raises:
            NotFoundError: Se la riga non esiste o appartiene a un altro documento
        """
        result = await db.execute(
            select(DocumentLine)
            .where(DocumentLine.id == line_id)
            .execution_options(populate_existing=True)
        )
        line = result.scalar_one_or_none()

        if not line or (document_id is not None and line.document_id != document_id):
            logger.warning("Riga non trovata: %s", line_id)
            raise NotFoundError(f"Riga con ID {line_id} non trovata")

        return line

    async def save_line(
        self,
        db: AsyncSession,
        document: SalesDocument,
        line: DocumentLine,
    ) -> DocumentLine:
        """Aggiunge (se nuova) o aggiorna una riga del documento."""
        if line not in document.lines:
            document.lines.append(line)
        await self._flush(db)
        return line

    async def delete_line(
        self,
        db: AsyncSession,
        document: SalesDocument,
        line: DocumentLine,
    ) -> None:
        """Elimina una riga (rimozione dalla collezione con delete-orphan)."""
        document.lines.remove(line)
        await self._flush(db)

    async def add_status_change(
        self,
        db: AsyncSession,
        document: SalesDocument,
        from_status: str,
        to_status: str,
        channel: str,
        actor_id: Optional[str],
    ) -> DocumentStatusChange:
        """Registra una voce nello storico dei cambi di stato."""
        change = DocumentStatusChange(
            document_id=document.id,
            from_status=from_status,
            to_status=to_status,
            channel=channel,
            changed_by=actor_id,
        )
        db.add(change)
        return change

    async def list_status_changes(
        self,
        db: AsyncSession,
        document_id: uuid.UUID,
    ) -> list[DocumentStatusChange]:
        """Storico dei cambi di stato in ordine cronologico."""
        result = await db.execute(
            select(DocumentStatusChange)
            .where(DocumentStatusChange.document_id == document_id)
            .order_by(DocumentStatusChange.created_at)
        )
        return list(result.scalars().all())
