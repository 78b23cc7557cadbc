"""
Service per la Numerazione dei Documenti
Progetto: Gestionale Preventivi e Fatture

Assegna il numero provvisorio alla creazione della bozza e il numero
definitivo, una sola volta, all'emissione del documento.

Formati (con le impostazioni di default):
- preventivo definitivo: P-26-000001
- fattura definitiva:    F-26-000001
- preventivo in bozza:   BORR-26-0001
- fattura in bozza:      F-BORR-26-0001
"""

import datetime
import logging
from typing import Optional, Union

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.core.exceptions import ConflictError, NumberingConflictError
from app.models import DocumentSequence, SalesDocument
from app.models.mixins import utc_now
from app.schemas.document import DocumentType

# Logger per questo modulo
logger = logging.getLogger(__name__)


class NumberingService:
    """
    Service per i contatori progressivi dei documenti.

    Ogni contatore è una riga di document_sequences per (ambito, anno),
    letta con SELECT ... FOR UPDATE e incrementata nella transazione
    del chiamante: il numero riservato sparisce solo se la transazione
    viene annullata per intero.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        """
        Inizializza il service.

        Args:
            settings: Impostazioni di numerazione (default: get_settings())
        """
        self.settings = settings or get_settings()

    def _final_prefix(self, document_type: DocumentType) -> str:
        if document_type == DocumentType.QUOTE:
            return self.settings.quote_number_prefix
        return self.settings.invoice_number_prefix

    def _provisional_prefix(self, document_type: DocumentType) -> str:
        if document_type == DocumentType.QUOTE:
            return self.settings.quote_provisional_prefix
        return self.settings.invoice_provisional_prefix

    async def _lock_sequence(self, db: AsyncSession, scope: str, year: int) -> bool:
        """
        Serializza l'accesso al contatore (scope, year) per la transazione corrente.

        SELECT FOR UPDATE non blocca nulla se la riga del contatore non esiste
        ancora (primo numero dell'anno): su PostgreSQL si usa un advisory lock
        di transazione, rilasciato da commit o rollback.

        Returns:
            bool: True se il lock è stato acquisito
        """
        if db.get_bind().dialect.name != "postgresql":
            return False
        await db.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:lock_key))"),
            {"lock_key": f"document_sequences:{scope}:{year}"},
        )
        return True

    async def _next_value(
        self,
        db: AsyncSession,
        scope: str,
        year: int,
        max_value: Optional[int] = None,
    ) -> int:
        """
        Riserva il prossimo progressivo del contatore (scope, year).

        Args:
            db: Sessione database
            scope: Ambito del contatore
            year: Anno di riferimento
            max_value: Limite del progressivo (None: nessun limite)

        Raises:
            ConflictError: Se il progressivo supera max_value
        """
        await self._lock_sequence(db, scope, year)

        result = await db.execute(
            select(DocumentSequence)
            .where(
                DocumentSequence.scope == scope,
                DocumentSequence.year == year,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        sequence = result.scalar_one_or_none()

        if sequence is None:
            sequence = DocumentSequence(scope=scope, year=year, last_value=0)
            db.add(sequence)

        next_value = sequence.last_value + 1
        if max_value is not None and next_value > max_value:
            logger.error("Numerazione esaurita per %s/%s", scope, year)
            raise ConflictError(
                f"Raggiunto il limite di {max_value} documenti per l'anno {year} ({scope})"
            )

        sequence.last_value = next_value
        await db.flush()
        return next_value

    async def provisional_number(
        self,
        db: AsyncSession,
        document_type: Union[DocumentType, str],
        on_date: Optional[datetime.date] = None,
    ) -> str:
        """
        Genera il numero provvisorio di una bozza.

        È solo un identificativo di visualizzazione: viene sostituito
        all'emissione e non entra mai nella sequenza definitiva.

        Args:
            db: Sessione database
            document_type: Tipo di documento
            on_date: Data di riferimento per l'anno (default: oggi)

        Returns:
            str: Numero provvisorio (es. BORR-26-0001)
        """
        document_type = DocumentType(document_type)
        year = (on_date or datetime.date.today()).year
        padding = self.settings.provisional_number_padding
        value = await self._next_value(db, f"{document_type.value}_draft", year)
        return f"{self._provisional_prefix(document_type)}-{year % 100:02d}-{value:0{padding}d}"

    async def finalize(
        self,
        db: AsyncSession,
        document: SalesDocument,
        on_date: Optional[datetime.date] = None,
    ) -> str:
        """
        Assegna al documento il numero definitivo.

        Va chiamato una sola volta per documento, sulla transizione di
        emissione. Il numero provvisorio viene conservato in
        provisional_number.

        Args:
            db: Sessione database
            document: Documento da numerare
            on_date: Data di emissione (default: oggi)

        Returns:
            str: Numero definitivo (es. P-26-000001)

        Raises:
            NumberingConflictError: Se il documento ha già un numero definitivo
        """
        if document.has_final_number:
            logger.error(
                "finalize() chiamato due volte per il documento %s (numero %s)",
                document.id,
                document.number,
            )
            raise NumberingConflictError(
                f"Il documento {document.number} ha già un numero definitivo",
                extra={"document_id": str(document.id), "number": document.number},
            )

        document_type = DocumentType(document.document_type)
        issue_date = on_date or datetime.date.today()
        padding = self.settings.number_padding
        value = await self._next_value(
            db, document_type.value, issue_date.year, max_value=10 ** padding - 1
        )
        number = f"{self._final_prefix(document_type)}-{issue_date.year % 100:02d}-{value:0{padding}d}"

        if document.number and document.provisional_number is None:
            document.provisional_number = document.number
        document.number = number
        document.issued_at = utc_now()
        document.issue_date = issue_date

        logger.info("Assegnato numero definitivo %s al documento %s", number, document.id)
        return number
