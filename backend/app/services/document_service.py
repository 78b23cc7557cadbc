"""
Service Layer per i Documenti di Vendita
Progetto: Gestionale Preventivi e Fatture

Unico punto di modifica di preventivi e fatture: compone macchina a
stati, calcolatore, numerazione e versioni, e salva il risultato tramite
il repository.

Ogni operazione è atomica: carica lo stato salvato, valida, calcola,
salva e fa commit; su qualunque errore la transazione viene annullata
e il documento salvato resta invariato.
"""

import datetime
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import Settings, get_settings
from app.core.exceptions import (
    BusinessValidationError,
    ConflictError,
    IllegalTransitionError,
    InvalidLineInputError,
    WriteConflictError,
)
from app.models import DocumentLine, DocumentStatusChange, SalesDocument
from app.models.mixins import utc_now
from app.schemas.document import (
    DocumentCreate,
    DocumentType,
    DocumentUpdate,
    LineCreate,
    LineReorder,
    LineUpdate,
    NotesUpdate,
    QuoteStatus,
    TransitionChannel,
)
from app.services import state_machine, versioning
from app.services.calculator import DocumentTotals, aggregate, check_document_totals, validate_line
from app.services.document_repository import DocumentRepository
from app.services.numbering_service import NumberingService

# Logger per questo modulo
logger = logging.getLogger(__name__)

# Campi di riga che non possono essere annullati con un null esplicito
REQUIRED_LINE_FIELDS = ("concept", "quantity", "unit_price", "discount_percent", "tax_rate")
LINE_INPUT_FIELDS = REQUIRED_LINE_FIELDS + ("description",)


class DocumentService:
    """
    Service per il ciclo di vita dei documenti di vendita.

    Fornisce metodi asincroni senza dipendenze da FastAPI. Le operazioni
    di modifica accettano `expected_version`: se indicata e diversa dalla
    versione salvata, l'operazione fallisce con WriteConflictError.
    """

    def __init__(
        self,
        repository: Optional[DocumentRepository] = None,
        numbering: Optional[NumberingService] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """
        Inizializza il service.

        Args:
            repository: Repository documenti (default: DocumentRepository())
            numbering: Service di numerazione (default: NumberingService())
            settings: Impostazioni applicazione (default: get_settings())
        """
        self.settings = settings or get_settings()
        self.repository = repository or DocumentRepository()
        self.numbering = numbering or NumberingService(self.settings)

    # -------------------------------------------------------------------
    # Helper interni
    # -------------------------------------------------------------------

    @asynccontextmanager
    async def _transaction(self, db: AsyncSession, operation: str) -> AsyncIterator[None]:
        """
        Esegue il blocco come unica transazione: commit o rollback completo.

        Raises:
            ConflictError: Per violazioni di vincoli del database
            WriteConflictError: Se il documento è stato modificato nel frattempo
            BusinessValidationError: Se il database rifiuta un valore fuori scala
        """
        try:
            yield
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.error("Errore di integrità durante %s: %s", operation, e)
            raise ConflictError(
                f"Operazione '{operation}' in conflitto con i dati salvati"
            ) from e
        except StaleDataError as e:
            await db.rollback()
            logger.warning("Conflitto di scrittura durante %s: %s", operation, e)
            raise WriteConflictError() from e
        except DataError as e:
            await db.rollback()
            logger.error("Dati non rappresentabili durante %s: %s", operation, e)
            raise BusinessValidationError(
                f"Operazione '{operation}': valori fuori dai limiti consentiti"
            ) from e
        except Exception:
            await db.rollback()
            raise

    def _check_version(self, document: SalesDocument, expected_version: Optional[int]) -> None:
        if expected_version is not None and document.version != expected_version:
            logger.warning(
                "Versione obsoleta per il documento %s: attesa %s, salvata %s",
                document.id,
                expected_version,
                document.version,
            )
            raise WriteConflictError(
                extra={
                    "expected_version": expected_version,
                    "current_version": document.version,
                }
            )

    def _touch(self, document: SalesDocument, actor_id: Optional[str]) -> None:
        document.updated_at = utc_now()
        document.updated_by = actor_id

    def _recompute_totals(self, document: SalesDocument) -> DocumentTotals:
        totals = check_document_totals(aggregate(document.lines))
        document.subtotal = totals.subtotal
        document.tax_amount = totals.tax_amount
        document.total = totals.total
        return totals

    def _default_valid_until(self) -> datetime.date:
        return datetime.date.today() + datetime.timedelta(days=self.settings.quote_validity_days)

    def _build_line(self, data: LineCreate, line_order: int) -> DocumentLine:
        """Valida i dati e crea la riga con gli importi calcolati."""
        tax_rate = data.tax_rate if data.tax_rate is not None else self.settings.default_tax_rate
        amounts = validate_line(
            data.concept,
            data.quantity,
            data.unit_price,
            data.discount_percent,
            tax_rate,
        )
        return DocumentLine(
            id=uuid.uuid4(),
            concept=data.concept,
            description=data.description,
            quantity=data.quantity,
            unit_price=data.unit_price,
            discount_percent=data.discount_percent,
            tax_rate=tax_rate,
            subtotal=amounts.subtotal,
            tax_amount=amounts.tax_amount,
            total=amounts.total,
            line_order=line_order,
        )

    async def _apply_transition(
        self,
        db: AsyncSession,
        document: SalesDocument,
        requested_status: str,
        channel: TransitionChannel,
        actor_id: Optional[str],
    ) -> None:
        """
        Applica una transizione di stato consultando la tabella delle transizioni.

        Sulla transizione di emissione assegna il numero definitivo.
        Registra il cambio nello storico.

        Raises:
            IllegalTransitionError: Se la transizione non è consentita
        """
        target = state_machine.check_transition(
            document.document_type, document.status, requested_status, channel
        )
        previous = document.status

        if state_machine.is_issuing_transition(document.document_type, previous, target):
            await self.numbering.finalize(db, document)

        document.status = target.value
        self._touch(document, actor_id)
        await self.repository.add_status_change(
            db, document, previous, target.value, channel.value, actor_id
        )

        logger.info(
            "Cambiato stato documento %s (%s): %s -> %s",
            document.number,
            channel.value,
            previous,
            target.value,
        )

    # -------------------------------------------------------------------
    # Lettura
    # -------------------------------------------------------------------

    async def get_document(self, db: AsyncSession, document_id: uuid.UUID) -> SalesDocument:
        """
        Recupera un documento con le righe.

        Raises:
            NotFoundError: Se il documento non esiste
        """
        return await self.repository.load_document(db, document_id)

    async def get_tax_breakdown(self, db: AsyncSession, document_id: uuid.UUID) -> DocumentTotals:
        """
        Totali del documento e riepilogo IVA per aliquota.

        Raises:
            NotFoundError: Se il documento non esiste
        """
        document = await self.repository.load_document(db, document_id)
        return aggregate(document.lines)

    async def list_status_history(
        self,
        db: AsyncSession,
        document_id: uuid.UUID,
    ) -> list[DocumentStatusChange]:
        """
        Storico dei cambi di stato del documento.

        Raises:
            NotFoundError: Se il documento non esiste
        """
        await self.repository.load_document(db, document_id)
        return await self.repository.list_status_changes(db, document_id)

    # -------------------------------------------------------------------
    # Testata del documento
    # -------------------------------------------------------------------

    async def create_document(
        self,
        db: AsyncSession,
        data: DocumentCreate,
        actor_id: Optional[str] = None,
    ) -> SalesDocument:
        """
        Crea un preventivo in bozza con numero provvisorio.

        Args:
            db: Sessione database
            data: Dati del preventivo, con eventuali righe iniziali
            actor_id: Utente che crea il documento

        Returns:
            SalesDocument: Il preventivo creato

        Raises:
            InvalidLineInputError: Se una delle righe iniziali non è valida
        """
        async with self._transaction(db, "create_document"):
            lines = [
                self._build_line(line_data, index)
                for index, line_data in enumerate(data.lines or [], start=1)
            ]
            number = await self.numbering.provisional_number(db, DocumentType.QUOTE)

            document = SalesDocument(
                id=uuid.uuid4(),
                document_type=DocumentType.QUOTE.value,
                number=number,
                provisional_number=number,
                status=QuoteStatus.DRAFT.value,
                client_reference=data.client_reference,
                project_reference=data.project_reference,
                valid_until=data.valid_until or self._default_valid_until(),
                notes=data.notes,
                lines=lines,
                created_by=actor_id,
                updated_by=actor_id,
            )
            self._recompute_totals(document)
            await self.repository.save_document(db, document)

        logger.info(
            "Creato preventivo %s con %d righe (totale %s)",
            document.number,
            len(document.lines),
            document.total,
        )
        return document

    async def update_document(
        self,
        db: AsyncSession,
        document_id: uuid.UUID,
        data: DocumentUpdate,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> SalesDocument:
        """
        Aggiorna cliente, progetto e validità di un documento in bozza.

        La data di validità vale solo per i preventivi.

        Raises:
            NotFoundError: Se il documento non esiste
            DocumentLockedError: Se il documento non è in bozza
            WriteConflictError: Se la versione attesa non coincide
        """
        async with self._transaction(db, "update_document"):
            document = await self.repository.load_document(db, document_id, for_update=True)
            self._check_version(document, expected_version)
            state_machine.ensure_header_editable(document.document_type, document.status)

            update_data = data.model_dump(exclude_unset=True)
            if "valid_until" in update_data and document.document_type != DocumentType.QUOTE.value:
                raise BusinessValidationError(
                    "La data di validità si applica solo ai preventivi",
                    extra={"field": "valid_until"},
                )
            for field, value in update_data.items():
                setattr(document, field, value)

            self._touch(document, actor_id)
            await self.repository.save_document(db, document)

        logger.info("Aggiornato documento %s: %s", document.number, sorted(update_data))
        return document

    async def update_notes(
        self,
        db: AsyncSession,
        document_id: uuid.UUID,
        data: NotesUpdate,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> SalesDocument:
        """
        Aggiorna le note, consentito in ogni stato non finale.

        Raises:
            NotFoundError: Se il documento non esiste
            DocumentLockedError: Se il documento è in uno stato finale
            WriteConflictError: Se la versione attesa non coincide
        """
        async with self._transaction(db, "update_notes"):
            document = await self.repository.load_document(db, document_id, for_update=True)
            self._check_version(document, expected_version)
            state_machine.ensure_notes_editable(document.document_type, document.status)

            document.notes = data.notes
            self._touch(document, actor_id)
            await self.repository.save_document(db, document)

        logger.info("Aggiornate note del documento %s", document.number)
        return document

    # -------------------------------------------------------------------
    # Righe del documento
    # -------------------------------------------------------------------

    async def add_line(
        self,
        db: AsyncSession,
        document_id: uuid.UUID,
        data: LineCreate,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> DocumentLine:
        """
        Aggiunge una riga in coda al documento e ricalcola i totali.

        Args:
            db: Sessione database
            document_id: UUID del documento
            data: Dati della riga
            actor_id: Utente che esegue l'operazione
            expected_version: Versione attesa del documento (opzionale)

        Returns:
            DocumentLine: La riga creata

        Raises:
            NotFoundError: Se il documento non esiste
            DocumentLockedError: Se il documento non è in bozza
            InvalidLineInputError: Se i dati della riga non sono validi
            WriteConflictError: Se la versione attesa non coincide
        """
        async with self._transaction(db, "add_line"):
            document = await self.repository.load_document(db, document_id, for_update=True)
            self._check_version(document, expected_version)
            state_machine.ensure_lines_editable(document.document_type, document.status)

            next_order = max((line.line_order for line in document.lines), default=0) + 1
            line = self._build_line(data, next_order)
            await self.repository.save_line(db, document, line)

            self._recompute_totals(document)
            self._touch(document, actor_id)
            await self.repository.save_document(db, document)

        logger.info("Aggiunta riga %s al documento %s", line.id, document.number)
        return line

    async def update_line(
        self,
        db: AsyncSession,
        line_id: uuid.UUID,
        data: LineUpdate,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> DocumentLine:
        """
        Aggiorna una riga esistente (solo i campi forniti) e ricalcola i totali.

        La riga risultante viene validata per intero prima di applicare
        qualunque modifica.

        Raises:
            NotFoundError: Se la riga non esiste
            DocumentLockedError: Se il documento non è in bozza
            InvalidLineInputError: Se la riga risultante non è valida
            WriteConflictError: Se la versione attesa non coincide
        """
        async with self._transaction(db, "update_line"):
            line = await self.repository.load_line(db, line_id)
            document = await self.repository.load_document(db, line.document_id, for_update=True)
            self._check_version(document, expected_version)
            state_machine.ensure_lines_editable(document.document_type, document.status)

            update_data = data.model_dump(exclude_unset=True)
            for field in REQUIRED_LINE_FIELDS:
                if field in update_data and update_data[field] is None:
                    raise InvalidLineInputError(
                        f"Il campo '{field}' non può essere nullo",
                        extra={"field": field},
                    )

            merged = {field: update_data.get(field, getattr(line, field)) for field in LINE_INPUT_FIELDS}
            amounts = validate_line(
                merged["concept"],
                merged["quantity"],
                merged["unit_price"],
                merged["discount_percent"],
                merged["tax_rate"],
            )

            for field, value in merged.items():
                setattr(line, field, value)
            line.subtotal = amounts.subtotal
            line.tax_amount = amounts.tax_amount
            line.total = amounts.total
            await self.repository.save_line(db, document, line)

            self._recompute_totals(document)
            self._touch(document, actor_id)
            await self.repository.save_document(db, document)

        logger.info("Aggiornata riga %s del documento %s", line_id, document.number)
        return line

    async def remove_line(
        self,
        db: AsyncSession,
        line_id: uuid.UUID,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> None:
        """
        Rimuove una riga e ricalcola i totali.

        Raises:
            NotFoundError: Se la riga non esiste
            DocumentLockedError: Se il documento non è in bozza
            WriteConflictError: Se la versione attesa non coincide
        """
        async with self._transaction(db, "remove_line"):
            line = await self.repository.load_line(db, line_id)
            document = await self.repository.load_document(db, line.document_id, for_update=True)
            self._check_version(document, expected_version)
            state_machine.ensure_lines_editable(document.document_type, document.status)

            await self.repository.delete_line(db, document, line)

            self._recompute_totals(document)
            self._touch(document, actor_id)
            await self.repository.save_document(db, document)

        logger.info("Rimossa riga %s dal documento %s", line_id, document.number)

    async def reorder_lines(
        self,
        db: AsyncSession,
        document_id: uuid.UUID,
        data: LineReorder,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> SalesDocument:
        """
        Riassegna line_order secondo l'ordine degli ID ricevuti.

        L'elenco deve contenere tutte e sole le righe del documento.

        Raises:
            NotFoundError: Se il documento non esiste
            DocumentLockedError: Se il documento non è in bozza
            BusinessValidationError: Se l'elenco non corrisponde alle righe
            WriteConflictError: Se la versione attesa non coincide
        """
        async with self._transaction(db, "reorder_lines"):
            document = await self.repository.load_document(db, document_id, for_update=True)
            self._check_version(document, expected_version)
            state_machine.ensure_lines_editable(document.document_type, document.status)

            lines_by_id = {line.id: line for line in document.lines}
            if len(data.line_ids) != len(set(data.line_ids)) or set(data.line_ids) != set(lines_by_id):
                raise BusinessValidationError(
                    "L'ordinamento deve indicare tutte le righe del documento una sola volta"
                )

            # Due passaggi: valori temporanei negativi per non violare l'unicità di line_order
            for position, line_id in enumerate(data.line_ids, start=1):
                lines_by_id[line_id].line_order = -position
            await self.repository.save_document(db, document)
            for position, line_id in enumerate(data.line_ids, start=1):
                lines_by_id[line_id].line_order = position

            self._touch(document, actor_id)
            await self.repository.save_document(db, document)

        logger.info("Riordinate %d righe del documento %s", len(data.line_ids), document.number)
        return await self.repository.load_document(db, document_id)

    # -------------------------------------------------------------------
    # Stato del documento
    # -------------------------------------------------------------------

    async def change_status(
        self,
        db: AsyncSession,
        document_id: uuid.UUID,
        requested_status: str,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> SalesDocument:
        """
        Cambia lo stato del documento secondo la tabella delle transizioni.

        La transizione di emissione (DRAFT → SENT per i preventivi,
        DRAFT → ISSUED per le fatture) assegna il numero definitivo.
        INVOICED ed EXPIRED non sono raggiungibili da qui: si usano
        convert_to_invoice ed expire_quote.

        Raises:
            NotFoundError: Se il documento non esiste
            IllegalTransitionError: Se la transizione non è consentita
            WriteConflictError: Se la versione attesa non coincide
        """
        async with self._transaction(db, "change_status"):
            document = await self.repository.load_document(db, document_id, for_update=True)
            self._check_version(document, expected_version)
            await self._apply_transition(
                db, document, requested_status, TransitionChannel.STATUS, actor_id
            )
            await self.repository.save_document(db, document)

        return document

    async def cancel_document(
        self,
        db: AsyncSession,
        document_id: uuid.UUID,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> SalesDocument:
        """
        "Elimina" un documento portandolo in CANCELLED.

        I documenti non vengono mai cancellati fisicamente; l'annullamento
        è consentito solo per le bozze, mai emesse.

        Raises:
            NotFoundError: Se il documento non esiste
            IllegalTransitionError: Se il documento non è in bozza
            WriteConflictError: Se la versione attesa non coincide
        """
        async with self._transaction(db, "cancel_document"):
            document = await self.repository.load_document(db, document_id, for_update=True)
            self._check_version(document, expected_version)

            if not state_machine.can_edit_lines(document.document_type, document.status):
                logger.warning(
                    "Annullamento rifiutato: documento %s in stato %s",
                    document.number,
                    document.status,
                )
                raise IllegalTransitionError(
                    document.status,
                    QuoteStatus.CANCELLED.value,
                    detail="Solo i documenti in bozza possono essere eliminati",
                )

            await self._apply_transition(
                db, document, QuoteStatus.CANCELLED.value, TransitionChannel.STATUS, actor_id
            )
            await self.repository.save_document(db, document)

        return document

    async def expire_quote(
        self,
        db: AsyncSession,
        document_id: uuid.UUID,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> SalesDocument:
        """
        Segna come scaduto un preventivo inviato.

        La scadenza è manuale: valid_until è solo indicativa.

        Raises:
            NotFoundError: Se il documento non esiste
            IllegalTransitionError: Se il preventivo non è in stato SENT
            WriteConflictError: Se la versione attesa non coincide
        """
        async with self._transaction(db, "expire_quote"):
            document = await self.repository.load_document(db, document_id, for_update=True)
            self._check_version(document, expected_version)
            await self._apply_transition(
                db, document, QuoteStatus.EXPIRED.value, TransitionChannel.EXPIRY, actor_id
            )
            await self.repository.save_document(db, document)

        return document

    # -------------------------------------------------------------------
    # Versioni e conversione
    # -------------------------------------------------------------------

    async def new_version(
        self,
        db: AsyncSession,
        document_id: uuid.UUID,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> SalesDocument:
        """
        Crea una nuova bozza a partire da un documento esistente.

        Se l'origine è in bozza viene prima emessa (numero definitivo e
        righe bloccate), così quanto inviato al cliente resta immutato.

        Returns:
            SalesDocument: La nuova bozza

        Raises:
            NotFoundError: Se il documento non esiste
            WriteConflictError: Se la versione attesa non coincide
        """
        async with self._transaction(db, "new_version"):
            source = await self.repository.load_document(db, document_id, for_update=True)
            self._check_version(source, expected_version)

            if versioning.requires_issue_before_version(source):
                issuing_status = state_machine.ISSUING_STATUS[DocumentType(source.document_type)]
                await self._apply_transition(
                    db, source, issuing_status.value, TransitionChannel.STATUS, actor_id
                )
                await self.repository.save_document(db, source)

            draft = await self._build_copy(db, source, actor_id)

        logger.info("Creata nuova versione %s dal documento %s", draft.number, source.number)
        return draft

    async def duplicate(
        self,
        db: AsyncSession,
        document_id: uuid.UUID,
        actor_id: Optional[str] = None,
    ) -> SalesDocument:
        """
        Copia un documento in una nuova bozza senza modificare l'origine.

        Returns:
            SalesDocument: La nuova bozza

        Raises:
            NotFoundError: Se il documento non esiste
        """
        async with self._transaction(db, "duplicate"):
            source = await self.repository.load_document(db, document_id)
            draft = await self._build_copy(db, source, actor_id)

        logger.info("Duplicato documento %s in %s", source.number, draft.number)
        return draft

    async def _build_copy(
        self,
        db: AsyncSession,
        source: SalesDocument,
        actor_id: Optional[str],
    ) -> SalesDocument:
        number = await self.numbering.provisional_number(db, source.document_type)
        draft = versioning.build_draft_copy(
            source,
            number,
            actor_id=actor_id,
            valid_until=self._default_valid_until(),
        )
        return await self.repository.save_document(db, draft)

    async def convert_to_invoice(
        self,
        db: AsyncSession,
        document_id: uuid.UUID,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> SalesDocument:
        """
        Converte un preventivo approvato in fattura emessa.

        In un'unica transazione: crea la fattura con righe e totali del
        preventivo e numero definitivo della sequenza fatture, poi porta
        il preventivo in INVOICED.

        Returns:
            SalesDocument: La fattura creata

        Raises:
            NotFoundError: Se il documento non esiste
            IllegalTransitionError: Se il documento non è un preventivo approvato
            WriteConflictError: Se la versione attesa non coincide
        """
        async with self._transaction(db, "convert_to_invoice"):
            quote = await self.repository.load_document(db, document_id, for_update=True)
            self._check_version(quote, expected_version)
            state_machine.check_transition(
                quote.document_type,
                quote.status,
                QuoteStatus.INVOICED.value,
                TransitionChannel.CONVERSION,
            )

            invoice = versioning.build_invoice_from_quote(
                quote,
                due_date=datetime.date.today()
                + datetime.timedelta(days=self.settings.invoice_payment_terms_days),
                actor_id=actor_id,
            )
            await self.numbering.finalize(db, invoice)
            await self.repository.save_document(db, invoice)

            await self._apply_transition(
                db, quote, QuoteStatus.INVOICED.value, TransitionChannel.CONVERSION, actor_id
            )
            await self.repository.save_document(db, quote)

        logger.info(
            "Preventivo %s convertito nella fattura %s (totale %s)",
            quote.number,
            invoice.number,
            invoice.total,
        )
        return invoice
