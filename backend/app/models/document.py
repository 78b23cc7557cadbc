"""
Modelli SQLAlchemy per i Documenti di Vendita
Progetto: Gestionale Preventivi e Fatture

 Contiene:
- SalesDocument: Preventivo o fattura (testata con totali derivati)
- DocumentLine: Righe del documento con importi calcolati
- DocumentStatusChange: Storico dei cambi di stato
"""


from __future__ import annotations
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models import Base
from app.models.mixins import TimestampMixin, UUIDMixin


# Gli stati sono definiti in app.schemas.document (QuoteStatus, InvoiceStatus)
# Le transizioni consentite in app.services.state_machine


class SalesDocument(Base, UUIDMixin, TimestampMixin):
    """
    Modello per i documenti di vendita (preventivi e fatture).

    Il preventivo nasce in bozza con un numero provvisorio; all'emissione
    riceve il numero definitivo (una sola volta) e le righe vengono bloccate.
    La fattura nasce dalla conversione di un preventivo approvato.

    Attributes:
        id: UUID primary key, generato automaticamente
        document_type: Tipo documento (quote | invoice)
        number: Numero corrente (provvisorio in bozza, definitivo dopo l'emissione)
        provisional_number: Numero provvisorio assegnato alla creazione
        status: Stato corrente del documento
        client_reference: Riferimento al cliente (anagrafica esterna)
        project_reference: Riferimento al progetto (opzionale)
        valid_until: Scadenza indicativa del preventivo
        issue_date: Data di emissione
        due_date: Scadenza di pagamento (solo fatture)
        issued_at: Data/ora di assegnazione del numero definitivo
        notes: Note libere, modificabili anche a documento bloccato
        subtotal: Imponibile (somma delle righe)
        tax_amount: Totale IVA (somma delle righe)
        total: Totale documento (imponibile + IVA)
        source_document_id: Preventivo di origine (solo fatture da conversione)
        created_by: Utente che ha creato il documento
        updated_by: Ultimo utente che ha modificato il documento
        version: Contatore di versione per il controllo di concorrenza

    Relationships:
        lines: Righe ordinate per line_order
        status_changes: Storico cambi di stato (letto solo con una query esplicita)

    States (preventivo):
        draft → sent → approved ⇄ rejected
          ↓      ↓        ↓
      cancelled expired invoiced
    """

    __tablename__ = "sales_documents"

    # ------------------------------------------------------------
    # Colonne Identificazione
    # ------------------------------------------------------------
    document_type: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        index=True,
        doc="Tipo documento: quote (preventivo) o invoice (fattura)",
    )

    number: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        unique=True,
        doc="Numero del documento (provvisorio o definitivo)",
    )

    provisional_number: Mapped[Optional[str]] = mapped_column(
        String(30),
        nullable=True,
        doc="Numero provvisorio assegnato in bozza",
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="DRAFT",
        index=True,
        doc="Stato corrente del documento",
    )

    # ------------------------------------------------------------
    # Colonne Riferimenti Esterni
    # ------------------------------------------------------------
    client_reference: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        doc="Identificativo del cliente nell'anagrafica",
    )

    project_reference: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        doc="Identificativo del progetto",
    )

    source_document_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("sales_documents.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
        doc="Preventivo da cui è stata generata la fattura",
    )

    # ------------------------------------------------------------
    # Colonne Date
    # ------------------------------------------------------------
    valid_until: Mapped[Optional[date]] = mapped_column(
        Date,
        nullable=True,
        doc="Validità del preventivo (indicativa)",
    )

    issue_date: Mapped[Optional[date]] = mapped_column(
        Date,
        nullable=True,
        doc="Data di emissione del documento",
    )

    due_date: Mapped[Optional[date]] = mapped_column(
        Date,
        nullable=True,
        doc="Scadenza di pagamento",
    )

    issued_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="Data/ora di assegnazione del numero definitivo",
    )

    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Note libere",
    )

    # ------------------------------------------------------------
    # Colonne Importi (derivati dalle righe)
    # ------------------------------------------------------------
    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
        doc="Imponibile",
    )

    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
        doc="Importo IVA",
    )

    total: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
        doc="Totale documento",
    )

    # ------------------------------------------------------------
    # Colonne Audit
    # ------------------------------------------------------------
    created_by: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        doc="Utente che ha creato il documento",
    )

    updated_by: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        doc="Ultimo utente che ha modificato il documento",
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        doc="Versione della riga per il controllo di concorrenza ottimistico",
    )

    # ------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------
    lines: Mapped[List["DocumentLine"]] = relationship(
        "DocumentLine",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="DocumentLine.line_order",
        lazy="selectin",
        doc="Righe del documento",
    )

    status_changes: Mapped[List["DocumentStatusChange"]] = relationship(
        "DocumentStatusChange",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="DocumentStatusChange.created_at",
        lazy="raise",
        doc="Storico dei cambi di stato",
    )

    # ------------------------------------------------------------
    # Indici e Vincoli
    # ------------------------------------------------------------
    __table_args__ = (
        CheckConstraint(
            "document_type IN ('quote', 'invoice')",
            name="ck_sales_documents_document_type",
        ),
        CheckConstraint("subtotal >= 0", name="ck_sales_documents_subtotal_positive"),
        CheckConstraint("tax_amount >= 0", name="ck_sales_documents_tax_amount_positive"),
        Index("ix_sales_documents_type_status", "document_type", "status"),
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def has_final_number(self) -> bool:
        """True se il numero definitivo è già stato assegnato."""
        return self.issued_at is not None

    def __repr__(self) -> str:
        return f"<SalesDocument(number='{self.number}', type='{self.document_type}', status='{self.status}')>"


class DocumentLine(Base, UUIDMixin, TimestampMixin):
    """
    Modello per le righe dei documenti di vendita.

    Gli importi (subtotal, tax_amount, total) sono sempre calcolati dal
    calcolatore a partire da quantità, prezzo, sconto e aliquota.

    Attributes:
        document_id: UUID del documento padre
        concept: Voce della riga (obbligatoria)
        description: Descrizione estesa
        quantity: Quantità (> 0)
        unit_price: Prezzo unitario (>= 0)
        discount_percent: Sconto percentuale (0-100)
        tax_rate: Aliquota IVA percentuale (>= 0)
        subtotal: Imponibile di riga
        tax_amount: IVA di riga
        total: Totale di riga
        line_order: Posizione della riga nel documento (univoca)
    """

    __tablename__ = "document_lines"

    # ------------------------------------------------------------
    # Colonne Relazioni
    # ------------------------------------------------------------
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("sales_documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        doc="UUID del documento padre",
    )

    # ------------------------------------------------------------
    # Colonne Dati
    # ------------------------------------------------------------
    concept: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        doc="Voce della riga",
    )

    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Descrizione estesa",
    )

    quantity: Mapped[Decimal] = mapped_column(
        Numeric(12, 3),
        nullable=False,
        doc="Quantità",
    )

    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(12, 4),
        nullable=False,
        doc="Prezzo unitario",
    )

    discount_percent: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        default=Decimal("0.00"),
        doc="Sconto percentuale",
    )

    tax_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        doc="Aliquota IVA percentuale",
    )

    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        doc="Imponibile di riga",
    )

    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        doc="IVA di riga",
    )

    total: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        doc="Totale di riga",
    )

    line_order: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        doc="Ordine di visualizzazione e stampa",
    )

    # ------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------
    document: Mapped["SalesDocument"] = relationship(
        "SalesDocument",
        back_populates="lines",
        doc="Documento padre",
    )

    # ------------------------------------------------------------
    # Indici e Vincoli
    # ------------------------------------------------------------
    __table_args__ = (
        UniqueConstraint("document_id", "line_order", name="uq_document_lines_order"),
        CheckConstraint("quantity > 0", name="ck_document_lines_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_document_lines_unit_price_positive"),
        CheckConstraint(
            "discount_percent >= 0 AND discount_percent <= 100",
            name="ck_document_lines_discount_range",
        ),
        CheckConstraint("tax_rate >= 0", name="ck_document_lines_tax_rate_positive"),
    )

    def __repr__(self) -> str:
        return f"<DocumentLine(order={self.line_order}, concept='{self.concept}', total={self.total})>"


class DocumentStatusChange(Base, UUIDMixin, TimestampMixin):
    """
    Storico dei cambi di stato di un documento.

    Ogni transizione (cambio stato, conversione, scadenza) lascia una
    traccia con lo stato di partenza, quello di arrivo e l'utente.
    """

    __tablename__ = "document_status_changes"

    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("sales_documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        doc="UUID del documento",
    )

    from_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        doc="Stato di partenza",
    )

    to_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        doc="Stato di arrivo",
    )

    channel: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="status",
        doc="Canale della transizione (status, conversion, expiry)",
    )

    changed_by: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        doc="Utente che ha eseguito il cambio",
    )

    document: Mapped["SalesDocument"] = relationship(
        "SalesDocument",
        back_populates="status_changes",
        doc="Documento di riferimento",
    )

    def __repr__(self) -> str:
        return f"<DocumentStatusChange({self.from_status} -> {self.to_status})>"
