"""
Schemas Pydantic per i Documenti di Vendita
Progetto: Gestionale Preventivi e Fatture

Definisce gli schemi di validazione e serializzazione per l'API.
La normalizzazione dei dati in ingresso (spazi, stringhe vuote, virgola
decimale, scala dei numeri) avviene qui, una sola volta.
"""

import datetime
import uuid
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# -------------------------------------------------------------------
# Enum per tipi e stati dei documenti
# -------------------------------------------------------------------

class DocumentType(str, Enum):
    """Tipi di documento di vendita."""
    QUOTE = "quote"
    INVOICE = "invoice"


class QuoteStatus(str, Enum):
    """Stati di un preventivo."""
    DRAFT = "DRAFT"
    SENT = "SENT"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    INVOICED = "INVOICED"
    CANCELLED = "CANCELLED"


class InvoiceStatus(str, Enum):
    """Stati di una fattura."""
    DRAFT = "DRAFT"
    ISSUED = "ISSUED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class TransitionChannel(str, Enum):
    """
    Canale attraverso cui una transizione può essere richiesta.

    - STATUS: cambio di stato esplicito
    - CONVERSION: conversione preventivo → fattura
    - EXPIRY: scadenza manuale del preventivo
    """
    STATUS = "status"
    CONVERSION = "conversion"
    EXPIRY = "expiry"


# -------------------------------------------------------------------
# Funzioni di normalizzazione standalone
# -------------------------------------------------------------------

QUANTITY_SCALE = Decimal("0.001")
PRICE_SCALE = Decimal("0.0001")
PERCENT_SCALE = Decimal("0.01")


def to_decimal(v: Any) -> Any:
    """
    Converte l'input in Decimal accettando anche la virgola decimale.

    Valori non interpretabili vengono restituiti invariati e lasciati
    alla validazione di pydantic.
    """
    if v is None or isinstance(v, Decimal):
        return v
    if isinstance(v, str):
        v = v.strip().replace(",", ".")
    try:
        return Decimal(str(v))
    except InvalidOperation:
        return v


def quantize(v: Optional[Decimal], scale: Decimal) -> Optional[Decimal]:
    """Porta un valore alla scala della colonna (arrotondamento commerciale)."""
    if v is None or not v.is_finite():
        return v
    try:
        return v.quantize(scale, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError("Valore numerico fuori scala")


def normalize_text(v: Optional[str]) -> Optional[str]:
    """Rimuove gli spazi esterni; una stringa vuota diventa None."""
    if v is None:
        return None
    v = v.strip()
    return v or None


# -------------------------------------------------------------------
# Schemas per le righe
# -------------------------------------------------------------------

class LineCreate(BaseModel):
    """
    Schema per l'inserimento di una riga.

    I vincoli numerici (quantità > 0, sconto 0-100, ...) sono verificati
    dal calcolatore, che solleva InvalidLineInputError.

    Attributes:
        concept: Voce della riga (obbligatoria)
        description: Descrizione estesa
        quantity: Quantità
        unit_price: Prezzo unitario
        discount_percent: Sconto percentuale
        tax_rate: Aliquota IVA (default: aliquota da configurazione)
    """
    concept: str = Field(..., max_length=255, description="Voce della riga")
    description: Optional[str] = Field(None, max_length=5000, description="Descrizione estesa")
    quantity: Decimal = Field(default=Decimal("1"), description="Quantità")
    unit_price: Decimal = Field(default=Decimal("0"), description="Prezzo unitario")
    discount_percent: Decimal = Field(default=Decimal("0"), description="Sconto percentuale")
    tax_rate: Optional[Decimal] = Field(None, description="Aliquota IVA percentuale")

    @field_validator("concept", mode="before")
    @classmethod
    def strip_concept(cls, v: Any) -> Any:
        """Rimuove gli spazi esterni dalla voce."""
        return v.strip() if isinstance(v, str) else v

    @field_validator("description")
    @classmethod
    def normalize_description(cls, v: Optional[str]) -> Optional[str]:
        return normalize_text(v)

    @field_validator("quantity", "unit_price", "discount_percent", "tax_rate", mode="before")
    @classmethod
    def convert_decimal(cls, v: Any) -> Any:
        return to_decimal(v)

    @field_validator("quantity")
    @classmethod
    def scale_quantity(cls, v: Decimal) -> Decimal:
        return quantize(v, QUANTITY_SCALE)

    @field_validator("unit_price")
    @classmethod
    def scale_unit_price(cls, v: Decimal) -> Decimal:
        return quantize(v, PRICE_SCALE)

    @field_validator("discount_percent", "tax_rate")
    @classmethod
    def scale_percent(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return quantize(v, PERCENT_SCALE)


class LineUpdate(BaseModel):
    """
    Schema per l'aggiornamento parziale di una riga.

    Solo i campi presenti nel payload vengono applicati
    (model_dump(exclude_unset=True)). Un null esplicito su un campo
    obbligatorio viene rifiutato dal service.
    """
    concept: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    quantity: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    discount_percent: Optional[Decimal] = None
    tax_rate: Optional[Decimal] = None

    @field_validator("concept", mode="before")
    @classmethod
    def strip_concept(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("description")
    @classmethod
    def normalize_description(cls, v: Optional[str]) -> Optional[str]:
        return normalize_text(v)

    @field_validator("quantity", "unit_price", "discount_percent", "tax_rate", mode="before")
    @classmethod
    def convert_decimal(cls, v: Any) -> Any:
        return to_decimal(v)

    @field_validator("quantity")
    @classmethod
    def scale_quantity(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return quantize(v, QUANTITY_SCALE)

    @field_validator("unit_price")
    @classmethod
    def scale_unit_price(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return quantize(v, PRICE_SCALE)

    @field_validator("discount_percent", "tax_rate")
    @classmethod
    def scale_percent(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return quantize(v, PERCENT_SCALE)


class LineReorder(BaseModel):
    """Nuovo ordine delle righe: tutti gli ID delle righe del documento."""
    line_ids: list[uuid.UUID] = Field(..., min_length=1, description="ID delle righe nel nuovo ordine")


class LineRead(BaseModel):
    """Schema per la lettura di una riga con gli importi calcolati."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    document_id: uuid.UUID
    concept: str
    description: Optional[str] = None
    quantity: Decimal
    unit_price: Decimal
    discount_percent: Decimal
    tax_rate: Decimal
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal
    line_order: int
    created_at: datetime.datetime
    updated_at: datetime.datetime


# -------------------------------------------------------------------
# Schemas per i documenti
# -------------------------------------------------------------------

class DocumentCreate(BaseModel):
    """
    Schema per la creazione di un preventivo in bozza.

    Attributes:
        client_reference: Identificativo del cliente (obbligatorio)
        project_reference: Identificativo del progetto
        valid_until: Validità del preventivo (default da configurazione)
        notes: Note libere
        lines: Righe iniziali (opzionale)
    """
    client_reference: str = Field(..., max_length=64, description="Identificativo del cliente")
    project_reference: Optional[str] = Field(None, max_length=64, description="Identificativo del progetto")
    valid_until: Optional[datetime.date] = Field(None, description="Validità del preventivo")
    notes: Optional[str] = Field(None, max_length=10000, description="Note libere")
    lines: Optional[list[LineCreate]] = Field(
        default=None,
        description="Righe iniziali (opzionale)",
    )

    @field_validator("client_reference")
    @classmethod
    def validate_client_reference(cls, v: str) -> str:
        """Il cliente è obbligatorio e non può essere vuoto."""
        v = v.strip()
        if not v:
            raise ValueError("Il cliente è obbligatorio")
        return v

    @field_validator("project_reference", "notes")
    @classmethod
    def normalize_optional(cls, v: Optional[str]) -> Optional[str]:
        return normalize_text(v)


class DocumentUpdate(BaseModel):
    """
    Schema per l'aggiornamento dei dati di testata di un documento in bozza.

    Tutti i campi sono opzionali per permettere aggiornamenti parziali.
    Lo status NON può essere cambiato tramite questo schema (usare change_status),
    le note si aggiornano con NotesUpdate.
    """
    client_reference: Optional[str] = Field(None, max_length=64)
    project_reference: Optional[str] = Field(None, max_length=64)
    valid_until: Optional[datetime.date] = None

    @field_validator("client_reference")
    @classmethod
    def validate_client_reference(cls, v: Optional[str]) -> str:
        if v is None or not v.strip():
            raise ValueError("Il cliente è obbligatorio")
        return v.strip()

    @field_validator("project_reference")
    @classmethod
    def normalize_project(cls, v: Optional[str]) -> Optional[str]:
        return normalize_text(v)


class NotesUpdate(BaseModel):
    """Schema per l'aggiornamento delle note (consentito anche a documento bloccato)."""
    notes: Optional[str] = Field(None, max_length=10000, description="Note libere")

    @field_validator("notes")
    @classmethod
    def normalize_notes(cls, v: Optional[str]) -> Optional[str]:
        return normalize_text(v)


class StatusChange(BaseModel):
    """Schema per il cambio di stato di un documento."""
    status: str = Field(..., min_length=1, max_length=20, description="Nuovo stato del documento")

    @field_validator("status")
    @classmethod
    def normalize_status(cls, v: str) -> str:
        return v.strip().upper()


class DocumentRead(BaseModel):
    """
    Schema per la lettura di un documento con righe e totali.

    È una fotografia del documento al termine dell'operazione.
    """
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    document_type: DocumentType
    number: str
    provisional_number: Optional[str] = None
    has_final_number: bool
    status: str
    client_reference: str
    project_reference: Optional[str] = None
    valid_until: Optional[datetime.date] = None
    issue_date: Optional[datetime.date] = None
    due_date: Optional[datetime.date] = None
    issued_at: Optional[datetime.datetime] = None
    notes: Optional[str] = None
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal
    source_document_id: Optional[uuid.UUID] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    version: int
    created_at: datetime.datetime
    updated_at: datetime.datetime
    lines: list[LineRead] = Field(default_factory=list)


class TaxBreakdownEntryRead(BaseModel):
    """Riepilogo IVA per aliquota."""
    model_config = ConfigDict(from_attributes=True)

    tax_rate: Decimal
    taxable_base: Decimal
    tax_amount: Decimal


class DocumentTotalsRead(BaseModel):
    """Totali del documento con il riepilogo IVA per aliquota."""
    model_config = ConfigDict(from_attributes=True)

    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal
    tax_breakdown: list[TaxBreakdownEntryRead] = Field(default_factory=list)


class StatusChangeRead(BaseModel):
    """Voce dello storico dei cambi di stato."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    document_id: uuid.UUID
    from_status: str
    to_status: str
    channel: str
    changed_by: Optional[str] = None
    created_at: datetime.datetime
