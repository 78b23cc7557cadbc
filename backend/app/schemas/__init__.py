"""
Schemas Pydantic per il progetto Gestionale Preventivi e Fatture

Questo modulo contiene tutti gli schemi Pydantic utilizzati per la validazione
e serializzazione delle richieste e risposte API.
"""

# Import degli schemi per renderli disponibili tramite import diretto
# es: from app.schemas import DocumentRead, LineCreate, etc.

from app.schemas.document import (
    DocumentCreate,
    DocumentRead,
    DocumentType,
    DocumentUpdate,
    InvoiceStatus,
    LineCreate,
    LineRead,
    LineUpdate,
    QuoteStatus,
)
