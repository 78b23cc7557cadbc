"""
Modelli Database SQLAlchemy
Progetto: Gestionale Preventivi e Fatture

Import centralizzato di tutti i modelli per Alembic e usage generico.

Modelli:
- SalesDocument: Preventivi e fatture
- DocumentLine: Righe dei documenti
- DocumentStatusChange: Storico dei cambi di stato
- DocumentSequence: Contatori di numerazione
"""

# SQLAlchemy 2.0 Base declarativa
# Importato qui per essere disponibile per tutti i modelli
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class per tutti i modelli SQLAlchemy."""
    pass


from app.models.document import DocumentLine, DocumentStatusChange, SalesDocument
from app.models.sequence import DocumentSequence

# Esportazione di tutti i modelli per Alembic
__all__ = [
    "Base",
    "SalesDocument",
    "DocumentLine",
    "DocumentStatusChange",
    "DocumentSequence",
]
