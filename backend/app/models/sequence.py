"""
Modello SQLAlchemy per i contatori di numerazione
Progetto: Gestionale Preventivi e Fatture

Un contatore per ogni ambito (es. preventivi definitivi, fatture in bozza)
e anno. Il valore viene letto con lock di riga e incrementato nella
stessa transazione che lo utilizza.
"""

from sqlalchemy import CheckConstraint, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base
from app.models.mixins import TimestampMixin, UUIDMixin


class DocumentSequence(Base, UUIDMixin, TimestampMixin):
    """
    Contatore progressivo per la numerazione dei documenti.

    Attributes:
        scope: Ambito del contatore (quote, invoice, quote_draft, invoice_draft)
        year: Anno di riferimento (la numerazione riparte ogni anno)
        last_value: Ultimo progressivo assegnato
    """

    __tablename__ = "document_sequences"

    scope: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        doc="Ambito del contatore",
    )

    year: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        doc="Anno di riferimento",
    )

    last_value: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Ultimo progressivo assegnato",
    )

    __table_args__ = (
        UniqueConstraint("scope", "year", name="uq_document_sequences_scope_year"),
        CheckConstraint("last_value >= 0", name="ck_document_sequences_last_value_positive"),
    )

    def __repr__(self) -> str:
        return f"<DocumentSequence(scope='{self.scope}', year={self.year}, last_value={self.last_value})>"
