"""
Schemas Pydantic per l'autenticazione JWT
Progetto: Gestionale Preventivi e Fatture

Il token è emesso dal servizio di identità esterno; qui serve solo
a leggere chi sta agendo, per i campi di audit.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class TokenPayload(BaseModel):
    """
    Schema per il payload contenuto nei token JWT.

    Attributes:
        sub: Subject - ID dell'utente come stringa
        role: Ruolo dell'utente (informativo, non verificato)
        exp: Expiration - Data/ora di scadenza
        type: Tipo di token ("access")
    """

    sub: str = Field(..., description="ID utente")
    role: Optional[str] = Field(None, description="Ruolo dell'utente")
    exp: datetime = Field(..., description="Data/ora di scadenza")
    type: str = Field(default="access", description="Tipo di token")


# Export degli schemas
__all__ = [
    "TokenPayload",
]
