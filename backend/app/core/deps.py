"""
Dependency Injection per autenticazione
Progetto: Gestionale Preventivi e Fatture

Funzioni di dependency injection per identificare l'utente che agisce
e per il controllo di concorrenza ottimistico.
"""

from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from app.core.security import decode_token

# OAuth2 scheme - estrae dall'header Authorization il token emesso dal servizio di identità
oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl="/api/v1/auth/login",
    auto_error=False,
)


async def get_current_actor(
    token: Optional[str] = Depends(oauth2_scheme),
) -> str:
    """
    Dependency per ottenere l'ID dell'utente corrente dal token JWT.

    Non carica l'utente e non verifica ruoli: l'ID viene solo registrato
    nei campi di audit dei documenti.

    Args:
        token: Token JWT estratto dall'header Authorization

    Returns:
        L'ID dell'utente (claim "sub")

    Raises:
        HTTPException 401: Se il token manca, è invalido o non è di accesso
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token di autenticazione non fornito",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token_data = decode_token(token)

    if token_data.type != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token di refresh non valido per questa operazione",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return token_data.sub


async def get_expected_version(
    if_match: Optional[str] = Header(None, alias="If-Match"),
) -> Optional[int]:
    """
    Legge la versione attesa del documento dall'header If-Match.

    Accetta sia `3` che `"3"` (ETag quotato). Se l'header manca
    l'operazione procede senza controllo (ultima scrittura vince).

    Raises:
        HTTPException 400: Se l'header non contiene un intero
    """
    if if_match is None:
        return None
    value = if_match.strip().strip('"')
    if value.startswith("W/"):
        value = value[2:].strip('"')
    try:
        return int(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Header If-Match non valido: atteso il numero di versione",
        )


# Type aliases per uso comune
CurrentActor = Annotated[str, Depends(get_current_actor)]
ExpectedVersion = Annotated[Optional[int], Depends(get_expected_version)]


# Export
__all__ = [
    "get_current_actor",
    "get_expected_version",
    "oauth2_scheme",
    "CurrentActor",
    "ExpectedVersion",
]
