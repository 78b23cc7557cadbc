"""
Eccezioni Custom per l'applicazione.
Progetto: Gestionale Preventivi e Fatture

Definisce eccezioni specifiche del dominio per una gestione
centralizzata degli errori.

NOTA: BusinessValidationError è volutamente distinta da pydantic.ValidationError.
- pydantic.ValidationError: errori di formato/tipo nei dati di input (gestiti da FastAPI → 422)
- BusinessValidationError: violazioni delle regole di business logic (gestiti dal nostro handler → 422)
"""

from typing import Any, Dict, Optional

__all__ = [
    "AppException",
    "NotFoundError",
    "BusinessValidationError",
    "InvalidLineInputError",
    "ConflictError",
    "IllegalTransitionError",
    "DocumentLockedError",
    "WriteConflictError",
    "NumberingConflictError",
]


class AppException(Exception):
    """
    Base exception per l'applicazione.

    Tutte le eccezioni custom ereditano da questa classe base.

    Attributes:
        status_code: HTTP status code da restituire al client
        error_code: Identificativo univoco dell'errore per il frontend
        detail: Messaggio di errore leggibile per l'utente
        extra: Dizionario con dati aggiuntivi per il frontend
    """

    # Default values - overridden in subclasses
    status_code: int = 500
    error_code: str = "INTERNAL_SERVER_ERROR"

    def __init__(
        self,
        detail: str,
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Inizializza l'eccezione.

        Args:
            detail: Messaggio di errore dettagliato
            error_code: Identificativo univoco (default: quello di classe)
            extra: Dati aggiuntivi da passare al frontend (default: None)
        """
        self.detail = detail
        self.error_code = error_code if error_code is not None else self.error_code
        self.extra = extra
        self.status_code = self.__class__.status_code
        super().__init__(detail)


class NotFoundError(AppException):
    """
    Eccezione sollevata quando una risorsa non viene trovata.

    Utilizzata quando un documento o una riga non esiste nel database.
    """

    status_code: int = 404
    error_code: str = "RESOURCE_NOT_FOUND"

    def __init__(
        self,
        detail: str = "Risorsa non trovata",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class BusinessValidationError(ValueError, AppException):
    """
    Eccezione sollevata per violazioni delle regole di business logic.

    Eredita da ValueError per essere catturata dai validatori Pydantic.

    NON confondere con pydantic.ValidationError che gestisce
    la validazione dello schema/formato dei dati in input.
    """

    status_code: int = 422
    error_code: str = "BUSINESS_VALIDATION_ERROR"

    def __init__(
        self,
        detail: str = "Validazione dati fallita",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        # Chiama AppException.__init__ direttamente per evitare ValueError
        AppException.__init__(self, detail, error_code, extra)


class InvalidLineInputError(BusinessValidationError):
    """
    Dati di una riga non validi (quantità, prezzo, sconto, aliquota o concetto).

    Sempre recuperabile: il chiamante può reinviare la riga corretta.
    Nessuna modifica viene applicata al documento.

    Esempi di utilizzo:
        - "La quantità deve essere maggiore di zero"
        - "Lo sconto deve essere compreso tra 0 e 100"
    """

    error_code: str = "INVALID_LINE_INPUT"

    def __init__(
        self,
        detail: str = "Dati della riga non validi",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class ConflictError(AppException):
    """
    Eccezione sollevata per conflitti di stato.

    Utilizzata quando un'operazione non può essere eseguita
    a causa dello stato corrente della risorsa.
    """

    status_code: int = 409
    error_code: str = "CONFLICT_STATE"

    def __init__(
        self,
        detail: str = "Conflitto di stato",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class IllegalTransitionError(ConflictError):
    """
    Transizione di stato non presente nella tabella delle transizioni.

    Il documento resta invariato. `extra` riporta lo stato corrente
    e quello richiesto.
    """

    error_code: str = "ILLEGAL_TRANSITION"

    def __init__(
        self,
        current_status: str,
        requested_status: str,
        detail: Optional[str] = None,
    ) -> None:
        """
        Inizializza l'eccezione IllegalTransitionError.

        Args:
            current_status: Stato corrente del documento
            requested_status: Stato richiesto dal chiamante
            detail: Messaggio opzionale (default: generato dagli stati)
        """
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            detail or f"Transizione da '{current_status}' a '{requested_status}' non consentita",
            extra={
                "current_status": current_status,
                "requested_status": requested_status,
            },
        )


class DocumentLockedError(ConflictError):
    """Modifica delle righe tentata su un documento bloccato dal suo stato."""

    error_code: str = "DOCUMENT_LOCKED"

    def __init__(
        self,
        status: str,
        detail: Optional[str] = None,
    ) -> None:
        self.status = status
        super().__init__(
            detail or f"Documento bloccato: nello stato '{status}' le righe non sono modificabili",
            extra={"status": status},
        )


class WriteConflictError(ConflictError):
    """
    Il documento è stato modificato da un'altra operazione.

    Sollevata quando la versione attesa dal chiamante non coincide
    con quella salvata, o quando il flush trova una riga già aggiornata.
    """

    error_code: str = "WRITE_CONFLICT"

    def __init__(
        self,
        detail: str = "Il documento è stato modificato da un'altra operazione",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class NumberingConflictError(AppException):
    """
    Numero definitivo richiesto due volte per lo stesso documento.

    È un errore di programmazione del chiamante, non una condizione
    recuperabile: non va mai ritentato in silenzio.
    """

    status_code: int = 500
    error_code: str = "NUMBERING_CONFLICT"

    def __init__(
        self,
        detail: str = "Numero definitivo già assegnato al documento",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)
