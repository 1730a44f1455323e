"""
Eccezioni Custom per l'applicazione.
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)

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
    "DuplicateError",
    "BusinessValidationError",
    "ValidationError",       # alias di BusinessValidationError
    "ConflictError",
    "InvoiceStateError",
    "SequenceConflictError",
    "SigningError",
    "ChainIntegrityError",
    "AuditLogImmutableError",
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
        self.extra = extra if extra is not None else None
        self.status_code = self.__class__.status_code
        super().__init__(detail)


class NotFoundError(AppException):
    """
    Eccezione sollevata quando una risorsa non viene trovata.

    Utilizzata quando un'entità cercata (azienda, fattura, articolo)
    non esiste nel database.
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


class DuplicateError(AppException):
    """
    Eccezione sollevata quando si tenta di creare una risorsa duplicata.

    Utilizzata per violazioni di vincoli unique (es. numero fattura
    già usato dalla stessa azienda, codice articolo esistente).
    """

    status_code: int = 409
    error_code: str = "DUPLICATE_RESOURCE"

    def __init__(
        self,
        detail: str = "Risorsa già esistente",
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

    Esempi di utilizzo:
        - "La fattura deve contenere almeno una riga"
        - "La quantità della riga 2 deve essere maggiore di zero"
        - "Il motivo dell'annullamento è obbligatorio"
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


# Alias per compatibilità
ValidationError = BusinessValidationError


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


class InvoiceStateError(ConflictError):
    """
    Transizione non consentita dalla macchina a stati della fattura.

    Esempi di utilizzo:
        - "La fattura è già definitiva"
        - "Solo le fatture definitive possono essere annullate"
        - "Una fattura definitiva non può essere eliminata"
    """

    error_code: str = "INVALID_INVOICE_STATE"

    def __init__(
        self,
        detail: str = "Transizione di stato non consentita",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class SequenceConflictError(ConflictError):
    """
    Due finalizzazioni concorrenti hanno tentato di usare lo stesso progressivo.

    Il chiamante deve ripetere l'intera finalizzazione.
    """

    error_code: str = "SEQUENCE_CONFLICT"

    def __init__(
        self,
        detail: str = "Conflitto sul progressivo fattura, riprovare la finalizzazione",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class SigningError(AppException):
    """
    Credenziale di firma configurata ma inutilizzabile.

    Interrompe la finalizzazione: la fattura resta nello stato precedente.
    L'error_code distingue la passphrase errata dal certificato malformato.
    """

    status_code: int = 422
    error_code: str = "SIGNING_ERROR"

    BAD_PASSPHRASE = "SIGNING_BAD_PASSPHRASE"
    MALFORMED_CERTIFICATE = "SIGNING_MALFORMED_CERTIFICATE"

    def __init__(
        self,
        detail: str = "Impossibile firmare con il certificato configurato",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)

    @property
    def is_bad_passphrase(self) -> bool:
        return self.error_code == self.BAD_PASSPHRASE


class ChainIntegrityError(AppException):
    """
    Catena di hash di un'azienda non integra.

    Il validatore della catena restituisce un risultato e non solleva mai
    questa eccezione: viene prodotta solo da ChainResult.raise_for_status().
    """

    status_code: int = 409
    error_code: str = "CHAIN_INTEGRITY_ERROR"

    def __init__(
        self,
        detail: str = "Catena Veri*Factu non integra",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class AuditLogImmutableError(AppException):
    """Tentativo di modificare o eliminare una voce del registro di audit."""

    status_code: int = 500
    error_code: str = "AUDIT_LOG_IMMUTABLE"

    def __init__(
        self,
        detail: str = "Le voci del registro di audit non possono essere modificate",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)
