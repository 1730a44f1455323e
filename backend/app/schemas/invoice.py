"""
Schemas Pydantic per la Fatturazione
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)

Contiene:
- Enums: InvoiceStatus, ClientType, AuditAction
- Schemas per InvoiceLine
- Schemas per Invoice (create, update, cancel, read, list)
- Schemas per verifica, audit e stato della catena

I totali non fanno parte degli schemi di input: vengono sempre
ricalcolati dal service a partire dalle righe.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


# -------------------------------------------------------------------
# Enum
# -------------------------------------------------------------------

class InvoiceStatus(str, Enum):
    """Stati della fattura."""
    DRAFT = "draft"
    PROFORMA = "proforma"
    FINAL = "final"
    CANCELLED = "cancelled"


class ClientType(str, Enum):
    """Tipo di cliente intestatario."""
    EMPRESA = "empresa"
    AUTONOMO = "autonomo"
    PARTICULAR = "particular"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    FINALIZE = "FINALIZE"
    CANCEL = "CANCEL"
    HIDE = "HIDE"


# -------------------------------------------------------------------
# Schemas per InvoiceLine
# -------------------------------------------------------------------

class InvoiceLineCreate(BaseModel):
    """
    Riga fattura in input.

    Le regole di business (quantità e prezzo > 0, IVA 0-100, descrizione
    obbligatoria) sono verificate dal service, che indica la riga errata.
    """

    article_id: Optional[uuid.UUID] = Field(
        None,
        description="Articolo di catalogo (descrizione/prezzo/IVA usati se mancanti)",
    )
    description: str = Field(
        "",
        max_length=500,
        description="Descrizione della riga",
    )
    quantity: Decimal = Field(
        Decimal("1"),
        description="Quantità",
    )
    unit_price: Optional[Decimal] = Field(
        None,
        description="Prezzo unitario (imponibile)",
    )
    vat_rate: Optional[Decimal] = Field(
        None,
        description="Aliquota IVA (default: articolo o aliquota predefinita)",
    )


class InvoiceLineRead(BaseModel):
    """Riga fattura con importi calcolati."""

    id: uuid.UUID
    article_id: Optional[uuid.UUID] = None
    description: str
    quantity: Decimal
    unit_price: Decimal
    vat_rate: Decimal
    sort_order: int
    line_total: Decimal
    line_vat: Decimal
    line_total_with_vat: Decimal

    model_config = ConfigDict(from_attributes=True)


# -------------------------------------------------------------------
# Schemas per Invoice
# -------------------------------------------------------------------

class InvoiceWrite(BaseModel):
    """Campi comuni a creazione e aggiornamento."""

    invoice_number: Optional[str] = Field(
        None,
        max_length=50,
        description="Numero provvisorio (generato se assente)",
    )
    invoice_date: date = Field(
        default_factory=date.today,
        description="Data emissione fattura",
    )
    client_name: str = Field("", max_length=255, description="Nome o ragione sociale del cliente")
    client_tax_id: str = Field("", max_length=20, description="CIF/NIF del cliente")
    client_address: Optional[str] = Field(None, description="Indirizzo del cliente")
    client_type: ClientType = Field(ClientType.EMPRESA, description="Tipo cliente")
    notes: Optional[str] = None
    status: InvoiceStatus = Field(
        InvoiceStatus.DRAFT,
        description="Solo draft o proforma: final si ottiene con la finalizzazione",
    )
    lines: list[InvoiceLineCreate] = Field(
        default_factory=list,
        description="Righe della fattura (almeno una)",
    )

    @field_validator("client_name", "client_tax_id", mode="before")
    @classmethod
    def strip_strings(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("client_tax_id")
    @classmethod
    def normalize_tax_id(cls, v: str) -> str:
        return v.upper().replace(" ", "")

    @field_validator("invoice_number", mode="before")
    @classmethod
    def empty_number_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v


class InvoiceCreate(InvoiceWrite):
    """Schema per la creazione di una fattura (bozza o proforma)."""

    company_id: uuid.UUID = Field(..., description="Azienda emittente")


class InvoiceUpdate(InvoiceWrite):
    """
    Schema per l'aggiornamento di una fattura.

    Sostituzione completa: righe e dati cliente vengono riscritti.
    """
    pass


class InvoiceCancel(BaseModel):
    """Richiesta di annullamento di una fattura definitiva."""

    reason: str = Field("", max_length=1000, description="Motivo dell'annullamento")


class InvoiceRead(BaseModel):
    """Schema per la lettura di una fattura."""

    id: uuid.UUID
    company_id: uuid.UUID
    invoice_number: str
    invoice_date: date
    client_name: str
    client_tax_id: str
    client_address: Optional[str] = None
    client_type: ClientType
    notes: Optional[str] = None

    subtotal: Decimal
    total_vat: Decimal
    total: Decimal

    status: InvoiceStatus
    finalized_at: Optional[datetime] = None
    is_cancelled: bool
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    is_deleted: bool

    # Veri*Factu
    invoice_sequence: Optional[int] = None
    previous_hash: Optional[str] = None
    current_hash: Optional[str] = None
    hash_timestamp: Optional[str] = None
    qr_payload: Optional[str] = None
    signature: Optional[str] = None
    signature_type: Optional[str] = None
    signing_software_id: Optional[str] = None
    signature_is_attestation: bool = False

    created_at: datetime
    updated_at: datetime

    lines: list[InvoiceLineRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class InvoiceList(BaseModel):
    """Schema per la lista paginata delle fatture."""

    items: list[InvoiceRead] = Field(default_factory=list)
    total: int = Field(..., description="Numero totale di fatture")
    page: int = Field(..., description="Pagina corrente")
    per_page: int = Field(..., description="Elementi per pagina")
    total_pages: int = Field(..., description="Numero totale di pagine")


# -------------------------------------------------------------------
# Verifica, audit, catena
# -------------------------------------------------------------------

class InvoiceVerification(BaseModel):
    """Esito del ricalcolo di hash e firma di una fattura."""

    verified: bool
    recalculated_hash: Optional[str] = None
    stored_hash: Optional[str] = None
    invoice_number: str
    sequence: Optional[int] = None
    signature_type: Optional[str] = None
    signature_valid: Optional[bool] = None
    message: str


class AuditLogRead(BaseModel):
    id: uuid.UUID
    invoice_id: uuid.UUID
    action: AuditAction
    actor: str
    previous_state: Optional[dict[str, Any]] = None
    new_state: Optional[dict[str, Any]] = None
    ip_address: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChainStatusRead(BaseModel):
    """Esito della verifica della catena di un'azienda."""

    valid: bool
    message: str
    reason: Optional[str] = None
    invoice_id: Optional[uuid.UUID] = None
    invoice_number: Optional[str] = None
    total_invoices: int = 0
    last_sequence: Optional[int] = None
