"""
Schemas Pydantic per l'Azienda
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)

La credenziale di firma non viene mai restituita: CompanyRead
espone solo has_signing_certificate.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class CompanyBase(BaseModel):
    """Dati anagrafici dell'azienda."""

    company_name: str = Field(..., min_length=1, max_length=255, description="Ragione sociale")
    tax_id: str = Field(..., min_length=1, max_length=20, description="CIF/NIF")
    address: Optional[str] = None
    phone: Optional[str] = Field(None, max_length=30)
    email: Optional[EmailStr] = None
    bank_iban: Optional[str] = Field(None, max_length=50)

    @field_validator("tax_id")
    @classmethod
    def normalize_tax_id(cls, v: str) -> str:
        v = v.strip().upper().replace(" ", "")
        if not v:
            raise ValueError("Il CIF/NIF è obbligatorio")
        return v

    @field_validator("bank_iban")
    @classmethod
    def normalize_iban(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.replace(" ", "").upper() or None


class CompanyCreate(CompanyBase):
    """Schema per la creazione di un'azienda."""

    verifactu_enabled: bool = False
    verifactu_software_id: Optional[str] = Field(None, max_length=50)
    verifactu_software_name: Optional[str] = Field(None, max_length=100)


class CompanyUpdate(BaseModel):
    """Aggiornamento parziale dei dati anagrafici."""

    company_name: Optional[str] = Field(None, min_length=1, max_length=255)
    tax_id: Optional[str] = Field(None, min_length=1, max_length=20)
    address: Optional[str] = None
    phone: Optional[str] = Field(None, max_length=30)
    email: Optional[EmailStr] = None
    bank_iban: Optional[str] = Field(None, max_length=50)

    @field_validator("tax_id")
    @classmethod
    def normalize_tax_id(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.strip().upper().replace(" ", "")


class CompanyVerifactuUpdate(BaseModel):
    """
    Configurazione Veri*Factu.

    signing_certificate: bundle PKCS#12 in base64; stringa vuota per
    rimuovere il certificato configurato.
    """

    verifactu_enabled: Optional[bool] = None
    verifactu_software_id: Optional[str] = Field(None, max_length=50)
    verifactu_software_name: Optional[str] = Field(None, max_length=100)
    signing_certificate: Optional[str] = None
    signing_certificate_password: Optional[str] = None

    @field_validator("signing_certificate", mode="before")
    @classmethod
    def strip_certificate(cls, v: Any) -> Any:
        if isinstance(v, str):
            return "".join(v.split())
        return v


class CompanyRead(CompanyBase):
    """Schema per la lettura di un'azienda."""

    id: uuid.UUID
    email: Optional[str] = None
    verifactu_enabled: bool
    verifactu_software_id: Optional[str] = None
    verifactu_software_name: Optional[str] = None
    last_invoice_sequence: int
    has_signing_certificate: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
