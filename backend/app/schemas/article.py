"""
Schemas Pydantic per il catalogo articoli
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)
"""

import datetime
import uuid
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ------------------------------------------------------------
# Schemas Article
# ------------------------------------------------------------

class ArticleBase(BaseModel):
    """Campi comuni a create e read."""
    code: Optional[str] = Field(None, max_length=50, description="Codice articolo")
    name: str = Field(..., min_length=1, max_length=255, description="Nome articolo")
    description: Optional[str] = Field(None, description="Descrizione")
    unit_price: Decimal = Field(..., ge=0, description="Prezzo unitario (imponibile)")
    vat_rate: Decimal = Field(Decimal("21.00"), ge=0, le=100, description="Aliquota IVA")
    category: Optional[str] = Field(None, max_length=100)

    @field_validator("code", mode="before")
    @classmethod
    def normalize_code(cls, v):
        """Codice in maiuscolo, stringa vuota = nessun codice."""
        if isinstance(v, str):
            v = v.strip().upper()
            return v or None
        return v

    @field_validator("unit_price", "vat_rate", mode="before")
    @classmethod
    def convert_decimal_from_string(cls, v):
        """Gestisce input con virgola convertendolo in punto."""
        if isinstance(v, str):
            v = v.replace(",", ".")
        return v


class ArticleCreate(ArticleBase):
    pass


class ArticleUpdate(BaseModel):
    code: Optional[str] = Field(None, max_length=50)
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    unit_price: Optional[Decimal] = Field(None, ge=0)
    vat_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    category: Optional[str] = Field(None, max_length=100)

    @field_validator("code", mode="before")
    @classmethod
    def normalize_code(cls, v):
        if isinstance(v, str):
            v = v.strip().upper()
            return v or None
        return v


class ArticleRead(ArticleBase):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    is_active: bool
    created_at: datetime.datetime
    updated_at: datetime.datetime
