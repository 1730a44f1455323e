"""
Schemas Pydantic per il progetto Fatturazione Veri*Factu

Questo modulo contiene tutti gli schemi Pydantic utilizzati per la validazione
e serializzazione delle richieste e risposte API.
"""

# Import degli schemi per renderli disponibili tramite import diretto
# es: from app.schemas import InvoiceRead, CompanyRead, etc.

from app.schemas.company import (
    CompanyCreate,
    CompanyRead,
    CompanyUpdate,
    CompanyVerifactuUpdate,
)
from app.schemas.article import ArticleCreate, ArticleRead, ArticleUpdate
from app.schemas.invoice import (
    AuditAction,
    AuditLogRead,
    ChainStatusRead,
    ClientType,
    InvoiceCancel,
    InvoiceCreate,
    InvoiceLineCreate,
    InvoiceLineRead,
    InvoiceList,
    InvoiceRead,
    InvoiceStatus,
    InvoiceUpdate,
    InvoiceVerification,
)

__all__ = [
    # Company
    "CompanyCreate",
    "CompanyRead",
    "CompanyUpdate",
    "CompanyVerifactuUpdate",
    # Article
    "ArticleCreate",
    "ArticleRead",
    "ArticleUpdate",
    # Invoice
    "AuditAction",
    "AuditLogRead",
    "ChainStatusRead",
    "ClientType",
    "InvoiceCancel",
    "InvoiceCreate",
    "InvoiceLineCreate",
    "InvoiceLineRead",
    "InvoiceList",
    "InvoiceRead",
    "InvoiceStatus",
    "InvoiceUpdate",
    "InvoiceVerification",
]
