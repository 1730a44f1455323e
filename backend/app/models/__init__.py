"""
Modelli Database SQLAlchemy
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)

Import centralizzato di tutti i modelli per la creazione dello schema
e usage generico.

Modelli:
- Company: Azienda emittente e contatore progressivi
- Article: Catalogo articoli/servizi
- Invoice: Fatture
- InvoiceLine: Righe fattura
- InvoiceAuditLog: Registro di audit append-only
"""

# SQLAlchemy 2.0 Base declarativa
# Importato qui per essere disponibile per tutti i modelli
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class per tutti i modelli SQLAlchemy."""
    pass


from app.models.company import Company  # noqa: E402
from app.models.article import Article  # noqa: E402
from app.models.invoice import Invoice, InvoiceLine  # noqa: E402
from app.models.audit import InvoiceAuditLog  # noqa: E402

__all__ = [
    "Base",
    "Company",
    "Article",
    "Invoice",
    "InvoiceLine",
    "InvoiceAuditLog",
]
