"""
Modelli SQLAlchemy per la Fatturazione
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)

Contiene:
- Invoice: Fattura (bozza, proforma, definitiva, annullata)
- InvoiceLine: Righe della fattura con importi calcolati lato server
"""

from __future__ import annotations

import datetime
import uuid
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models import Base
from app.models.mixins import TimestampMixin, UUIDMixin

# Import per type hinting relazioni (evita circular import)
if TYPE_CHECKING:
    from app.models.company import Company


class Invoice(Base, UUIDMixin, TimestampMixin):
    """
    Modello per le fatture.

    Una fattura nasce come bozza o proforma, modificabile liberamente.
    La finalizzazione assegna il progressivo e, se Veri*Factu è attivo,
    l'hash concatenato, la firma e il QR: da quel momento è immutabile.
    L'annullamento mantiene progressivo e hash.

    Attributes:
        id: UUID primary key, generato automaticamente
        company_id: UUID dell'azienda emittente
        invoice_number: Numero fattura (provvisorio finché bozza)
        invoice_date: Data emissione
        client_name / client_tax_id / client_address / client_type:
            copia dei dati del cliente al momento dell'emissione
        subtotal, total_vat, total: totali ricalcolati dalle righe
        status: draft | proforma | final | cancelled
        invoice_sequence: progressivo per azienda (solo fatture finalizzate)
        previous_hash, current_hash, hash_timestamp: anello della catena
        qr_payload: URL di verifica
        signature, signature_type: firma e suo tipo (certificate | placeholder)
        signing_certificate, signing_software_id: firmatario usato per la verifica
        finalized_at, is_cancelled, cancelled_at, cancellation_reason
        is_deleted, deleted_at: occultamento (soft delete)

    Relationships:
        company: Azienda emittente
        lines: Righe della fattura
    """

    __tablename__ = "invoices"

    # ------------------------------------------------------------
    # Colonne Relazioni
    # ------------------------------------------------------------
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("companies.id", ondelete="RESTRICT"),
        nullable=False,
        doc="UUID dell'azienda emittente",
    )

    # ------------------------------------------------------------
    # Colonne Identificazione
    # ------------------------------------------------------------
    invoice_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        doc="Numero fattura (VF2025-001, F2025-001 o provvisorio DRAFT-xxxxxxxx)",
    )

    invoice_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        doc="Data emissione fattura",
    )

    # ------------------------------------------------------------
    # Colonne Cliente (snapshot)
    # ------------------------------------------------------------
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    client_tax_id: Mapped[str] = mapped_column(String(20), nullable=False)
    client_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    client_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="empresa",
        doc="Tipo cliente: empresa, autonomo, particular",
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # ------------------------------------------------------------
    # Colonne Importi
    # ------------------------------------------------------------
    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
        doc="Totale imponibile",
    )

    total_vat: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
        doc="Totale IVA",
    )

    total: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
        doc="Totale fattura (imponibile + IVA)",
    )

    # ------------------------------------------------------------
    # Colonne Stato
    # ------------------------------------------------------------
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="draft",
        doc="Stato: draft, proforma, final, cancelled",
    )

    finalized_at: Mapped[Optional[datetime.datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    is_cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancelled_at: Mapped[Optional[datetime.datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    is_deleted: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        doc="Fattura nascosta dagli elenchi (mai per fatture definitive)",
    )
    deleted_at: Mapped[Optional[datetime.datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ------------------------------------------------------------
    # Colonne Veri*Factu
    # ------------------------------------------------------------
    invoice_sequence: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        doc="Progressivo per azienda, assegnato alla finalizzazione",
    )

    previous_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    current_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    hash_timestamp: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
        doc="Timestamp ISO-8601 esatto incluso nell'hash (per il ricalcolo)",
    )

    qr_payload: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    signature: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    signature_type: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        doc="certificate (attestazione) o placeholder (digest senza chiave)",
    )
    signing_certificate: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Certificato PEM del firmatario al momento della finalizzazione",
    )
    signing_software_id: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        doc="Identificativo software incluso nella firma",
    )

    # ------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------
    company: Mapped["Company"] = relationship(
        "Company",
        lazy="selectin",
        doc="Azienda emittente",
    )

    lines: Mapped[List["InvoiceLine"]] = relationship(
        "InvoiceLine",
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InvoiceLine.sort_order",
        doc="Righe della fattura",
    )

    # ------------------------------------------------------------
    # Properties Calcolate
    # ------------------------------------------------------------
    @property
    def is_final(self) -> bool:
        return self.status == "final"

    @property
    def is_editable(self) -> bool:
        """True finché la fattura è bozza o proforma e non nascosta."""
        return self.status in ("draft", "proforma") and not self.is_deleted

    @property
    def signature_is_attestation(self) -> bool:
        """Solo una firma con certificato attesta l'origine della fattura."""
        return self.signature_type == "certificate"

    # ------------------------------------------------------------
    # Indici e Vincoli
    # ------------------------------------------------------------
    __table_args__ = (
        UniqueConstraint(
            "company_id", "invoice_sequence", name="uq_invoices_company_sequence"
        ),
        UniqueConstraint(
            "company_id", "invoice_number", name="uq_invoices_company_number"
        ),
        Index("ix_invoices_company_id", "company_id"),
        Index("ix_invoices_invoice_date", "invoice_date"),
        Index("ix_invoices_company_status", "company_id", "status"),
        CheckConstraint(
            "status IN ('draft', 'proforma', 'final', 'cancelled')",
            name="ck_invoices_status",
        ),
        CheckConstraint(
            "client_type IN ('empresa', 'autonomo', 'particular')",
            name="ck_invoices_client_type",
        ),
        CheckConstraint("subtotal >= 0", name="ck_invoices_subtotal_positive"),
        CheckConstraint("total_vat >= 0", name="ck_invoices_total_vat_positive"),
        CheckConstraint("total >= 0", name="ck_invoices_total_positive"),
    )

    def __repr__(self) -> str:
        return (
            f"<Invoice(id={self.id}, number={self.invoice_number}, "
            f"status={self.status}, seq={self.invoice_sequence})>"
        )


class InvoiceLine(Base, UUIDMixin, TimestampMixin):
    """
    Modello per le righe della fattura.

    Gli importi (line_total, line_vat, line_total_with_vat) sono calcolati
    dal servizio fatture a ogni scrittura e salvati: i totali inviati
    dal client non vengono mai accettati.
    """

    __tablename__ = "invoice_lines"

    # ------------------------------------------------------------
    # Colonne Relazione
    # ------------------------------------------------------------
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        doc="UUID della fattura padre",
    )

    article_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("articles.id", ondelete="SET NULL"),
        nullable=True,
        doc="Articolo di catalogo di provenienza (solo riferimento)",
    )

    # ------------------------------------------------------------
    # Colonne Dati
    # ------------------------------------------------------------
    description: Mapped[str] = mapped_column(String(500), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(
        Numeric(12, 3),
        nullable=False,
        default=Decimal("1"),
    )

    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    vat_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        doc="Aliquota IVA della riga",
    )

    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # ------------------------------------------------------------
    # Colonne Importi Calcolati
    # ------------------------------------------------------------
    line_total: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        doc="quantity * unit_price",
    )

    line_vat: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        doc="line_total * vat_rate / 100",
    )

    line_total_with_vat: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        doc="line_total + line_vat",
    )

    # ------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------
    invoice: Mapped["Invoice"] = relationship(
        "Invoice",
        back_populates="lines",
        doc="Fattura padre",
    )

    __table_args__ = (
        Index("ix_invoice_lines_invoice_order", "invoice_id", "sort_order"),
        CheckConstraint("quantity > 0", name="ck_invoice_lines_quantity_positive"),
        CheckConstraint("unit_price > 0", name="ck_invoice_lines_unit_price_positive"),
        CheckConstraint(
            "vat_rate >= 0 AND vat_rate <= 100",
            name="ck_invoice_lines_vat_rate_range",
        ),
    )

    def __repr__(self) -> str:
        return f"<InvoiceLine(id={self.id}, description={self.description[:30]})>"
