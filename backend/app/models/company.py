"""
Modello SQLAlchemy per l'entità Company
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)

Rappresenta l'azienda emittente: anagrafica, configurazione Veri*Factu
e contatore dei progressivi fattura.
"""


from __future__ import annotations
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base
from app.models.mixins import TimestampMixin, UUIDMixin


class Company(Base, UUIDMixin, TimestampMixin):
    """
    Modello per l'azienda emittente.

    Attributes:
        id: UUID primary key, generato automaticamente
        company_name: Ragione sociale
        tax_id: CIF/NIF dell'azienda
        address: Indirizzo fiscale
        phone: Telefono
        email: Email
        bank_iban: IBAN per i pagamenti
        verifactu_enabled: Attiva hash, firma e QR alla finalizzazione
        verifactu_software_id: Identificativo software (default da configurazione)
        verifactu_software_name: Nome del software di fatturazione
        last_invoice_sequence: Ultimo progressivo assegnato (gestito solo dal SequenceAllocator)
        signing_certificate: Bundle PKCS#12 codificato base64
        signing_certificate_password: Passphrase del bundle
    """

    __tablename__ = "companies"

    # ------------------------------------------------------------
    # Colonne Dati Anagrafici
    # ------------------------------------------------------------
    company_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        doc="Ragione sociale",
    )

    tax_id: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        doc="CIF/NIF dell'azienda",
    )

    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    bank_iban: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # ------------------------------------------------------------
    # Colonne Veri*Factu
    # ------------------------------------------------------------
    verifactu_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        doc="Se True la finalizzazione calcola hash, firma e QR",
    )

    verifactu_software_id: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        doc="Identificativo software usato nella firma placeholder",
    )

    verifactu_software_name: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )

    last_invoice_sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Ultimo progressivo fattura consumato",
    )

    # ------------------------------------------------------------
    # Credenziale di firma
    # ------------------------------------------------------------
    signing_certificate: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Bundle PKCS#12 (certificato + chiave privata) in base64",
    )

    signing_certificate_password: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        doc="Passphrase del bundle PKCS#12",
    )

    __table_args__ = (
        CheckConstraint(
            "last_invoice_sequence >= 0",
            name="ck_companies_last_sequence_positive",
        ),
    )

    # ------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------
    @property
    def has_signing_certificate(self) -> bool:
        """True se è configurato un certificato di firma."""
        return bool(self.signing_certificate)

    def __repr__(self) -> str:
        return f"<Company(id={self.id}, name={self.company_name}, tax_id={self.tax_id})>"
