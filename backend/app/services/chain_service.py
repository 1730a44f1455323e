"""
Service Layer per la verifica della catena Veri*Factu
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)

validate_chain è una funzione pura sulle fatture finalizzate di
un'azienda, ordinate per progressivo. ChainService le carica dal
database (sola lettura) e delega.
"""

import datetime
import logging
import uuid
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ChainIntegrityError, NotFoundError
from app.models import Company, Invoice
from app.models.mixins import as_utc
from app.services.verifactu import GENESIS_HASH

# Logger per questo modulo
logger = logging.getLogger(__name__)


class ChainFailureReason(str, Enum):
    SEQUENCE_BREAK = "sequence_break"
    HASH_MISMATCH = "hash_mismatch"


@dataclass(frozen=True)
class ChainLink:
    """Campi di una fattura finalizzata rilevanti per la catena."""

    id: uuid.UUID
    invoice_number: str
    invoice_sequence: int
    previous_hash: Optional[str]
    current_hash: Optional[str]
    is_cancelled: bool = False
    cancelled_at: Optional[datetime.datetime] = None
    finalized_at: Optional[datetime.datetime] = None

    @classmethod
    def from_invoice(cls, invoice: Invoice) -> "ChainLink":
        return cls(
            id=invoice.id,
            invoice_number=invoice.invoice_number,
            invoice_sequence=invoice.invoice_sequence,
            previous_hash=invoice.previous_hash,
            current_hash=invoice.current_hash,
            is_cancelled=bool(invoice.is_cancelled),
            cancelled_at=invoice.cancelled_at,
            finalized_at=invoice.finalized_at,
        )

    def was_cancelled_by(self, moment: Optional[datetime.datetime]) -> bool:
        """
        True se la fattura risultava già annullata al momento `moment`.

        Senza timestamp (dati storici) vale lo stato attuale.
        """
        if not self.is_cancelled:
            return False
        if self.cancelled_at is None or moment is None:
            return True
        return as_utc(self.cancelled_at) <= as_utc(moment)


@dataclass(frozen=True)
class ChainResult:
    """Esito della verifica: solo la prima fattura non conforme viene riportata."""

    valid: bool
    message: str
    reason: Optional[ChainFailureReason] = None
    invoice_id: Optional[uuid.UUID] = None
    invoice_number: Optional[str] = None
    total_invoices: int = 0
    last_sequence: Optional[int] = None

    def raise_for_status(self) -> "ChainResult":
        """Solleva ChainIntegrityError se la catena non è integra."""
        if not self.valid:
            raise ChainIntegrityError(
                self.message,
                extra={
                    "reason": self.reason.value if self.reason else None,
                    "invoice_id": str(self.invoice_id) if self.invoice_id else None,
                    "invoice_number": self.invoice_number,
                },
            )
        return self

    def as_dict(self) -> dict:
        data = asdict(self)
        data["reason"] = self.reason.value if self.reason else None
        return data


def _expected_previous_hash(
    earlier: Sequence[ChainLink],
    link: ChainLink,
) -> str:
    """
    Hash atteso come previous_hash di `link`.

    È il current_hash dell'ultima fattura precedente con hash che non
    era ancora annullata quando `link` è stata finalizzata; GENESIS se
    non ne esiste nessuna.
    """
    for candidate in reversed(earlier):
        if not candidate.current_hash:
            continue
        if candidate.was_cancelled_by(link.finalized_at):
            continue
        return candidate.current_hash
    return GENESIS_HASH


def validate_chain(links: Sequence[ChainLink]) -> ChainResult:
    """
    Verifica progressivi e concatenazione degli hash.

    1. I progressivi devono essere esattamente 1..N (le annullate
       mantengono il proprio posto).
    2. Ogni fattura non annullata con hash deve puntare all'hash
       della predecessora attesa.

    Non solleva eccezioni: l'esito è sempre un ChainResult.
    """
    total = len(links)
    if total == 0:
        return ChainResult(valid=True, message="Nessuna fattura da verificare")

    last_sequence = links[-1].invoice_sequence

    for index, link in enumerate(links):
        expected_sequence = index + 1
        if link.invoice_sequence != expected_sequence:
            return ChainResult(
                valid=False,
                message=(
                    f"Interruzione di sequenza alla fattura {link.invoice_number}: "
                    f"atteso {expected_sequence}, trovato {link.invoice_sequence}"
                ),
                reason=ChainFailureReason.SEQUENCE_BREAK,
                invoice_id=link.id,
                invoice_number=link.invoice_number,
                total_invoices=total,
                last_sequence=last_sequence,
            )

    for index, link in enumerate(links):
        if link.is_cancelled or not link.current_hash:
            continue
        expected = _expected_previous_hash(links[:index], link)
        if (link.previous_hash or GENESIS_HASH) != expected:
            return ChainResult(
                valid=False,
                message=f"Catena di hash interrotta alla fattura {link.invoice_number}",
                reason=ChainFailureReason.HASH_MISMATCH,
                invoice_id=link.id,
                invoice_number=link.invoice_number,
                total_invoices=total,
                last_sequence=last_sequence,
            )

    return ChainResult(
        valid=True,
        message="Integrità della catena verificata",
        total_invoices=total,
        last_sequence=last_sequence,
    )


class ChainService:
    """Carica la catena di un'azienda e la verifica."""

    async def get_links(self, db: AsyncSession, company_id: uuid.UUID) -> list[ChainLink]:
        stmt = (
            select(Invoice)
            .where(
                Invoice.company_id == company_id,
                Invoice.status.in_(("final", "cancelled")),
                Invoice.invoice_sequence.is_not(None),
            )
            .order_by(Invoice.invoice_sequence.asc())
        )
        result = await db.execute(stmt)
        return [ChainLink.from_invoice(invoice) for invoice in result.scalars().all()]

    async def validate_company_chain(
        self,
        db: AsyncSession,
        company_id: uuid.UUID,
    ) -> ChainResult:
        """
        Verifica la catena dell'azienda.

        Raises:
            NotFoundError: Azienda non trovata
        """
        company = await db.get(Company, company_id)
        if not company:
            raise NotFoundError(f"Azienda {company_id} non trovata")

        links = await self.get_links(db, company_id)
        result = validate_chain(links)

        if result.valid:
            logger.info(
                "Catena azienda %s integra (%s fatture)", company_id, result.total_invoices
            )
        else:
            logger.warning(
                "Catena azienda %s non integra: %s (%s)",
                company_id,
                result.message,
                result.reason.value if result.reason else None,
            )
        return result
