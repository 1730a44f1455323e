"""
Service Layer per i progressivi fattura
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)

Unico punto che legge e scrive Company.last_invoice_sequence.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError, SequenceConflictError
from app.core.locks import CompanyLockRegistry, acquire_company_advisory_lock, company_locks
from app.models import Company

# Logger per questo modulo
logger = logging.getLogger(__name__)


class SequenceAllocator:
    """
    Allocatore dei progressivi per azienda.

    Uso previsto (dentro InvoiceService.finalize):

        async with allocator.reserve(db, company_id):
            seq = await allocator.next_sequence(db, company_id)
            ...
            await allocator.commit_sequence(db, company_id, seq)
            await db.commit()
    """

    def __init__(self, locks: CompanyLockRegistry = company_locks) -> None:
        self.locks = locks

    async def get_company(
        self,
        db: AsyncSession,
        company_id: uuid.UUID,
        for_update: bool = False,
    ) -> Company:
        """
        Recupera l'azienda, opzionalmente con SELECT ... FOR UPDATE.

        Raises:
            NotFoundError: Azienda non trovata
        """
        stmt = select(Company).where(Company.id == company_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(stmt)
        company = result.scalar_one_or_none()

        if not company:
            raise NotFoundError(f"Azienda {company_id} non trovata")

        return company

    @asynccontextmanager
    async def reserve(self, db: AsyncSession, company_id: uuid.UUID) -> AsyncIterator[None]:
        """
        Sezione critica per azienda.

        Tiene il lock di processo per tutto il blocco e, su PostgreSQL,
        l'advisory lock di transazione (rilasciato a commit/rollback).
        """
        lock = self.locks.get(company_id)
        async with lock:
            await acquire_company_advisory_lock(db, company_id)
            yield

    async def next_sequence(self, db: AsyncSession, company_id: uuid.UUID) -> int:
        """
        Prossimo progressivo (last + 1). Non scrive nulla.

        Raises:
            NotFoundError: Azienda non trovata
        """
        company = await self.get_company(db, company_id, for_update=True)
        return (company.last_invoice_sequence or 0) + 1

    async def commit_sequence(
        self,
        db: AsyncSession,
        company_id: uuid.UUID,
        sequence: int,
    ) -> None:
        """
        Registra `sequence` come ultimo progressivo usato.

        L'UPDATE è condizionato a last_invoice_sequence == sequence - 1:
        se un'altra transazione ha già avanzato il contatore nessuna riga
        viene aggiornata.

        Raises:
            SequenceConflictError: Il contatore non vale sequence - 1
        """
        stmt = (
            update(Company)
            .where(
                Company.id == company_id,
                Company.last_invoice_sequence == sequence - 1,
            )
            .values(last_invoice_sequence=sequence)
            .execution_options(synchronize_session="evaluate")
        )
        result = await db.execute(stmt)

        if result.rowcount != 1:
            logger.warning(
                "Progressivo %s rifiutato per azienda %s: contatore già avanzato",
                sequence,
                company_id,
            )
            raise SequenceConflictError(
                f"Il progressivo {sequence} non è più il successivo per l'azienda",
                extra={"company_id": str(company_id), "sequence": sequence},
            )

        logger.debug("Progressivo %s registrato per azienda %s", sequence, company_id)


# Istanza condivisa
sequence_allocator = SequenceAllocator()
