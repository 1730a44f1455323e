"""
Lock per azienda - Sezione critica della finalizzazione
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)

Due livelli:
- asyncio.Lock per azienda nel processo corrente
- advisory lock PostgreSQL legato alla transazione (più processi)

Il vincolo unique (company_id, invoice_sequence) resta l'ultima difesa.
"""

import asyncio
import logging
import uuid

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

# Logger per questo modulo
logger = logging.getLogger(__name__)


class CompanyLockRegistry:
    """
    Registro di asyncio.Lock, uno per azienda.

    I lock vengono creati alla prima richiesta e mai rimossi:
    il numero di aziende è piccolo.
    """

    def __init__(self) -> None:
        self._locks: dict[uuid.UUID, asyncio.Lock] = {}

    def get(self, company_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(company_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[company_id] = lock
        return lock

    def is_locked(self, company_id: uuid.UUID) -> bool:
        lock = self._locks.get(company_id)
        return lock is not None and lock.locked()

    def clear(self) -> None:
        """Svuota il registro (usato nei test tra un event loop e l'altro)."""
        self._locks.clear()


# Registro condiviso dal processo
company_locks = CompanyLockRegistry()


def advisory_lock_key(company_id: uuid.UUID) -> int:
    """Chiave bigint con segno derivata dai primi 8 byte dell'UUID."""
    return int.from_bytes(company_id.bytes[:8], "big", signed=True)


async def acquire_company_advisory_lock(db: AsyncSession, company_id: uuid.UUID) -> bool:
    """
    Acquisisce pg_advisory_xact_lock per l'azienda.

    Il lock viene rilasciato automaticamente a commit/rollback.
    Su dialetti diversi da PostgreSQL non fa nulla.

    Returns:
        bool: True se il lock è stato acquisito
    """
    dialect = db.get_bind().dialect.name
    if dialect != "postgresql":
        return False

    await db.execute(
        text("SELECT pg_advisory_xact_lock(:lock_key)"),
        {"lock_key": advisory_lock_key(company_id)},
    )
    logger.debug("Advisory lock acquisito per azienda %s", company_id)
    return True
