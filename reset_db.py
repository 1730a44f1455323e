import asyncio
import logging
import os
import sys

# Aggiungi backend/ alla PYTHONPATH per importare app.*
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "backend"))

from app.core.config import settings  # noqa: E402
from app.core.database import engine  # noqa: E402
from app.models import Base  # noqa: E402

logger = logging.getLogger("reset_db")


async def reset() -> None:
    """
    Elimina e ricrea lo schema.

    Cancella anche il registro di audit e le catene Veri*Factu:
    rifiutato in produzione.
    """
    if settings.is_production:
        raise SystemExit("reset_db non è consentito in produzione")

    logger.info("Connessione al database, eliminazione tabelle...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        logger.info("Tabelle eliminate. Creazione nuove tabelle...")
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
    logger.info("Database resettato con successo!")


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level, format="%(asctime)s - %(levelname)s - %(message)s")
    asyncio.run(reset())
