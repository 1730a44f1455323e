"""
Service Layer per le Aziende
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)

Anagrafica azienda e configurazione Veri*Factu. Il contatore dei
progressivi non viene mai toccato qui: appartiene al SequenceAllocator.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, DuplicateError, NotFoundError
from app.models import Company
from app.schemas.company import CompanyCreate, CompanyUpdate, CompanyVerifactuUpdate
from app.services.chain_service import ChainResult, ChainService
from app.services.verifactu import SigningCredential, load_signing_credential

logger = logging.getLogger(__name__)


class CompanyService:
    """
    Service per la gestione delle aziende emittenti.

    Fornisce metodi asincroni per interagire con il database
    in modo centralizzato, senza dipendenze da FastAPI.
    """

    def __init__(self, chain_service: Optional[ChainService] = None) -> None:
        self.chain_service = chain_service or ChainService()

    async def _check_tax_id_exists(
        self,
        db: AsyncSession,
        tax_id: str,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> Optional[Company]:
        stmt = select(Company).where(Company.tax_id == tax_id)
        if exclude_id:
            stmt = stmt.where(Company.id != exclude_id)
        result = await db.execute(stmt.limit(1))
        return result.scalar_one_or_none()

    async def get_all(self, db: AsyncSession) -> list[Company]:
        result = await db.execute(select(Company).order_by(Company.company_name))
        return list(result.scalars().all())

    async def get_by_id(self, db: AsyncSession, company_id: uuid.UUID) -> Company:
        """
        Raises:
            NotFoundError: Azienda non trovata
        """
        company = await db.get(Company, company_id)
        if not company:
            logger.warning("Azienda non trovata: %s", company_id)
            raise NotFoundError(f"Azienda {company_id} non trovata")
        return company

    async def create(self, db: AsyncSession, company_data: CompanyCreate) -> Company:
        """
        Crea una nuova azienda con contatore progressivi a zero.

        Raises:
            DuplicateError: CIF/NIF già registrato
            ConflictError: Errore imprevisto del database
        """
        existing = await self._check_tax_id_exists(db, company_data.tax_id)
        if existing:
            logger.warning(
                "Tentativo di creare azienda con CIF duplicato: %s (esistente: %s)",
                company_data.tax_id, existing.id,
            )
            raise DuplicateError(f"CIF/NIF '{company_data.tax_id}' già registrato")

        company = Company(**company_data.model_dump(), last_invoice_sequence=0)

        try:
            db.add(company)
            await db.commit()
            await db.refresh(company)
        except IntegrityError as e:
            logger.error("Errore IntegrityError creazione azienda: %s - %s", e.__class__.__name__, e.orig)
            await db.rollback()
            raise ConflictError("Errore durante la creazione dell'azienda")

        logger.info("Creata azienda: %s - %s (%s)", company.id, company.company_name, company.tax_id)
        return company

    async def update(
        self,
        db: AsyncSession,
        company_id: uuid.UUID,
        company_data: CompanyUpdate,
    ) -> Company:
        """Aggiornamento parziale dei dati anagrafici."""
        company = await self.get_by_id(db, company_id)
        update_data = company_data.model_dump(exclude_unset=True)

        if update_data.get("tax_id") and update_data["tax_id"] != company.tax_id:
            if await self._check_tax_id_exists(db, update_data["tax_id"], exclude_id=company_id):
                raise DuplicateError(f"CIF/NIF '{update_data['tax_id']}' già registrato")

        for field, value in update_data.items():
            setattr(company, field, value)

        try:
            await db.commit()
            await db.refresh(company)
        except SQLAlchemyError as e:
            logger.error("Errore SQLAlchemy aggiornamento azienda: %s - %s", e.__class__.__name__, e)
            await db.rollback()
            raise ConflictError("Errore del database durante l'aggiornamento dell'azienda")

        logger.info("Aggiornata azienda: %s (campi: %s)", company_id, ", ".join(update_data))
        return company

    async def update_verifactu_settings(
        self,
        db: AsyncSession,
        company_id: uuid.UUID,
        settings_data: CompanyVerifactuUpdate,
    ) -> Company:
        """
        Aggiorna la configurazione Veri*Factu.

        Un nuovo certificato viene aperto subito con la passphrase
        indicata: un bundle inutilizzabile è rifiutato al salvataggio
        invece che alla prima finalizzazione.

        Raises:
            NotFoundError: Azienda non trovata
            SigningError: Certificato malformato o passphrase errata
        """
        company = await self.get_by_id(db, company_id)
        update_data = settings_data.model_dump(exclude_unset=True)

        certificate = update_data.pop("signing_certificate", None)
        password = update_data.pop("signing_certificate_password", None)

        if "signing_certificate" in settings_data.model_fields_set:
            if certificate:
                load_signing_credential(SigningCredential(certificate, password or None))
                company.signing_certificate = certificate
                company.signing_certificate_password = password or None
                logger.info("Certificato di firma aggiornato per azienda %s", company_id)
            else:
                company.signing_certificate = None
                company.signing_certificate_password = None
                logger.info("Certificato di firma rimosso per azienda %s", company_id)
        elif "signing_certificate_password" in settings_data.model_fields_set and company.signing_certificate:
            load_signing_credential(SigningCredential(company.signing_certificate, password or None))
            company.signing_certificate_password = password or None

        for field, value in update_data.items():
            setattr(company, field, value)

        await db.commit()
        await db.refresh(company)

        logger.info(
            "Configurazione Veri*Factu aggiornata per azienda %s (attivo: %s)",
            company_id,
            company.verifactu_enabled,
        )
        return company

    async def get_chain_status(self, db: AsyncSession, company_id: uuid.UUID) -> ChainResult:
        return await self.chain_service.validate_company_chain(db, company_id)
