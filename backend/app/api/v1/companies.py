"""
Router FastAPI per le Aziende
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)

Anagrafica, configurazione Veri*Factu e stato della catena di hash.
"""

import uuid

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.schemas.company import (
    CompanyCreate,
    CompanyRead,
    CompanyUpdate,
    CompanyVerifactuUpdate,
)
from app.schemas.invoice import ChainStatusRead
from app.services.company_service import CompanyService

# Istanza del service
company_service = CompanyService()

router = APIRouter(
    prefix="/companies",
    tags=["Aziende"],
)


@router.get(
    "/",
    name="aziende_lista",
    summary="Lista aziende",
    response_model=list[CompanyRead],
    status_code=status.HTTP_200_OK,
)
async def get_companies(db: AsyncSession = Depends(get_db)) -> list[CompanyRead]:
    return await company_service.get_all(db)


@router.post(
    "/",
    name="azienda_crea",
    summary="Crea azienda",
    response_model=CompanyRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_company(
    data: CompanyCreate,
    db: AsyncSession = Depends(get_db),
) -> CompanyRead:
    return await company_service.create(db, data)


@router.get(
    "/{company_id}",
    name="azienda_dettaglio",
    summary="Dettaglio azienda",
    response_model=CompanyRead,
    status_code=status.HTTP_200_OK,
)
async def get_company(
    company_id: uuid.UUID = Path(..., description="UUID dell'azienda"),
    db: AsyncSession = Depends(get_db),
) -> CompanyRead:
    return await company_service.get_by_id(db, company_id)


@router.put(
    "/{company_id}",
    name="azienda_aggiorna",
    summary="Aggiorna dati azienda",
    response_model=CompanyRead,
    status_code=status.HTTP_200_OK,
)
async def update_company(
    data: CompanyUpdate,
    company_id: uuid.UUID = Path(..., description="UUID dell'azienda"),
    db: AsyncSession = Depends(get_db),
) -> CompanyRead:
    return await company_service.update(db, company_id, data)


@router.put(
    "/{company_id}/verifactu",
    name="azienda_verifactu",
    summary="Configurazione Veri*Factu",
    description=(
        "Attiva/disattiva Veri*Factu e configura il certificato di firma. "
        "Il certificato viene verificato al salvataggio."
    ),
    response_model=CompanyRead,
    status_code=status.HTTP_200_OK,
)
async def update_company_verifactu(
    data: CompanyVerifactuUpdate,
    company_id: uuid.UUID = Path(..., description="UUID dell'azienda"),
    db: AsyncSession = Depends(get_db),
) -> CompanyRead:
    return await company_service.update_verifactu_settings(db, company_id, data)


@router.get(
    "/{company_id}/chain-status",
    name="azienda_stato_catena",
    summary="Stato catena Veri*Factu",
    description="Verifica progressivi e concatenazione degli hash delle fatture definitive.",
    response_model=ChainStatusRead,
    status_code=status.HTTP_200_OK,
)
async def get_chain_status(
    company_id: uuid.UUID = Path(..., description="UUID dell'azienda"),
    db: AsyncSession = Depends(get_db),
) -> ChainStatusRead:
    result = await company_service.get_chain_status(db, company_id)
    return ChainStatusRead(**result.as_dict())
