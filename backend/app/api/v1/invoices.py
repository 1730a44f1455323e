"""
Router FastAPI per la Fatturazione
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)

Definisce gli endpoint API per il ciclo di vita delle fatture:
CRUD di bozze e proforma, finalizzazione, annullamento, verifica,
QR e registro di audit.
"""

import logging
import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import CurrentContext
from app.core.exceptions import NotFoundError
from app.schemas.invoice import (
    AuditLogRead,
    ClientType,
    InvoiceCancel,
    InvoiceCreate,
    InvoiceList,
    InvoiceRead,
    InvoiceStatus,
    InvoiceUpdate,
    InvoiceVerification,
)
from app.services.invoice_service import InvoiceService
from app.services.verifactu import render_qr_png

# Logger per questo modulo
logger = logging.getLogger(__name__)

# Istanza del service
invoice_service = InvoiceService()

# Router con prefix e tag
router = APIRouter(
    prefix="/invoices",
    tags=["Fatturazione"],
)


# -------------------------------------------------------------------
# Endpoints di lettura
# -------------------------------------------------------------------

@router.get(
    "/",
    name="fatture_lista",
    summary="Lista fatture",
    description="Recupera la lista paginata delle fatture con eventuali filtri.",
    response_model=InvoiceList,
    status_code=status.HTTP_200_OK,
)
async def get_invoices(
    company_id: Optional[uuid.UUID] = Query(None, description="Filtro per azienda"),
    from_date: Optional[date] = Query(None, description="Data inizio periodo (YYYY-MM-DD)"),
    to_date: Optional[date] = Query(None, description="Data fine periodo (YYYY-MM-DD)"),
    client_name: Optional[str] = Query(None, description="Ricerca sul nome cliente"),
    invoice_number: Optional[str] = Query(None, description="Ricerca sul numero fattura"),
    client_type: Optional[ClientType] = Query(None, description="Tipo cliente"),
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status", description="Stato fattura"),
    cancelled: Optional[bool] = Query(None, description="True: solo annullate, False: solo attive"),
    verifactu: Optional[bool] = Query(None, description="True: solo con hash Veri*Factu"),
    include_hidden: bool = Query(False, description="Include le fatture eliminate"),
    page: int = Query(1, ge=1, description="Numero pagina"),
    per_page: int = Query(20, ge=1, le=100, description="Elementi per pagina"),
    db: AsyncSession = Depends(get_db),
) -> InvoiceList:
    return await invoice_service.get_all(
        db=db,
        company_id=company_id,
        from_date=from_date,
        to_date=to_date,
        client_name=client_name,
        invoice_number=invoice_number,
        client_type=client_type.value if client_type else None,
        status_filter=status_filter.value if status_filter else None,
        cancelled=cancelled,
        verifactu=verifactu,
        include_hidden=include_hidden,
        page=page,
        per_page=per_page,
    )


@router.get(
    "/{invoice_id}",
    name="fattura_dettaglio",
    summary="Dettaglio fattura",
    description="Recupera i dettagli di una fattura con le righe.",
    response_model=InvoiceRead,
    status_code=status.HTTP_200_OK,
)
async def get_invoice(
    invoice_id: uuid.UUID = Path(..., description="UUID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    return await invoice_service.get_by_id(db=db, invoice_id=invoice_id)


@router.get(
    "/{invoice_id}/verify",
    name="fattura_verifica",
    summary="Verifica integrità fattura",
    description="Ricalcola l'hash con il timestamp registrato e verifica la firma.",
    response_model=InvoiceVerification,
    status_code=status.HTTP_200_OK,
)
async def verify_invoice(
    invoice_id: uuid.UUID = Path(..., description="UUID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> InvoiceVerification:
    return await invoice_service.verify(db=db, invoice_id=invoice_id)


@router.get(
    "/{invoice_id}/qr",
    name="fattura_qr",
    summary="QR Veri*Factu",
    description="Immagine PNG del QR di verifica della fattura.",
    response_class=Response,
    responses={200: {"content": {"image/png": {}}}},
)
async def get_invoice_qr(
    invoice_id: uuid.UUID = Path(..., description="UUID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> Response:
    invoice = await invoice_service.get_by_id(db=db, invoice_id=invoice_id)
    if not invoice.qr_payload:
        raise NotFoundError(f"La fattura {invoice.invoice_number} non ha un QR Veri*Factu")
    return Response(content=render_qr_png(invoice.qr_payload), media_type="image/png")


@router.get(
    "/{invoice_id}/audit",
    name="fattura_audit",
    summary="Registro di audit",
    description="Voci di audit della fattura in ordine cronologico.",
    response_model=list[AuditLogRead],
    status_code=status.HTTP_200_OK,
)
async def get_invoice_audit(
    invoice_id: uuid.UUID = Path(..., description="UUID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> list[AuditLogRead]:
    return await invoice_service.get_audit_log(db=db, invoice_id=invoice_id)


# -------------------------------------------------------------------
# Endpoints di scrittura
# -------------------------------------------------------------------

@router.post(
    "/",
    name="fattura_crea",
    summary="Crea fattura",
    description="Crea una bozza o proforma. I totali sono calcolati dalle righe.",
    response_model=InvoiceRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_invoice(
    data: InvoiceCreate,
    context: CurrentContext,
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    return await invoice_service.create(
        db=db,
        data=data,
        actor=context.actor,
        ip_address=context.ip_address,
    )


@router.put(
    "/{invoice_id}",
    name="fattura_aggiorna",
    summary="Aggiorna fattura",
    description="Sostituisce dati cliente e righe di una bozza o proforma.",
    response_model=InvoiceRead,
    status_code=status.HTTP_200_OK,
)
async def update_invoice(
    data: InvoiceUpdate,
    context: CurrentContext,
    invoice_id: uuid.UUID = Path(..., description="UUID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    return await invoice_service.update(
        db=db,
        invoice_id=invoice_id,
        data=data,
        actor=context.actor,
        ip_address=context.ip_address,
    )


@router.post(
    "/{invoice_id}/finalize",
    name="fattura_finalizza",
    summary="Finalizza fattura",
    description=(
        "Assegna progressivo e numero definitivo; con Veri*Factu attivo "
        "calcola hash concatenato, firma e QR."
    ),
    response_model=InvoiceRead,
    status_code=status.HTTP_200_OK,
)
async def finalize_invoice(
    context: CurrentContext,
    invoice_id: uuid.UUID = Path(..., description="UUID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    return await invoice_service.finalize(
        db=db,
        invoice_id=invoice_id,
        actor=context.actor,
        ip_address=context.ip_address,
    )


@router.post(
    "/{invoice_id}/cancel",
    name="fattura_annulla",
    summary="Annulla fattura",
    description="Annulla una fattura definitiva mantenendo progressivo e hash.",
    response_model=InvoiceRead,
    status_code=status.HTTP_200_OK,
)
async def cancel_invoice(
    data: InvoiceCancel,
    context: CurrentContext,
    invoice_id: uuid.UUID = Path(..., description="UUID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    return await invoice_service.cancel(
        db=db,
        invoice_id=invoice_id,
        reason=data.reason,
        actor=context.actor,
        ip_address=context.ip_address,
    )


@router.delete(
    "/{invoice_id}",
    name="fattura_elimina",
    summary="Elimina fattura",
    description="Nasconde una bozza o proforma. Le fatture definitive non si eliminano.",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_invoice(
    context: CurrentContext,
    invoice_id: uuid.UUID = Path(..., description="UUID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> None:
    await invoice_service.hide(
        db=db,
        invoice_id=invoice_id,
        actor=context.actor,
        ip_address=context.ip_address,
    )
