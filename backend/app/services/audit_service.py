"""
Service Layer per il registro di audit
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)
"""

import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BusinessValidationError
from app.models import Invoice, InvoiceAuditLog
from app.models.audit import AUDIT_ACTIONS

# Logger per questo modulo
logger = logging.getLogger(__name__)


def _json_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


def invoice_state(invoice: Invoice) -> dict[str, Any]:
    """Istantanea JSON della fattura per previous_state/new_state."""
    state = {
        "invoice_number": invoice.invoice_number,
        "invoice_date": invoice.invoice_date,
        "status": invoice.status,
        "client_name": invoice.client_name,
        "client_tax_id": invoice.client_tax_id,
        "client_type": invoice.client_type,
        "subtotal": invoice.subtotal,
        "total_vat": invoice.total_vat,
        "total": invoice.total,
        "invoice_sequence": invoice.invoice_sequence,
        "current_hash": invoice.current_hash,
        "is_cancelled": invoice.is_cancelled,
        "cancellation_reason": invoice.cancellation_reason,
        "is_deleted": invoice.is_deleted,
        "lines": len(invoice.lines),
    }
    return {key: _json_value(value) for key, value in state.items()}


class AuditService:
    """
    Scrittura e lettura del registro di audit.

    append() non esegue commit: la voce entra nella stessa transazione
    dell'operazione che registra.
    """

    async def append(
        self,
        db: AsyncSession,
        invoice_id: uuid.UUID,
        action: str,
        actor: Optional[str] = None,
        previous_state: Optional[dict[str, Any]] = None,
        new_state: Optional[dict[str, Any]] = None,
        ip_address: Optional[str] = None,
    ) -> InvoiceAuditLog:
        if action not in AUDIT_ACTIONS:
            raise BusinessValidationError(f"Azione di audit non valida: {action}")

        entry = InvoiceAuditLog(
            invoice_id=invoice_id,
            action=action,
            actor=actor or "system",
            previous_state=previous_state,
            new_state=new_state,
            ip_address=ip_address,
        )
        db.add(entry)
        await db.flush()

        logger.debug("Audit %s registrato per fattura %s da %s", action, invoice_id, entry.actor)
        return entry

    async def get_for_invoice(
        self,
        db: AsyncSession,
        invoice_id: uuid.UUID,
    ) -> list[InvoiceAuditLog]:
        """Voci di audit della fattura in ordine cronologico."""
        stmt = (
            select(InvoiceAuditLog)
            .where(InvoiceAuditLog.invoice_id == invoice_id)
            .order_by(InvoiceAuditLog.created_at.asc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())
