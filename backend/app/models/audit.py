"""
Modello SQLAlchemy per il registro di audit delle fatture
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)

Il registro è append-only: i listener in fondo al modulo impediscono
UPDATE e DELETE sia tramite unit of work sia tramite statement ORM bulk.
"""


from __future__ import annotations
import datetime
import uuid
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Uuid,
    event,
)
from sqlalchemy.orm import Mapped, ORMExecuteState, Session, mapped_column
from sqlalchemy.sql import func

from app.core.exceptions import AuditLogImmutableError
from app.models import Base
from app.models.mixins import UUIDMixin, utcnow


AUDIT_ACTIONS = ("CREATE", "UPDATE", "FINALIZE", "CANCEL", "HIDE")


class InvoiceAuditLog(Base, UUIDMixin):
    """
    Voce del registro di audit.

    Attributes:
        invoice_id: Fattura interessata
        action: CREATE, UPDATE, FINALIZE, CANCEL, HIDE
        actor: Utente che ha eseguito l'azione (default "system")
        previous_state: Stato della fattura prima dell'azione (JSON)
        new_state: Stato della fattura dopo l'azione (JSON)
        ip_address: Indirizzo IP del client
        created_at: Data/ora dell'azione
    """

    __tablename__ = "invoice_audit_log"

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("invoices.id", ondelete="RESTRICT"),
        nullable=False,
        doc="UUID della fattura",
    )

    action: Mapped[str] = mapped_column(String(20), nullable=False)

    actor: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="system",
    )

    previous_state: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    new_state: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_invoice_audit_log_invoice", "invoice_id", "created_at"),
        CheckConstraint(
            "action IN ('CREATE', 'UPDATE', 'FINALIZE', 'CANCEL', 'HIDE')",
            name="ck_invoice_audit_log_action",
        ),
    )

    def __repr__(self) -> str:
        return f"<InvoiceAuditLog(invoice_id={self.invoice_id}, action={self.action})>"


# ------------------------------------------------------------
# Guardie di immutabilità
# ------------------------------------------------------------
@event.listens_for(InvoiceAuditLog, "before_update")
def _reject_audit_update(mapper, connection, target: InvoiceAuditLog) -> None:
    raise AuditLogImmutableError(
        f"La voce di audit {target.id} non può essere modificata",
        extra={"audit_id": str(target.id)},
    )


@event.listens_for(InvoiceAuditLog, "before_delete")
def _reject_audit_delete(mapper, connection, target: InvoiceAuditLog) -> None:
    raise AuditLogImmutableError(
        f"La voce di audit {target.id} non può essere eliminata",
        extra={"audit_id": str(target.id)},
    )


@event.listens_for(Session, "do_orm_execute")
def _reject_audit_bulk_statements(orm_execute_state: ORMExecuteState) -> None:
    """Blocca update()/delete() bulk sul registro di audit."""
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    mapper = orm_execute_state.bind_mapper
    if mapper is not None and mapper.class_ is InvoiceAuditLog:
        raise AuditLogImmutableError()
