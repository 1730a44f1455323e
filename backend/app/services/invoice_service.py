"""
Service Layer per la Fatturazione
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)

Definisce la logica di business per il ciclo di vita delle fatture:
bozza/proforma modificabili, finalizzazione con progressivo e catena
di hash Veri*Factu, annullamento e occultamento.
"""

import logging
import uuid
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.exceptions import (
    BusinessValidationError,
    ConflictError,
    DuplicateError,
    InvoiceStateError,
    NotFoundError,
    SequenceConflictError,
    SigningError,
)
from app.models import Article, Company, Invoice, InvoiceAuditLog, InvoiceLine
from app.models.mixins import utcnow
from app.schemas.invoice import (
    InvoiceCreate,
    InvoiceLineCreate,
    InvoiceList,
    InvoiceStatus,
    InvoiceUpdate,
    InvoiceVerification,
    InvoiceWrite,
)
from app.services.audit_service import AuditService, invoice_state
from app.services.sequence_service import SequenceAllocator, sequence_allocator
from app.services.verifactu import (
    GENESIS_HASH,
    InvoiceSnapshot,
    Signature,
    SignatureKind,
    SigningCredential,
    build_qr_payload,
    compute_invoice_hash,
    format_invoice_number,
    format_timestamp,
    is_final_number,
    sign_hash,
    verify_signature,
)

# Logger per questo modulo
logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
QUANTITY_PLACES = Decimal("0.001")
# Limiti delle colonne Numeric(12, 2) e Numeric(12, 3)
MAX_AMOUNT = Decimal("9999999999.99")
MAX_QUANTITY = Decimal("999999999.999")
EDITABLE_STATUSES = (InvoiceStatus.DRAFT.value, InvoiceStatus.PROFORMA.value)
FINALIZED_STATUSES = (InvoiceStatus.FINAL.value, InvoiceStatus.CANCELLED.value)


class InvoiceService:
    """
    Service per la gestione delle operazioni sulle fatture.

    Fornisce metodi asincroni per interagire con il database
    in modo centralizzato, senza dipendenze da FastAPI.

    Implementa:
    - Creazione e modifica di bozze e proforma con totali ricalcolati
    - Finalizzazione: progressivo, numero, hash, firma, QR, audit
    - Annullamento di fatture definitive
    - Occultamento (soft delete) di bozze e proforma
    - Verifica di hash e firma di una fattura
    """

    def __init__(
        self,
        allocator: Optional[SequenceAllocator] = None,
        audit: Optional[AuditService] = None,
    ) -> None:
        self.allocator = allocator or sequence_allocator
        self.audit = audit or AuditService()

    # ------------------------------------------------------------
    # Calcolo importi
    # ------------------------------------------------------------
    @staticmethod
    def calculate_line_amounts(
        quantity: Decimal,
        unit_price: Decimal,
        vat_rate: Decimal,
    ) -> tuple[Decimal, Decimal, Decimal]:
        """
        Importi di una riga: (imponibile, IVA, totale con IVA).

        Ogni valore è arrotondato a 2 decimali (ROUND_HALF_UP).
        """
        line_total = (quantity * unit_price).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
        line_vat = (line_total * vat_rate / Decimal("100")).quantize(
            TWO_PLACES, rounding=ROUND_HALF_UP
        )
        return line_total, line_vat, line_total + line_vat

    @staticmethod
    def calculate_totals(lines: Iterable[InvoiceLine]) -> tuple[Decimal, Decimal, Decimal]:
        """Totali fattura come somma degli importi di riga già arrotondati."""
        subtotal = Decimal("0.00")
        total_vat = Decimal("0.00")
        for line in lines:
            subtotal += line.line_total
            total_vat += line.line_vat
        subtotal = subtotal.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
        total_vat = total_vat.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
        return subtotal, total_vat, subtotal + total_vat

    # ------------------------------------------------------------
    # Validazione input
    # ------------------------------------------------------------
    @staticmethod
    def _validate_header(data: InvoiceWrite) -> None:
        if data.status.value not in EDITABLE_STATUSES:
            raise BusinessValidationError(
                f"Stato '{data.status.value}' non consentito: "
                "una fattura si crea o modifica solo come bozza o proforma"
            )
        if not data.client_name:
            raise BusinessValidationError("Il nome del cliente è obbligatorio")
        if not data.client_tax_id:
            raise BusinessValidationError("Il CIF/NIF del cliente è obbligatorio")
        if not data.lines:
            raise BusinessValidationError("La fattura deve contenere almeno una riga")

    async def _build_lines(
        self,
        db: AsyncSession,
        items: list[InvoiceLineCreate],
    ) -> list[InvoiceLine]:
        """
        Valida le righe in input e costruisce le InvoiceLine con importi calcolati.

        I dati mancanti (descrizione, prezzo, IVA) vengono presi
        dall'articolo di catalogo, se indicato.

        Raises:
            NotFoundError: Articolo indicato non esistente
            BusinessValidationError: Riga non valida
        """
        lines: list[InvoiceLine] = []

        for position, item in enumerate(items, start=1):
            description = (item.description or "").strip()
            unit_price = item.unit_price
            vat_rate = item.vat_rate

            if item.article_id is not None:
                article = await db.get(Article, item.article_id)
                if not article:
                    raise NotFoundError(f"Articolo {item.article_id} non trovato")
                description = description or article.name
                unit_price = unit_price if unit_price is not None else article.unit_price
                vat_rate = vat_rate if vat_rate is not None else article.vat_rate

            if vat_rate is None:
                vat_rate = settings.default_vat_rate

            if not description:
                raise BusinessValidationError(
                    f"La descrizione della riga {position} è obbligatoria"
                )
            quantity = item.quantity
            if quantity is None or abs(quantity) > MAX_QUANTITY:
                raise BusinessValidationError(
                    f"La quantità della riga {position} deve essere compresa tra 0 e {MAX_QUANTITY}"
                )
            quantity = quantity.quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP)
            if quantity <= 0:
                raise BusinessValidationError(
                    f"La quantità della riga {position} deve essere maggiore di zero"
                )

            if unit_price is None or abs(unit_price) > MAX_AMOUNT:
                raise BusinessValidationError(
                    f"Il prezzo unitario della riga {position} deve essere compreso tra 0 e {MAX_AMOUNT}"
                )
            # Arrotondato come la colonna, prima del calcolo degli importi
            unit_price = unit_price.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
            if unit_price <= 0:
                raise BusinessValidationError(
                    f"Il prezzo unitario della riga {position} deve essere maggiore di zero"
                )

            if vat_rate < 0 or vat_rate > 100:
                raise BusinessValidationError(
                    f"L'aliquota IVA della riga {position} deve essere compresa tra 0 e 100"
                )
            vat_rate = vat_rate.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

            line_total, line_vat, line_total_with_vat = self.calculate_line_amounts(
                quantity, unit_price, vat_rate
            )
            if line_total_with_vat > MAX_AMOUNT:
                raise BusinessValidationError(
                    f"L'importo della riga {position} supera il massimo consentito ({MAX_AMOUNT})"
                )
            lines.append(
                InvoiceLine(
                    article_id=item.article_id,
                    description=description,
                    quantity=quantity,
                    unit_price=unit_price,
                    vat_rate=vat_rate,
                    sort_order=position,
                    line_total=line_total,
                    line_vat=line_vat,
                    line_total_with_vat=line_total_with_vat,
                )
            )

        if self.calculate_totals(lines)[2] > MAX_AMOUNT:
            raise BusinessValidationError(
                f"Il totale della fattura supera il massimo consentito ({MAX_AMOUNT})"
            )

        return lines

    # ------------------------------------------------------------
    # Numerazione
    # ------------------------------------------------------------
    async def _find_by_number(
        self,
        db: AsyncSession,
        company_id: uuid.UUID,
        invoice_number: str,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> Optional[Invoice]:
        stmt = select(Invoice).where(
            Invoice.company_id == company_id,
            Invoice.invoice_number == invoice_number,
        )
        if exclude_id is not None:
            stmt = stmt.where(Invoice.id != exclude_id)
        result = await db.execute(stmt.limit(1))
        return result.scalar_one_or_none()

    async def _resolve_draft_number(
        self,
        db: AsyncSession,
        company_id: uuid.UUID,
        requested: Optional[str],
        exclude_id: Optional[uuid.UUID] = None,
    ) -> str:
        """
        Numero provvisorio per bozza/proforma.

        Un numero indicato dal chiamante non può avere il formato dei
        numeri definitivi e deve essere libero per l'azienda.
        In assenza viene generato <prefisso>-<8 hex>.
        """
        if requested:
            if is_final_number(requested):
                raise BusinessValidationError(
                    f"Il numero {requested} è riservato alle fatture definitive"
                )
            if await self._find_by_number(db, company_id, requested, exclude_id):
                raise DuplicateError(f"Il numero fattura {requested} è già utilizzato")
            return requested

        while True:
            candidate = f"{settings.draft_number_prefix}-{uuid.uuid4().hex[:8].upper()}"
            if not await self._find_by_number(db, company_id, candidate, exclude_id):
                return candidate

    async def _derive_final_number(
        self,
        db: AsyncSession,
        invoice: Invoice,
        sequence: int,
        verifactu_enabled: bool,
    ) -> str:
        """
        Numero definitivo dal progressivo.

        In caso di collisione con un numero già presente viene provato il
        suffisso successivo; il progressivo della fattura non cambia.
        """
        suffix = sequence
        while True:
            number = format_invoice_number(suffix, verifactu_enabled, invoice.invoice_date)
            clash = await self._find_by_number(db, invoice.company_id, number, invoice.id)
            if not clash:
                return number
            logger.warning(
                "Numero %s già presente per azienda %s, provo il successivo",
                number,
                invoice.company_id,
            )
            suffix += 1

    async def _get_previous_hash(
        self,
        db: AsyncSession,
        company_id: uuid.UUID,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> str:
        """current_hash dell'ultima fattura definitiva non annullata, o GENESIS."""
        stmt = (
            select(Invoice.current_hash)
            .where(
                Invoice.company_id == company_id,
                Invoice.status == InvoiceStatus.FINAL.value,
                Invoice.is_cancelled.is_(False),
                Invoice.current_hash.is_not(None),
            )
            .order_by(Invoice.invoice_sequence.desc())
            .limit(1)
        )
        if exclude_id is not None:
            stmt = stmt.where(Invoice.id != exclude_id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none() or GENESIS_HASH

    # ------------------------------------------------------------
    # Letture
    # ------------------------------------------------------------
    async def get_by_id(
        self,
        db: AsyncSession,
        invoice_id: uuid.UUID,
        for_update: bool = False,
    ) -> Invoice:
        """
        Recupera una fattura per ID con righe e azienda caricate.

        Raises:
            NotFoundError: Fattura non trovata
        """
        stmt = (
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .options(
                selectinload(Invoice.lines),
                selectinload(Invoice.company),
            )
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update(of=Invoice)
        result = await db.execute(stmt)
        invoice = result.scalar_one_or_none()

        if not invoice:
            raise NotFoundError(f"Fattura {invoice_id} non trovata")

        return invoice

    async def get_all(
        self,
        db: AsyncSession,
        company_id: Optional[uuid.UUID] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        client_name: Optional[str] = None,
        invoice_number: Optional[str] = None,
        client_type: Optional[str] = None,
        status_filter: Optional[str] = None,
        cancelled: Optional[bool] = None,
        verifactu: Optional[bool] = None,
        include_hidden: bool = False,
        page: int = 1,
        per_page: int = 20,
    ) -> InvoiceList:
        """
        Recupera la lista paginata delle fatture con filtri.

        Args:
            db: Sessione database
            company_id: Filtro per azienda
            from_date / to_date: Intervallo sulla data di emissione
            client_name: Ricerca parziale sul nome cliente
            invoice_number: Ricerca parziale sul numero
            client_type: empresa, autonomo, particular
            status_filter: draft, proforma, final, cancelled
            cancelled: True solo annullate, False solo attive
            verifactu: True solo con hash, False solo senza
            include_hidden: Include le fatture nascoste
            page / per_page: Paginazione

        Returns:
            InvoiceList: Lista paginata delle fatture
        """
        conditions = []

        if company_id:
            conditions.append(Invoice.company_id == company_id)
        if from_date:
            conditions.append(Invoice.invoice_date >= from_date)
        if to_date:
            conditions.append(Invoice.invoice_date <= to_date)
        if client_name:
            conditions.append(Invoice.client_name.ilike(f"%{client_name}%"))
        if invoice_number:
            conditions.append(Invoice.invoice_number.ilike(f"%{invoice_number}%"))
        if client_type:
            conditions.append(Invoice.client_type == client_type)
        if status_filter:
            conditions.append(Invoice.status == status_filter)
        if cancelled is not None:
            conditions.append(Invoice.is_cancelled.is_(cancelled))
        if verifactu is True:
            conditions.append(Invoice.current_hash.is_not(None))
        elif verifactu is False:
            conditions.append(Invoice.current_hash.is_(None))
        if not include_hidden:
            conditions.append(Invoice.is_deleted.is_(False))

        count_stmt = select(func.count(Invoice.id))
        if conditions:
            count_stmt = count_stmt.where(and_(*conditions))
        total = (await db.execute(count_stmt)).scalar() or 0

        stmt = select(Invoice).options(selectinload(Invoice.lines))
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = (
            stmt.order_by(Invoice.invoice_date.desc(), Invoice.created_at.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        result = await db.execute(stmt)
        invoices = result.scalars().all()

        total_pages = (total + per_page - 1) // per_page if total > 0 else 1

        return InvoiceList(
            items=list(invoices),
            total=total,
            page=page,
            per_page=per_page,
            total_pages=total_pages,
        )

    async def get_audit_log(
        self,
        db: AsyncSession,
        invoice_id: uuid.UUID,
    ) -> list[InvoiceAuditLog]:
        await self.get_by_id(db, invoice_id)
        return await self.audit.get_for_invoice(db, invoice_id)

    # ------------------------------------------------------------
    # Creazione e modifica
    # ------------------------------------------------------------
    async def create(
        self,
        db: AsyncSession,
        data: InvoiceCreate,
        actor: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Invoice:
        """
        Crea una fattura in bozza o proforma.

        Nessun progressivo né hash: vengono assegnati alla finalizzazione.

        Raises:
            NotFoundError: Azienda o articolo non trovati
            BusinessValidationError: Dati non validi
            DuplicateError: Numero provvisorio già usato
        """
        company = await db.get(Company, data.company_id)
        if not company:
            raise NotFoundError(f"Azienda {data.company_id} non trovata")

        self._validate_header(data)
        lines = await self._build_lines(db, data.lines)
        invoice_number = await self._resolve_draft_number(
            db, data.company_id, data.invoice_number
        )
        subtotal, total_vat, total = self.calculate_totals(lines)

        invoice = Invoice(
            company_id=data.company_id,
            invoice_number=invoice_number,
            invoice_date=data.invoice_date,
            client_name=data.client_name,
            client_tax_id=data.client_tax_id,
            client_address=data.client_address,
            client_type=data.client_type.value,
            notes=data.notes,
            status=data.status.value,
            subtotal=subtotal,
            total_vat=total_vat,
            total=total,
            is_cancelled=False,
            is_deleted=False,
        )
        for line in lines:
            invoice.lines.append(line)

        db.add(invoice)

        try:
            await db.flush()
            await self.audit.append(
                db,
                invoice.id,
                "CREATE",
                actor=actor,
                new_state=invoice_state(invoice),
                ip_address=ip_address,
            )
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.error(f"Errore di integrità durante creazione fattura: {e}")
            raise ConflictError("Errore durante la creazione della fattura")

        logger.info("Fattura %s creata (%s) da %s", invoice.invoice_number, invoice.status, actor or "system")
        return await self.get_by_id(db, invoice.id)

    async def update(
        self,
        db: AsyncSession,
        invoice_id: uuid.UUID,
        data: InvoiceUpdate,
        actor: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Invoice:
        """
        Sostituisce dati cliente e righe di una bozza o proforma.

        Raises:
            NotFoundError: Fattura non trovata
            InvoiceStateError: Fattura definitiva, annullata o nascosta
            BusinessValidationError: Dati non validi
        """
        invoice = await self.get_by_id(db, invoice_id, for_update=True)

        if invoice.status in FINALIZED_STATUSES:
            raise InvoiceStateError(
                f"La fattura {invoice.invoice_number} è {invoice.status} e non può essere modificata"
            )
        if invoice.is_deleted:
            raise InvoiceStateError(
                f"La fattura {invoice.invoice_number} è stata eliminata e non può essere modificata"
            )

        self._validate_header(data)
        lines = await self._build_lines(db, data.lines)
        previous_state = invoice_state(invoice)

        if data.invoice_number and data.invoice_number != invoice.invoice_number:
            invoice.invoice_number = await self._resolve_draft_number(
                db, invoice.company_id, data.invoice_number, exclude_id=invoice.id
            )

        subtotal, total_vat, total = self.calculate_totals(lines)

        invoice.invoice_date = data.invoice_date
        invoice.client_name = data.client_name
        invoice.client_tax_id = data.client_tax_id
        invoice.client_address = data.client_address
        invoice.client_type = data.client_type.value
        invoice.notes = data.notes
        invoice.status = data.status.value
        invoice.subtotal = subtotal
        invoice.total_vat = total_vat
        invoice.total = total
        # Delete-and-reinsert delle righe (cascade delete-orphan)
        invoice.lines = lines

        try:
            await db.flush()
            await self.audit.append(
                db,
                invoice.id,
                "UPDATE",
                actor=actor,
                previous_state=previous_state,
                new_state=invoice_state(invoice),
                ip_address=ip_address,
            )
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.error(f"Errore di integrità durante aggiornamento fattura: {e}")
            raise ConflictError("Errore durante l'aggiornamento della fattura")

        logger.info("Fattura %s aggiornata da %s", invoice.invoice_number, actor or "system")
        return await self.get_by_id(db, invoice_id)

    # ------------------------------------------------------------
    # Transizioni di stato
    # ------------------------------------------------------------
    @staticmethod
    def _ensure_finalizable(invoice: Invoice) -> None:
        if invoice.status == InvoiceStatus.FINAL.value:
            raise InvoiceStateError(f"La fattura {invoice.invoice_number} è già definitiva")
        if invoice.status == InvoiceStatus.CANCELLED.value:
            raise InvoiceStateError(f"La fattura {invoice.invoice_number} è annullata")
        if invoice.is_deleted:
            raise InvoiceStateError(
                f"La fattura {invoice.invoice_number} è stata eliminata e non può essere finalizzata"
            )

    async def finalize(
        self,
        db: AsyncSession,
        invoice_id: uuid.UUID,
        actor: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Invoice:
        """
        Rende definitiva una bozza o proforma.

        Steps (sezione critica per azienda, una sola transazione):
        1. Progressivo successivo (last + 1)
        2. Numero definitivo VF/F<anno>-<seq>, verificato come libero
        3. Se Veri*Factu è attivo: hash precedente, hash, firma, QR
        4. Stato final e finalized_at
        5. Registrazione del progressivo sull'azienda
        6. Voce di audit FINALIZE
        Qualsiasi errore annulla l'intera transazione.

        Raises:
            NotFoundError: Fattura o azienda non trovate
            InvoiceStateError: Fattura già definitiva, annullata o nascosta
            SigningError: Certificato configurato ma inutilizzabile
            SequenceConflictError: Progressivo conteso da un'altra finalizzazione
        """
        invoice = await self.get_by_id(db, invoice_id)
        self._ensure_finalizable(invoice)
        company_id = invoice.company_id

        async with self.allocator.reserve(db, company_id):
            try:
                # Ricarica sotto lock: lo stato potrebbe essere cambiato
                invoice = await self.get_by_id(db, invoice_id, for_update=True)
                self._ensure_finalizable(invoice)
                previous_state = invoice_state(invoice)

                company = await self.allocator.get_company(db, company_id, for_update=True)
                now = utcnow()

                sequence = await self.allocator.next_sequence(db, company_id)
                invoice_number = await self._derive_final_number(
                    db, invoice, sequence, company.verifactu_enabled
                )

                invoice.invoice_number = invoice_number
                invoice.invoice_sequence = sequence

                if company.verifactu_enabled:
                    await self._apply_verifactu(db, invoice, company, now)
                else:
                    invoice.previous_hash = None
                    invoice.current_hash = None
                    invoice.hash_timestamp = None
                    invoice.signature = None
                    invoice.signature_type = None
                    invoice.signing_certificate = None
                    invoice.signing_software_id = None
                    invoice.qr_payload = None

                invoice.status = InvoiceStatus.FINAL.value
                invoice.finalized_at = now

                await db.flush()
                await self.allocator.commit_sequence(db, company_id, sequence)
                await self.audit.append(
                    db,
                    invoice.id,
                    "FINALIZE",
                    actor=actor,
                    previous_state=previous_state,
                    new_state=invoice_state(invoice),
                    ip_address=ip_address,
                )
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                logger.error(f"Errore di integrità durante finalizzazione fattura {invoice_id}: {e}")
                raise SequenceConflictError(
                    extra={"invoice_id": str(invoice_id), "company_id": str(company_id)}
                ) from e
            except SigningError:
                await db.rollback()
                logger.error("Firma fallita per fattura %s: finalizzazione annullata", invoice_id)
                raise
            except Exception:
                await db.rollback()
                raise

        logger.info(
            "Fattura %s finalizzata (progressivo %s, hash %s)",
            invoice_number,
            sequence,
            "sì" if company.verifactu_enabled else "no",
        )
        return await self.get_by_id(db, invoice_id)

    async def _apply_verifactu(
        self,
        db: AsyncSession,
        invoice: Invoice,
        company: Company,
        now,
    ) -> None:
        """Calcola e assegna hash concatenato, firma e QR."""
        timestamp = format_timestamp(now)
        previous_hash = await self._get_previous_hash(db, company.id, exclude_id=invoice.id)

        snapshot = InvoiceSnapshot.from_invoice(invoice, previous_hash, timestamp)
        current_hash = compute_invoice_hash(snapshot)

        software_id = company.verifactu_software_id or settings.verifactu_software_id
        signature = sign_hash(
            current_hash,
            credential=SigningCredential.from_company(company),
            tax_id=company.tax_id,
            software_id=software_id,
            timestamp=timestamp,
        )
        if not signature.is_attestation:
            logger.warning(
                "Azienda %s senza certificato: firma placeholder per %s",
                company.id,
                invoice.invoice_number,
            )

        invoice.previous_hash = previous_hash
        invoice.current_hash = current_hash
        invoice.hash_timestamp = timestamp
        invoice.signature = signature.value
        invoice.signature_type = signature.kind.value
        invoice.signing_certificate = signature.certificate_pem
        invoice.signing_software_id = software_id
        invoice.qr_payload = build_qr_payload(
            tax_id=company.tax_id,
            invoice_number=invoice.invoice_number,
            invoice_date=invoice.invoice_date,
            total=invoice.total,
            current_hash=current_hash,
        )

    @staticmethod
    def _ensure_cancellable(invoice: Invoice) -> None:
        if invoice.status == InvoiceStatus.CANCELLED.value:
            raise InvoiceStateError(f"La fattura {invoice.invoice_number} è già annullata")
        if invoice.status != InvoiceStatus.FINAL.value:
            raise InvoiceStateError(
                f"Solo le fatture definitive possono essere annullate: "
                f"la fattura {invoice.invoice_number} è {invoice.status}, usare l'eliminazione"
            )

    async def cancel(
        self,
        db: AsyncSession,
        invoice_id: uuid.UUID,
        reason: str,
        actor: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Invoice:
        """
        Annulla una fattura definitiva mantenendo progressivo e hash.

        Gira nella stessa sezione critica per azienda di finalize():
        l'annullamento cambia l'hash precedente della fattura successiva.

        Raises:
            NotFoundError: Fattura non trovata
            InvoiceStateError: Fattura non definitiva o già annullata
            BusinessValidationError: Motivo mancante
        """
        reason = (reason or "").strip()
        invoice = await self.get_by_id(db, invoice_id)
        self._ensure_cancellable(invoice)
        if not reason:
            raise BusinessValidationError("Il motivo dell'annullamento è obbligatorio")

        async with self.allocator.reserve(db, invoice.company_id):
            try:
                invoice = await self.get_by_id(db, invoice_id, for_update=True)
                self._ensure_cancellable(invoice)
                previous_state = invoice_state(invoice)

                invoice.status = InvoiceStatus.CANCELLED.value
                invoice.is_cancelled = True
                invoice.cancelled_at = utcnow()
                invoice.cancellation_reason = reason

                await db.flush()
                await self.audit.append(
                    db,
                    invoice.id,
                    "CANCEL",
                    actor=actor,
                    previous_state=previous_state,
                    new_state=invoice_state(invoice),
                    ip_address=ip_address,
                )
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        logger.info("Fattura %s annullata: %s", invoice.invoice_number, reason)
        return await self.get_by_id(db, invoice_id)

    async def hide(
        self,
        db: AsyncSession,
        invoice_id: uuid.UUID,
        actor: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Invoice:
        """
        Nasconde (soft delete) una bozza o proforma. Idempotente.

        Raises:
            NotFoundError: Fattura non trovata
            InvoiceStateError: Fattura definitiva o annullata
        """
        invoice = await self.get_by_id(db, invoice_id, for_update=True)

        if invoice.status in FINALIZED_STATUSES:
            raise InvoiceStateError(
                f"La fattura {invoice.invoice_number} è {invoice.status} e non può essere eliminata"
            )

        if invoice.is_deleted:
            return invoice

        previous_state = invoice_state(invoice)
        invoice.is_deleted = True
        invoice.deleted_at = utcnow()

        try:
            await db.flush()
            await self.audit.append(
                db,
                invoice.id,
                "HIDE",
                actor=actor,
                previous_state=previous_state,
                new_state=invoice_state(invoice),
                ip_address=ip_address,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Fattura %s nascosta da %s", invoice.invoice_number, actor or "system")
        return await self.get_by_id(db, invoice_id)

    # ------------------------------------------------------------
    # Verifica
    # ------------------------------------------------------------
    async def verify(
        self,
        db: AsyncSession,
        invoice_id: uuid.UUID,
    ) -> InvoiceVerification:
        """
        Ricalcola l'hash con il timestamp salvato e verifica la firma.

        Raises:
            NotFoundError: Fattura non trovata
        """
        invoice = await self.get_by_id(db, invoice_id)

        if invoice.status not in FINALIZED_STATUSES or invoice.invoice_sequence is None:
            return InvoiceVerification(
                verified=False,
                invoice_number=invoice.invoice_number,
                message="La fattura non è definitiva",
            )

        if not invoice.current_hash or not invoice.hash_timestamp:
            return InvoiceVerification(
                verified=False,
                invoice_number=invoice.invoice_number,
                sequence=invoice.invoice_sequence,
                message="Fattura emessa senza Veri*Factu: nessun hash da verificare",
            )

        snapshot = InvoiceSnapshot.from_invoice(
            invoice, invoice.previous_hash, invoice.hash_timestamp
        )
        recalculated = compute_invoice_hash(snapshot)
        hash_ok = recalculated == invoice.current_hash

        signature_valid: Optional[bool] = None
        if invoice.signature and invoice.signature_type:
            company = invoice.company
            try:
                signature_valid = verify_signature(
                    invoice.current_hash,
                    Signature(
                        SignatureKind(invoice.signature_type),
                        invoice.signature,
                        certificate_pem=invoice.signing_certificate,
                    ),
                    credential=SigningCredential.from_company(company),
                    tax_id=company.tax_id,
                    software_id=invoice.signing_software_id or company.verifactu_software_id,
                    timestamp=invoice.hash_timestamp,
                )
            except SigningError as e:
                logger.warning(
                    "Impossibile verificare la firma della fattura %s: %s",
                    invoice.invoice_number,
                    e.detail,
                )
                signature_valid = False

        verified = hash_ok and signature_valid is not False
        if verified:
            message = "Hash e firma verificati"
        elif not hash_ok:
            message = "L'hash ricalcolato non corrisponde a quello registrato"
        else:
            message = "La firma non è valida"

        return InvoiceVerification(
            verified=verified,
            recalculated_hash=recalculated,
            stored_hash=invoice.current_hash,
            invoice_number=invoice.invoice_number,
            sequence=invoice.invoice_sequence,
            signature_type=invoice.signature_type,
            signature_valid=signature_valid,
            message=message,
        )
