"""Invoice service for business logic."""
from datetime import datetime, timedelta
from uuid import UUID

import structlog
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from studio_billing.adapters.stripe_adapter import StripeAdapter
from studio_billing.exceptions import (
    BillingValidationError,
    InvalidStateError,
    InvoiceNumberConflictError,
    PaymentGatewayError,
    RecordNotFoundError,
)
from studio_billing.metrics import invoices_paid_total, invoices_sent_total
from studio_billing.models.invoice import Invoice, InvoiceStatus
from studio_billing.schemas.gateway_event import CheckoutSessionObject
from studio_billing.schemas.invoice import InvoiceCreate, InvoiceLineItemIn, InvoiceUpdate
from studio_billing.services.transitions import apply_transition
from studio_billing.utils.money import to_cents

logger = structlog.get_logger(__name__)


class InvoiceService:
    """Service layer for invoice operations."""

    def __init__(self, db: AsyncSession, gateway: StripeAdapter | None = None):
        """Initialize invoice service with database session and optional gateway adapter."""
        self.db = db
        self.gateway = gateway

    @staticmethod
    def price_line_items(line_items: list[InvoiceLineItemIn]) -> tuple[list[dict], int]:
        """
        Convert entered line items to their stored form and compute the subtotal.

        Args:
            line_items: Line items with dollar unit prices

        Returns:
            Tuple of (stored line items, subtotal in cents)
        """
        stored = []
        subtotal = 0
        for item in line_items:
            total_cents = to_cents(item.quantity * item.unit_price)
            stored.append(
                {
                    "description": item.description,
                    "quantity": str(item.quantity),
                    "unit_price_cents": to_cents(item.unit_price),
                    "total_cents": total_cents,
                }
            )
            subtotal += total_cents
        return stored, subtotal

    async def next_invoice_number(self, year: int) -> tuple[int, str]:
        """
        Compute the next invoice number for a calendar year.

        Format: {year}-{sequence} with the sequence zero-padded to three
        digits (e.g., 2025-001, 2025-002). Sequences restart each year.

        Args:
            year: Calendar year of the send

        Returns:
            Tuple of (sequence, invoice number)
        """
        result = await self.db.execute(
            select(func.max(Invoice.invoice_sequence)).where(Invoice.invoice_year == year)
        )
        sequence = (result.scalar() or 0) + 1
        return sequence, f"{year}-{sequence:03d}"

    async def create_invoice(self, invoice_data: InvoiceCreate) -> Invoice:
        """
        Create a draft invoice.

        Args:
            invoice_data: Invoice creation data

        Returns:
            Created draft invoice
        """
        line_items, subtotal = self.price_line_items(invoice_data.line_items)

        invoice = Invoice(
            client_id=invoice_data.client_id,
            client_email=invoice_data.client_email,
            client_name=invoice_data.client_name,
            status=InvoiceStatus.DRAFT,
            line_items=line_items,
            subtotal_cents=subtotal,
            total_cents=subtotal,
            notes=invoice_data.notes,
            due_in_days=invoice_data.due_in_days,
        )
        self.db.add(invoice)
        await self.db.flush()
        await self.db.refresh(invoice)

        logger.info("invoice_draft_created", invoice_id=str(invoice.id), total_cents=subtotal)
        return invoice

    async def get_invoice(self, invoice_id: UUID) -> Invoice:
        """
        Get invoice by ID.

        Raises:
            RecordNotFoundError: If the invoice does not exist
        """
        invoice = await self.db.get(Invoice, invoice_id, populate_existing=True)
        if not invoice:
            raise RecordNotFoundError(f"Invoice {invoice_id} not found", details={"invoice_id": str(invoice_id)})
        return invoice

    async def list_invoices(
        self,
        page: int = 1,
        page_size: int = 100,
        status: InvoiceStatus | None = None,
        client_id: UUID | None = None,
    ) -> tuple[list[Invoice], int]:
        """
        List invoices, newest first.

        Args:
            page: Page number (1-indexed)
            page_size: Number of items per page
            status: Optional status filter
            client_id: Optional client filter

        Returns:
            Tuple of (invoices list, total count)
        """
        query = select(Invoice)
        if status:
            query = query.where(Invoice.status == status)
        if client_id:
            query = query.where(Invoice.client_id == client_id)

        count_result = await self.db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar_one()

        offset = (page - 1) * page_size
        result = await self.db.execute(
            query.order_by(Invoice.created_at.desc()).offset(offset).limit(page_size)
        )
        return list(result.scalars().all()), total

    async def update_invoice(self, invoice_id: UUID, update_data: InvoiceUpdate) -> Invoice:
        """
        Update a draft invoice.

        Args:
            invoice_id: Invoice UUID
            update_data: Fields to change

        Returns:
            Updated invoice

        Raises:
            RecordNotFoundError: If the invoice does not exist
            InvalidStateError: If the invoice is no longer a draft
        """
        invoice = await self.get_invoice(invoice_id)
        if invoice.status != InvoiceStatus.DRAFT:
            raise InvalidStateError(
                f"Only draft invoices can be edited (invoice is {invoice.status.value})",
                details={"invoice_id": str(invoice_id), "status": invoice.status.value},
            )

        values = update_data.model_dump(exclude_unset=True, exclude={"line_items"})
        if update_data.line_items is not None:
            line_items, subtotal = self.price_line_items(update_data.line_items)
            values.update(line_items=line_items, subtotal_cents=subtotal, total_cents=subtotal)

        if values and not await apply_transition(
            self.db, Invoice, invoice_id, Invoice.status == InvoiceStatus.DRAFT, **values
        ):
            raise InvalidStateError("Invoice was sent while being edited", details={"invoice_id": str(invoice_id)})

        return await self.get_invoice(invoice_id)

    async def send_invoice(self, invoice_id: UUID, now: datetime | None = None) -> Invoice:
        """
        Send a draft invoice: assign its number and create its payment link.

        The number and link are written in one conditional update; a second
        concurrent send of the same draft matches no row, and two sends of
        different drafts racing for the same number hit the unique constraint.

        Args:
            invoice_id: Invoice UUID
            now: Send time (defaults to utcnow)

        Returns:
            The pending invoice

        Raises:
            RecordNotFoundError: If the invoice does not exist
            InvalidStateError: If the invoice is not a draft
            BillingValidationError: If the invoice has no email or a zero total
            PaymentGatewayError: If the payment link cannot be created
            InvoiceNumberConflictError: If the number was claimed concurrently
        """
        now = now or datetime.utcnow()
        invoice = await self.get_invoice(invoice_id)

        if invoice.status != InvoiceStatus.DRAFT:
            raise InvalidStateError(
                f"Only draft invoices can be sent (invoice is {invoice.status.value})",
                details={"invoice_id": str(invoice_id), "status": invoice.status.value},
            )
        if not invoice.client_email:
            raise BillingValidationError("Invoice needs a client email before it can be sent")
        if invoice.total_cents <= 0:
            raise BillingValidationError("Invoice total must be greater than zero")

        sequence, invoice_number = await self.next_invoice_number(now.year)

        link = await self.gateway.create_invoice_payment_link(
            invoice_id=str(invoice.id),
            invoice_number=invoice_number,
            amount=invoice.total_cents,
            description=invoice.notes,
        )

        try:
            sent = await apply_transition(
                self.db,
                Invoice,
                invoice_id,
                Invoice.status == InvoiceStatus.DRAFT,
                status=InvoiceStatus.PENDING,
                invoice_year=now.year,
                invoice_sequence=sequence,
                invoice_number=invoice_number,
                due_date=now + timedelta(days=invoice.due_in_days),
                sent_at=now,
                payment_link_id=link["id"],
                payment_link=link["url"],
            )
        except IntegrityError as e:
            await self.db.rollback()
            await self._discard_payment_link(link["id"])
            raise InvoiceNumberConflictError(
                f"Invoice number {invoice_number} was claimed concurrently",
                details={"invoice_id": str(invoice_id), "invoice_number": invoice_number},
                original_error=e,
            ) from e

        if not sent:
            await self._discard_payment_link(link["id"])
            raise InvalidStateError("Invoice was sent concurrently", details={"invoice_id": str(invoice_id)})

        invoices_sent_total.inc()
        logger.info(
            "invoice_sent",
            invoice_id=str(invoice_id),
            invoice_number=invoice_number,
            payment_link_id=link["id"],
        )
        return await self.get_invoice(invoice_id)

    async def delete_invoice(self, invoice_id: UUID) -> None:
        """
        Delete a draft or pending invoice.

        A pending invoice's payment link is deactivated first so it can no
        longer be paid.

        Raises:
            RecordNotFoundError: If the invoice does not exist
            InvalidStateError: If the invoice is paid
        """
        invoice = await self.get_invoice(invoice_id)
        if invoice.status == InvoiceStatus.PAID:
            raise InvalidStateError(
                "Paid invoices cannot be deleted",
                details={"invoice_id": str(invoice_id), "status": invoice.status.value},
            )

        if invoice.payment_link_id:
            await self.gateway.deactivate_payment_link(invoice.payment_link_id)

        await self.db.delete(invoice)
        await self.db.flush()
        logger.info("invoice_deleted", invoice_id=str(invoice_id), invoice_number=invoice.invoice_number)

    async def mark_paid_from_checkout(self, session: CheckoutSessionObject, now: datetime | None = None) -> str:
        """
        Mark the invoice behind a completed payment-link checkout as paid.

        The gateway is authoritative about money received, so a draft invoice
        is marked paid too (with a warning). An already paid invoice is left
        untouched, so paid_at is written once.

        Args:
            session: Completed checkout session
            now: Fallback payment time (defaults to utcnow)

        Returns:
            Outcome value: applied, duplicate or not_found
        """
        invoice = await self._find_for_checkout(session)
        if not invoice:
            logger.warning(
                "invoice_not_found_for_checkout",
                session_id=session.id,
                invoice_id=session.invoice_id,
                payment_link_id=session.payment_link,
            )
            return "not_found"

        if invoice.status == InvoiceStatus.PAID:
            logger.info("invoice_already_paid", invoice_id=str(invoice.id), session_id=session.id)
            return "duplicate"

        if invoice.status == InvoiceStatus.DRAFT:
            logger.warning("invoice_paid_while_draft", invoice_id=str(invoice.id), session_id=session.id)

        paid = await apply_transition(
            self.db,
            Invoice,
            invoice.id,
            Invoice.status != InvoiceStatus.PAID,
            status=InvoiceStatus.PAID,
            paid_at=now or datetime.utcnow(),
            stripe_payment_intent_id=session.payment_intent,
        )
        if not paid:
            return "duplicate"

        invoices_paid_total.inc()
        logger.info(
            "invoice_paid",
            invoice_id=str(invoice.id),
            invoice_number=invoice.invoice_number,
            amount_total=session.amount_total,
        )
        return "applied"

    async def _find_for_checkout(self, session: CheckoutSessionObject) -> Invoice | None:
        if session.invoice_id:
            try:
                invoice_id = UUID(session.invoice_id)
            except ValueError:
                return None
            return await self.db.get(Invoice, invoice_id)

        if session.payment_link:
            result = await self.db.execute(select(Invoice).where(Invoice.payment_link_id == session.payment_link))
            return result.scalar_one_or_none()
        return None

    async def _discard_payment_link(self, payment_link_id: str) -> None:
        try:
            await self.gateway.deactivate_payment_link(payment_link_id)
        except PaymentGatewayError:
            logger.warning("orphan_payment_link", payment_link_id=payment_link_id)
