"""Invoice API endpoints."""
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from studio_billing.adapters.stripe_adapter import StripeAdapter
from studio_billing.api.deps import get_db, get_stripe_adapter, require_admin
from studio_billing.models.invoice import InvoiceStatus
from studio_billing.schemas.invoice import Invoice, InvoiceCreate, InvoiceList, InvoiceUpdate
from studio_billing.services.invoice_service import InvoiceService

router = APIRouter(prefix="/invoices", tags=["Invoices"])


@router.post("", response_model=Invoice, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    invoice_data: InvoiceCreate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_admin),
) -> Invoice:
    """
    Create a draft invoice.

    - **client_id**: Client UUID (required)
    - **line_items**: At least one `{description, quantity, unit_price}`
    - **due_in_days**: Days from sending until due (default: 14)

    The invoice number is assigned when the invoice is sent, not here.
    """
    service = InvoiceService(db)
    invoice = await service.create_invoice(invoice_data)
    await db.commit()
    return invoice


@router.get("/{invoice_id}", response_model=Invoice)
async def get_invoice(
    invoice_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_admin),
) -> Invoice:
    """Get invoice by ID."""
    service = InvoiceService(db)
    return await service.get_invoice(invoice_id)


@router.get("", response_model=InvoiceList)
async def list_invoices(
    client_id: UUID | None = Query(None, description="Filter by client ID"),
    status_filter: InvoiceStatus | None = Query(None, alias="status", description="Filter by status"),
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(100, ge=1, le=1000, description="Items per page"),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_admin),
) -> InvoiceList:
    """
    List invoices with pagination, newest first.

    - **client_id**: Filter by client (optional)
    - **status**: Filter by status: draft, pending, paid (optional)
    """
    service = InvoiceService(db)
    invoices, total = await service.list_invoices(page, page_size, status_filter, client_id)

    return InvoiceList(items=invoices, total=total, page=page, page_size=page_size)


@router.patch("/{invoice_id}", response_model=Invoice)
async def update_invoice(
    invoice_id: UUID,
    update_data: InvoiceUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_admin),
) -> Invoice:
    """Update a draft invoice. Sent and paid invoices are read-only."""
    service = InvoiceService(db)
    invoice = await service.update_invoice(invoice_id, update_data)
    await db.commit()
    return invoice


@router.post("/{invoice_id}/send", response_model=Invoice)
async def send_invoice(
    invoice_id: UUID,
    db: AsyncSession = Depends(get_db),
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
    current_user: dict = Depends(require_admin),
) -> Invoice:
    """
    Send a draft invoice.

    Assigns the next invoice number of the current year (YYYY-NNN), creates
    a Stripe payment link for the total and moves the invoice to pending.
    """
    service = InvoiceService(db, stripe_adapter)
    invoice = await service.send_invoice(invoice_id)
    await db.commit()
    return invoice


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_invoice(
    invoice_id: UUID,
    db: AsyncSession = Depends(get_db),
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
    current_user: dict = Depends(require_admin),
) -> Response:
    """Delete a draft or pending invoice. A pending invoice's payment link is deactivated."""
    service = InvoiceService(db, stripe_adapter)
    await service.delete_invoice(invoice_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
