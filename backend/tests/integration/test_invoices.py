"""Integration tests for invoice endpoints and invoice numbering."""
from datetime import datetime
from decimal import Decimal
from uuid import UUID

import pytest
from fastapi.encoders import jsonable_encoder
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from studio_billing.exceptions import InvalidStateError
from studio_billing.models.invoice import Invoice, InvoiceStatus
from studio_billing.schemas.invoice import InvoiceCreate
from studio_billing.services.invoice_service import InvoiceService
from studio_billing.services.transitions import apply_transition
from utils.factories import InvoiceFactory


async def create_invoice(async_client: AsyncClient, headers: dict, overrides: dict | None = None) -> dict:
    response = await async_client.post(
        "/v1/invoices", json=jsonable_encoder(InvoiceFactory.create(overrides)), headers=headers
    )
    assert response.status_code == 201
    return response.json()


class TestDraftInvoices:
    """Creating and editing drafts."""

    @pytest.mark.asyncio
    async def test_create_invoice_computes_totals(self, async_client: AsyncClient, admin_headers):
        invoice = await create_invoice(async_client, admin_headers)

        assert invoice["status"] == "draft"
        assert invoice["invoice_number"] is None
        assert invoice["payment_link"] is None
        assert invoice["subtotal_cents"] == 100000
        assert invoice["total_cents"] == 100000
        assert [item["total_cents"] for item in invoice["line_items"]] == [85000, 15000]
        assert Decimal(str(invoice["line_items"][0]["quantity"])) == Decimal("10")

    @pytest.mark.asyncio
    async def test_update_draft_recomputes_totals(self, async_client: AsyncClient, admin_headers):
        invoice = await create_invoice(async_client, admin_headers)

        response = await async_client.patch(
            f"/v1/invoices/{invoice['id']}",
            json={"line_items": [{"description": "Logo", "quantity": "2.5", "unit_price": "40.00"}], "notes": "Revised"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        updated = response.json()
        assert updated["total_cents"] == 10000
        assert updated["notes"] == "Revised"
        assert len(updated["line_items"]) == 1

    @pytest.mark.asyncio
    async def test_invoice_without_line_items_is_rejected(self, async_client: AsyncClient, admin_headers):
        data = InvoiceFactory.create({"line_items": []})

        response = await async_client.post("/v1/invoices", json=jsonable_encoder(data), headers=admin_headers)

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_get_missing_invoice(self, async_client: AsyncClient, admin_headers):
        response = await async_client.get("/v1/invoices/00000000-0000-0000-0000-000000000000", headers=admin_headers)

        assert response.status_code == 404


class TestSendInvoice:
    """Sending assigns the number and the payment link."""

    @pytest.mark.asyncio
    async def test_send_assigns_number_and_link(self, async_client: AsyncClient, admin_headers, stripe_adapter):
        invoice = await create_invoice(async_client, admin_headers)

        response = await async_client.post(f"/v1/invoices/{invoice['id']}/send", headers=admin_headers)

        assert response.status_code == 200
        sent = response.json()
        year = datetime.utcnow().year
        assert sent["status"] == "pending"
        assert sent["invoice_number"] == f"{year}-001"
        assert sent["payment_link"].startswith("https://buy.stripe.test/")
        assert sent["sent_at"] is not None
        assert sent["due_date"] is not None

        link = stripe_adapter.called("create_invoice_payment_link")[0]
        assert link["invoice_id"] == invoice["id"]
        assert link["invoice_number"] == f"{year}-001"
        assert link["amount"] == 100000

    @pytest.mark.asyncio
    async def test_numbers_are_sequential_per_year(self, db_session: AsyncSession, stripe_adapter):
        """Numbers count up within a year and restart at 001 in the next one."""
        service = InvoiceService(db_session, stripe_adapter)
        drafts = [
            await service.create_invoice(InvoiceCreate(**InvoiceFactory.create()))
            for _ in range(3)
        ]
        await db_session.commit()

        first = await service.send_invoice(drafts[0].id, now=datetime(2025, 12, 30, 9, 0))
        second = await service.send_invoice(drafts[1].id, now=datetime(2025, 12, 31, 17, 0))
        third = await service.send_invoice(drafts[2].id, now=datetime(2026, 1, 2, 8, 0))

        assert [first.invoice_number, second.invoice_number, third.invoice_number] == [
            "2025-001",
            "2025-002",
            "2026-001",
        ]
        assert second.due_date == datetime(2026, 1, 14, 17, 0)

    @pytest.mark.asyncio
    async def test_send_twice_is_rejected(self, async_client: AsyncClient, admin_headers, stripe_adapter):
        invoice = await create_invoice(async_client, admin_headers)
        await async_client.post(f"/v1/invoices/{invoice['id']}/send", headers=admin_headers)

        response = await async_client.post(f"/v1/invoices/{invoice['id']}/send", headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["details"][0]["code"] == "invalid_state_transition"
        assert len(stripe_adapter.called("create_invoice_payment_link")) == 1

    @pytest.mark.asyncio
    async def test_send_without_email_is_rejected(self, async_client: AsyncClient, admin_headers, stripe_adapter):
        invoice = await create_invoice(async_client, admin_headers, {"client_email": None})

        response = await async_client.post(f"/v1/invoices/{invoice['id']}/send", headers=admin_headers)

        assert response.status_code == 400
        assert stripe_adapter.calls == []

    @pytest.mark.asyncio
    async def test_gateway_failure_keeps_draft(self, async_client: AsyncClient, admin_headers, stripe_adapter):
        invoice = await create_invoice(async_client, admin_headers)
        stripe_adapter.fail_on.add("create_invoice_payment_link")

        response = await async_client.post(f"/v1/invoices/{invoice['id']}/send", headers=admin_headers)

        assert response.status_code == 502
        current = await async_client.get(f"/v1/invoices/{invoice['id']}", headers=admin_headers)
        assert current.json()["status"] == "draft"
        assert current.json()["invoice_number"] is None

    @pytest.mark.asyncio
    async def test_editing_sent_invoice_is_rejected(self, async_client: AsyncClient, admin_headers):
        invoice = await create_invoice(async_client, admin_headers)
        await async_client.post(f"/v1/invoices/{invoice['id']}/send", headers=admin_headers)

        response = await async_client.patch(
            f"/v1/invoices/{invoice['id']}", json={"notes": "Too late"}, headers=admin_headers
        )

        assert response.status_code == 400


class TestDeleteInvoice:
    """Tests for DELETE /v1/invoices/{id}."""

    @pytest.mark.asyncio
    async def test_delete_draft(self, async_client: AsyncClient, admin_headers, stripe_adapter):
        invoice = await create_invoice(async_client, admin_headers)

        response = await async_client.delete(f"/v1/invoices/{invoice['id']}", headers=admin_headers)

        assert response.status_code == 204
        assert (await async_client.get(f"/v1/invoices/{invoice['id']}", headers=admin_headers)).status_code == 404
        assert stripe_adapter.called("deactivate_payment_link") == []

    @pytest.mark.asyncio
    async def test_delete_pending_deactivates_link(self, async_client: AsyncClient, admin_headers, stripe_adapter):
        invoice = await create_invoice(async_client, admin_headers)
        sent = (await async_client.post(f"/v1/invoices/{invoice['id']}/send", headers=admin_headers)).json()

        response = await async_client.delete(f"/v1/invoices/{invoice['id']}", headers=admin_headers)

        assert response.status_code == 204
        assert stripe_adapter.called("deactivate_payment_link") == [{"payment_link_id": sent["payment_link_id"]}]

    @pytest.mark.asyncio
    async def test_paid_invoice_cannot_be_deleted(self, db_session: AsyncSession, stripe_adapter):
        service = InvoiceService(db_session, stripe_adapter)
        invoice = await service.create_invoice(InvoiceCreate(**InvoiceFactory.create()))
        await apply_transition(
            db_session, Invoice, invoice.id, status=InvoiceStatus.PAID, paid_at=datetime(2026, 3, 1)
        )
        await db_session.commit()

        with pytest.raises(InvalidStateError):
            await service.delete_invoice(invoice.id)

        assert (await service.get_invoice(invoice.id)).status == InvoiceStatus.PAID


class TestListInvoices:
    """Tests for GET /v1/invoices."""

    @pytest.mark.asyncio
    async def test_list_filters_by_status_and_client(self, async_client: AsyncClient, admin_headers):
        first = await create_invoice(async_client, admin_headers)
        second = await create_invoice(async_client, admin_headers, {"client_id": first["client_id"]})
        await create_invoice(async_client, admin_headers)
        await async_client.post(f"/v1/invoices/{second['id']}/send", headers=admin_headers)

        by_client = await async_client.get("/v1/invoices", params={"client_id": first["client_id"]}, headers=admin_headers)
        pending = await async_client.get("/v1/invoices", params={"status": "pending"}, headers=admin_headers)

        assert by_client.json()["total"] == 2
        assert {item["id"] for item in by_client.json()["items"]} == {first["id"], second["id"]}
        assert pending.json()["total"] == 1
        assert UUID(pending.json()["items"][0]["id"]) == UUID(second["id"])
