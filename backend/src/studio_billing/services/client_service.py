"""Client service for business logic."""
from uuid import UUID

import structlog
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from studio_billing.exceptions import BillingValidationError
from studio_billing.models.client import Client
from studio_billing.schemas.client import ClientCreate
from studio_billing.services.transitions import apply_transition

logger = structlog.get_logger(__name__)


class ClientService:
    """Service layer for client operations."""

    def __init__(self, db: AsyncSession):
        """Initialize client service with database session."""
        self.db = db

    async def create_client(self, client_data: ClientCreate) -> Client:
        """
        Create a new client.

        Args:
            client_data: Client creation data

        Returns:
            Created client

        Raises:
            BillingValidationError: If a client with this email already exists
        """
        existing = await self.get_client_by_email(client_data.email)
        if existing:
            raise BillingValidationError(
                f"Client with email {client_data.email} already exists",
                details={"client_id": str(existing.id)},
            )

        client = Client(**client_data.model_dump())
        self.db.add(client)
        await self.db.flush()
        await self.db.refresh(client)

        logger.info("client_created", client_id=str(client.id))
        return client

    async def get_client(self, client_id: UUID) -> Client | None:
        """Get client by ID."""
        result = await self.db.execute(select(Client).where(Client.id == client_id))
        return result.scalar_one_or_none()

    async def get_client_by_email(self, email: str) -> Client | None:
        """Get client by email address."""
        result = await self.db.execute(select(Client).where(Client.email == email))
        return result.scalar_one_or_none()

    async def list_clients(self) -> tuple[list[Client], int]:
        """
        List all clients ordered by name.

        Returns:
            Tuple of (clients list, total count)
        """
        count_result = await self.db.execute(select(func.count()).select_from(Client))
        total = count_result.scalar_one()

        result = await self.db.execute(select(Client).order_by(Client.name))
        return list(result.scalars().all()), total

    async def remember_customer_id(self, client_id: UUID, stripe_customer_id: str) -> None:
        """Store the resolved gateway customer on the client row, if the client is known."""
        await apply_transition(
            self.db,
            Client,
            client_id,
            Client.stripe_customer_id.is_(None),
            stripe_customer_id=stripe_customer_id,
        )
