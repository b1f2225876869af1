"""Client API endpoints."""
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from studio_billing.api.deps import get_db, require_admin
from studio_billing.schemas.client import Client, ClientCreate, ClientList
from studio_billing.services.client_service import ClientService

router = APIRouter(prefix="/clients", tags=["Clients"])


@router.post("", response_model=Client, status_code=status.HTTP_201_CREATED)
async def create_client(
    client_data: ClientCreate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_admin),
) -> Client:
    """
    Create a new client.

    - **name**: Client name (required)
    - **email**: Billing email, unique per client (required)
    - **company**, **phone**, **notes**: Optional contact details
    """
    service = ClientService(db)
    client = await service.create_client(client_data)
    await db.commit()
    return client


@router.get("/{client_id}", response_model=Client)
async def get_client(
    client_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_admin),
) -> Client:
    """Get client by ID."""
    service = ClientService(db)
    client = await service.get_client(client_id)

    if not client:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Client {client_id} not found",
        )

    return client


@router.get("", response_model=ClientList)
async def list_clients(
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_admin),
) -> ClientList:
    """List all clients ordered by name."""
    service = ClientService(db)
    clients, total = await service.list_clients()
    return ClientList(items=clients, total=total)
