"""Client registry router.

Endpoints:
    GET   /api/clients/          List clients and prospects
    POST  /api/clients/          Save a client or prospect
"""

from fastapi import APIRouter, Depends, status

from app.auth.deps import get_current_account, get_gateway
from app.middleware.exceptions import BusinessLogicError, PersistenceUnavailableError
from app.schemas.client import ClientIn, ClientOut, client_id_for
from app.services.gateway import PersistenceGateway

router = APIRouter()


@router.get("/", response_model=list[ClientOut])
async def list_clients(
    account_id: str = Depends(get_current_account),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    """Clients and prospects, sorted by name."""
    clients = await gateway.fetch_clients(account_id)
    if clients is None:
        raise PersistenceUnavailableError()
    return clients


@router.post("/", response_model=ClientOut, status_code=status.HTTP_201_CREATED)
async def save_client(
    body: ClientIn,
    account_id: str = Depends(get_current_account),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    """Create or update a contact.  Saving as CLIENT promotes a prospect."""
    body = body.model_copy(update={"id": body.id or client_id_for(account_id, body.name)})
    result = await gateway.save_client(account_id, body)
    if not result.reachable:
        raise PersistenceUnavailableError()
    if not result.ok:
        raise BusinessLogicError(result.error or "Could not save client", error_code="CLIENT_NOT_SAVED")
    return ClientOut(**body.model_dump())
