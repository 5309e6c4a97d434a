"""Expense provider registry router.

Endpoints:
    GET   /api/providers/          List providers
    POST  /api/providers/          Save a provider
"""

from fastapi import APIRouter, Depends, status

from app.auth.deps import get_current_account, get_gateway
from app.middleware.exceptions import BusinessLogicError, PersistenceUnavailableError
from app.schemas.client import ProviderIn, ProviderOut, provider_id_for
from app.services.gateway import PersistenceGateway

router = APIRouter()


@router.get("/", response_model=list[ProviderOut])
async def list_providers(
    account_id: str = Depends(get_current_account),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    providers = await gateway.fetch_providers(account_id)
    if providers is None:
        raise PersistenceUnavailableError()
    return providers


@router.post("/", response_model=ProviderOut, status_code=status.HTTP_201_CREATED)
async def save_provider(
    body: ProviderIn,
    account_id: str = Depends(get_current_account),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    """Create or update a provider.  Fields left empty keep their stored values."""
    body = body.model_copy(update={"id": body.id or provider_id_for(account_id, body.name)})
    result = await gateway.save_provider(account_id, body)
    if not result.reachable:
        raise PersistenceUnavailableError()
    if not result.ok:
        raise BusinessLogicError(result.error or "Could not save provider", error_code="PROVIDER_NOT_SAVED")
    return ProviderOut(**body.model_dump())
