"""Product/service catalog router.

Endpoints:
    GET    /api/catalog/          List catalog items
    POST   /api/catalog/          Create or update an item
    DELETE /api/catalog/{id}      Delete an item
"""

from fastapi import APIRouter, Depends, status

from app.auth.deps import get_current_account, get_gateway
from app.middleware.exceptions import (
    BusinessLogicError,
    PersistenceUnavailableError,
    ResourceNotFoundError,
)
from app.schemas.catalog import CatalogItemIn, CatalogItemOut
from app.services.gateway import PersistenceGateway

router = APIRouter()


@router.get("/", response_model=list[CatalogItemOut])
async def list_catalog(
    account_id: str = Depends(get_current_account),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    items = await gateway.fetch_catalog(account_id)
    if items is None:
        raise PersistenceUnavailableError()
    return items


@router.post("/", response_model=CatalogItemOut, status_code=status.HTTP_201_CREATED)
async def save_catalog_item(
    body: CatalogItemIn,
    account_id: str = Depends(get_current_account),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    result = await gateway.save_catalog_item(account_id, body)
    if not result.reachable:
        raise PersistenceUnavailableError()
    if not result.ok:
        raise BusinessLogicError(result.error or "Could not save item", error_code="CATALOG_ITEM_NOT_SAVED")
    return CatalogItemOut(**body.model_dump())


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_catalog_item(
    item_id: str,
    account_id: str = Depends(get_current_account),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    result = await gateway.delete_catalog_item(account_id, item_id)
    if not result.reachable:
        raise PersistenceUnavailableError()
    if not result.found:
        raise ResourceNotFoundError("Catalog item", item_id)
    if not result.ok:
        raise BusinessLogicError(result.error or "Could not delete item", error_code="CATALOG_ITEM_NOT_DELETED")
