"""AI assistant router.

Endpoints:
    POST /api/ai/parse                 Free text → invoice/quote fields
    POST /api/ai/discount              Discount recommendation
    POST /api/ai/catalog-suggestions   Catalog items for a business
    POST /api/ai/enhance               Better product description
    POST /api/ai/price-analysis        Market price range for an item
    POST /api/ai/receipt               Receipt photo → expense fields

All endpoints answer 403 AI_FEATURE_LOCKED when no provider key exists
(server key or X-Gemini-Api-Key / X-OpenAI-Api-Key header).
"""

from fastapi import APIRouter, Depends

from app.auth.deps import get_ai_client, get_ai_keys, get_current_account
from app.middleware.exceptions import AIUnavailableError
from app.schemas.ai import (
    CatalogSuggestionRequest,
    DiscountRecommendation,
    DiscountRequest,
    EnhanceRequest,
    EnhanceResult,
    ParsedInvoiceRequest,
    ParsedReceipt,
    ParseRequest,
    PriceAnalysis,
    PriceAnalysisRequest,
    ReceiptImage,
)
from app.schemas.catalog import CatalogItemIn
from app.services.ai import AIClient, AIKeys

router = APIRouter()


@router.post("/parse", response_model=ParsedInvoiceRequest)
async def parse_request(
    body: ParseRequest,
    _account_id: str = Depends(get_current_account),
    client: AIClient = Depends(get_ai_client),
    keys: AIKeys = Depends(get_ai_keys),
):
    parsed = await client.parse_invoice_request(body.text, keys=keys)
    if parsed is None:
        raise AIUnavailableError()
    return parsed


@router.post("/discount", response_model=DiscountRecommendation)
async def recommend_discount(
    body: DiscountRequest,
    _account_id: str = Depends(get_current_account),
    client: AIClient = Depends(get_ai_client),
    keys: AIKeys = Depends(get_ai_keys),
):
    recommendation = await client.recommend_discount(body.amount, body.client_name, keys=keys)
    if recommendation is None:
        raise AIUnavailableError()
    return recommendation


@router.post("/catalog-suggestions", response_model=list[CatalogItemIn])
async def suggest_catalog_items(
    body: CatalogSuggestionRequest,
    _account_id: str = Depends(get_current_account),
    client: AIClient = Depends(get_ai_client),
    keys: AIKeys = Depends(get_ai_keys),
):
    return await client.suggest_catalog_items(body.business_description, keys=keys)


@router.post("/enhance", response_model=EnhanceResult)
async def enhance_description(
    body: EnhanceRequest,
    _account_id: str = Depends(get_current_account),
    client: AIClient = Depends(get_ai_client),
    keys: AIKeys = Depends(get_ai_keys),
):
    text = await client.enhance_description(body.name, body.description, body.format, keys=keys)
    return EnhanceResult(description=text)


@router.post("/price-analysis", response_model=PriceAnalysis)
async def analyze_price(
    body: PriceAnalysisRequest,
    _account_id: str = Depends(get_current_account),
    client: AIClient = Depends(get_ai_client),
    keys: AIKeys = Depends(get_ai_keys),
):
    analysis = await client.analyze_price(body.item_name, body.country, keys=keys)
    if analysis is None:
        raise AIUnavailableError()
    return analysis


@router.post("/receipt", response_model=ParsedReceipt)
async def parse_receipt(
    body: ReceiptImage,
    _account_id: str = Depends(get_current_account),
    client: AIClient = Depends(get_ai_client),
    keys: AIKeys = Depends(get_ai_keys),
):
    receipt = await client.parse_receipt(body, keys=keys)
    if receipt is None:
        raise AIUnavailableError()
    return receipt
