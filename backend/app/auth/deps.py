"""FastAPI dependencies for identity and shared services.

Dependencies:
  get_current_account  → decode JWT, return the account id (``sub``)
  get_gateway          → the PersistenceGateway created at startup
  get_document_service → DocumentService bound to the gateway and the
                         process-wide PendingSyncQueue
  get_ai_client        → AIClient built from settings
  get_ai_keys          → per-account provider keys from request headers
"""

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from app.auth.jwt import decode_token
from app.config import settings
from app.middleware.exceptions import ConfigurationError
from app.services.ai import AIClient, AIKeys
from app.services.documents import DocumentService
from app.services.gateway import PersistenceGateway

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token")


# ── Identity ────────────────────────────────────────────────

async def get_current_account(token: str = Depends(oauth2_scheme)) -> str:
    payload = decode_token(token)
    account_id: str | None = payload.get("sub")
    if not account_id or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return account_id


# ── Services ────────────────────────────────────────────────

def get_gateway(request: Request) -> PersistenceGateway:
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise ConfigurationError(
            "Database is not configured. Set DATABASE_URL.",
            error_code="DATABASE_NOT_CONFIGURED",
        )
    return gateway


def get_document_service(
    request: Request,
    gateway: PersistenceGateway = Depends(get_gateway),
) -> DocumentService:
    return DocumentService(
        gateway,
        queue=request.app.state.pending_sync,
        default_currency=settings.default_currency,
    )


def get_ai_client(request: Request) -> AIClient:
    client = getattr(request.app.state, "ai_client", None)
    return client if client is not None else AIClient.from_settings(settings)


async def get_ai_keys(
    x_gemini_api_key: str | None = Header(None),
    x_openai_api_key: str | None = Header(None),
) -> AIKeys:
    return AIKeys(gemini=x_gemini_api_key, openai=x_openai_api_key)
