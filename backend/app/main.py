import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import DatabaseConfig, settings
from app.middleware.exceptions import ConfigurationError, register_exception_handlers
from app.routers import ai, catalog, clients, documents, health, providers
from app.services.ai import AIClient
from app.services.documents import PendingSyncQueue
from app.services.gateway import PersistenceGateway

logger = logging.getLogger("konsul.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the persistence gateway on startup and release it on shutdown.

    A missing or unsupported DATABASE_URL does not stop the API: document
    endpoints answer 403 DATABASE_NOT_CONFIGURED until it is fixed.
    """
    app.state.pending_sync = PendingSyncQueue()
    app.state.ai_client = AIClient.from_settings(settings)
    try:
        app.state.gateway = PersistenceGateway.init(DatabaseConfig.from_settings(settings))
    except ConfigurationError as e:
        logger.error("Persistence disabled: %s", e.message)
        app.state.gateway = None

    yield

    if app.state.gateway is not None:
        if len(app.state.pending_sync):
            logger.warning(
                "Shutting down with %d unsynced documents", len(app.state.pending_sync)
            )
        await app.state.gateway.dispose()


app = FastAPI(
    title="Konsul Bills",
    description="Invoices, quotes and expenses for freelancers and small businesses",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(documents.router, prefix="/api/documents", tags=["documents"])
app.include_router(clients.router, prefix="/api/clients", tags=["clients"])
app.include_router(catalog.router, prefix="/api/catalog", tags=["catalog"])
app.include_router(providers.router, prefix="/api/providers", tags=["providers"])
app.include_router(ai.router, prefix="/api/ai", tags=["ai"])
