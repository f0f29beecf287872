from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from maestro_crm.config import get_settings
from maestro_crm.dependencies.services import resolve_store

from maestro_crm.health import router as health_router
from maestro_crm.store_view import router as store_router
from maestro_crm.tools.billing import router as billing_router
from maestro_crm.tools.knowledge import router as knowledge_router
from maestro_crm.tools.quotes import router as quotes_router
from maestro_crm.tools.service_requests import router as service_requests_router
from maestro_crm.tools.users import router as users_router


def configure_logging() -> None:
    """Ensure application logs use the INFO level by default."""
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    else:
        root_logger.setLevel(logging.INFO)


configure_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    settings_snapshot = settings.model_dump(
        exclude={"store_token", "google_api_key"},
    )
    logger.info("Application settings on startup: %s", settings_snapshot)

    store = resolve_store(settings)
    logger.info("Application startup complete (store: %s).", type(store).__name__)

    try:
        yield
    finally:
        logger.info("Closing document store.")
        await store.close()
        logger.info("Application shutdown complete.")


settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    lifespan=lifespan,
    redirect_slashes=False,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin).rstrip("/") for origin in settings.cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(service_requests_router, prefix="/api/service-requests")
app.include_router(quotes_router, prefix="/api/quotes")
app.include_router(users_router, prefix="/api/users")
app.include_router(billing_router, prefix="/api/billing")
app.include_router(knowledge_router, prefix="/api/knowledge")
app.include_router(health_router)
app.include_router(store_router)
