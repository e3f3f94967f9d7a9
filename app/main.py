from fastapi import FastAPI

from app.api.routes import blocklist_router, files_router, health_router
from app.core.config import settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware

configure_logging(settings.log)

app = FastAPI(
    title="Space File Guard API",
    description=(
        "Workspace file uploads behind a defense pipeline: extension blocklist, "
        "content signature checks, recursive archive inspection, and "
        "permission hardening of stored files."
    ),
    version="0.1.0",
    debug=settings.app.debug,
)
app.middleware("http")(request_id_middleware)

# Register global exception handlers
setup_exception_handlers(app)

app.include_router(files_router, prefix="/v1")
app.include_router(blocklist_router, prefix="/v1")
app.include_router(health_router)
