from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api_routers.v1 import api_router
from app.platform.cache.store import get_store
from app.platform.config import settings
from app.platform.db.session import init_models
from app.platform.exceptions import add_exception_handlers
from app.platform.logger import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()
    # logs the shared-state caveat once when running without Redis
    get_store()
    logger.info(
        f"{settings.APP_NAME} started (env={settings.ENVIRONMENT}, "
        f"execution_mode={settings.SCAN_EXECUTION_MODE})"
    )
    yield


app = FastAPI(
    title="Accessibility Scan API",
    description="Automated WCAG accessibility audits for a single page per domain",
    version="1.0.0",
    lifespan=lifespan,
)


# Root endpoint for basic info
@app.get("/", tags=["Info"])
def root():
    return {
        "app_name": settings.APP_NAME,
        "description": "Request an accessibility audit of a domain and receive a scored report.",
        "version": "1.0.0",
        "docs_url": "/docs",
        "api_base": "/api/v1",
    }


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_exception_handlers(app)

app.include_router(api_router, prefix="/api/v1")
