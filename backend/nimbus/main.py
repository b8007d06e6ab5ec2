"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from nimbus.config import settings
from nimbus.database import engine, get_db
from nimbus.exceptions import NimbusError
from nimbus.models import Base
from nimbus.services.file_storage import file_storage

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, prepare the blob root and sweep stale temp archives."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await file_storage.ensure_dir()
    await file_storage.purge_temp(settings.TEMP_MAX_AGE_SECONDS)
    logger.info(f"Blob store ready at {file_storage.base_path}")

    yield

    await engine.dispose()


app = FastAPI(
    title="Nimbus Drive API",
    version="1.0.0",
    description="File storage, folder hierarchy and archive download backend.",
    lifespan=lifespan,
)

# CORS
origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "Content-Length"],
)


@app.exception_handler(NimbusError)
async def nimbus_error_handler(request: Request, exc: NimbusError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message},
    )


@app.get("/api/health")
async def health_check():
    """Verify API and database connectivity."""
    try:
        async for db in get_db():
            await db.execute(text("SELECT 1"))
            return {"status": "ok", "database": "connected"}
    except Exception as e:
        return {"status": "error", "database": str(e)}


# Register routers
from nimbus.routes.files import router as files_router
from nimbus.routes.folders import router as folders_router
from nimbus.routes.favorites import router as favorites_router
from nimbus.routes.storage import router as storage_router
from nimbus.routes.tags import router as tags_router
app.include_router(files_router)
app.include_router(folders_router)
app.include_router(favorites_router)
app.include_router(storage_router)
app.include_router(tags_router)
