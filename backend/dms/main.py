"""FastAPI application for invoicing and delivery logs."""

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dms.api.routes.delivery_logs import router as delivery_logs_router
from dms.api.routes.invoices import router as invoices_router
from dms.core.config import settings
from dms.core.db import engine, get_session
from dms.core.errors import DmsError, dms_error_handler
from dms.core.logging import setup_logging
from dms.core.middleware import (
    REQUEST_ID_HEADER,
    BodySizeLimitMiddleware,
    RequestContextLogMiddleware,
)

setup_logging()

app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG)
app.add_exception_handler(DmsError, dms_error_handler)
app.add_middleware(RequestContextLogMiddleware)


def _cors_origins() -> list[str]:
    if settings.ENV != "prod":
        return settings.CORS_ALLOWED_ORIGINS or ["http://localhost:5173"]
    if not settings.CORS_ALLOWED_ORIGINS:
        raise RuntimeError("CORS_ALLOWED_ORIGINS must be configured for prod")
    return settings.CORS_ALLOWED_ORIGINS


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", REQUEST_ID_HEADER],
    expose_headers=[REQUEST_ID_HEADER],
)
app.add_middleware(BodySizeLimitMiddleware)
# NDJSON sync streams are compressed too once they pass the threshold.
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.on_event("startup")
async def startup_event():
    logger.bind(env=settings.ENV, dialect=engine.dialect.name).info("app_started")


@app.on_event("shutdown")
async def shutdown_event():
    await engine.dispose()


@app.get("/api/healthz", tags=["system"], summary="Liveness probe")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/readyz", tags=["system"], summary="Readiness probe")
async def readyz(session: AsyncSession = Depends(get_session)):
    """Ready once the database answers a trivial query."""

    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("readiness_check_failed")
        raise HTTPException(status_code=503, detail="Database not reachable")
    return {"ready": True, "dialect": engine.dialect.name}


app.include_router(invoices_router, prefix="/api")
app.include_router(delivery_logs_router, prefix="/api")
