"""Main FastAPI application for the Receivables Lifecycle Service."""

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from receivables.api.collections import router as collections_router
from receivables.api.health import router as health_router
from receivables.api.imports import router as imports_router
from receivables.api.settlements import router as settlements_router
from receivables.core.config import get_settings
from receivables.core.exceptions import BaseAPIException, ReceivablesError, map_domain_error
from receivables.core.logging import get_correlation_id, get_logger, setup_logging
from receivables.core.middleware import CorrelationIDMiddleware

settings = get_settings()

# Initialize logging
setup_logging(settings.log_level)
logger = get_logger(__name__)

app = FastAPI(
    title="Receivables Lifecycle Service",
    description="Import reconciliation, settlements, notary workflow and collection scheduling for receivables",
    version=settings.service_version,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(CorrelationIDMiddleware)

if settings.enable_cors:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(imports_router)
app.include_router(settlements_router)
app.include_router(collections_router)
app.include_router(health_router)


@app.exception_handler(BaseAPIException)
async def api_exception_handler(request: Request, exc: BaseAPIException):
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(exc.to_dict()),
        headers=exc.headers,
    )


@app.exception_handler(ReceivablesError)
async def domain_exception_handler(request: Request, exc: ReceivablesError):
    """Translate domain errors raised by the services to HTTP responses."""
    api_error = map_domain_error(exc)
    if get_correlation_id():
        api_error.correlation_id = get_correlation_id()
    log = logger.error if getattr(exc, "partially_applied", False) else logger.warning
    log(
        "Request rejected",
        error_code=exc.error_code,
        error_message=exc.detail,
        path=request.url.path,
    )
    return JSONResponse(status_code=api_error.status_code, content=jsonable_encoder(api_error.to_dict()))


@app.on_event("startup")
async def startup_event():
    logger.info("Starting Receivables Lifecycle Service", version=settings.service_version)


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down Receivables Lifecycle Service")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "receivables.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
