import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from invoice_ledger.api.v1.extraction import router as extraction_router
from invoice_ledger.api.v1.management import router as management_router
from invoice_ledger.api.v1.query import router as query_router
from invoice_ledger.core.config import get_settings
from invoice_ledger.core.dependencies import SessionLocal, engine, init_schema
from invoice_ledger.core.errors import ConflictError, InvalidMovementError, InvoiceLedgerError, NotFoundError
from invoice_ledger.services.ai.retrieval.service import rebuild_index

settings = get_settings()


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Invoice Ledger API",
    version="0.3.0",
    docs_url="/docs" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.openapi_enabled else None,
)


@app.on_event("startup")
async def _startup():
    if engine is None:
        logger.warning("DATABASE_URL is not configured; database endpoints will fail")
        return
    if settings.auto_create_schema:
        init_schema(engine)
    if settings.rag_index_on_startup and SessionLocal is not None:
        db = SessionLocal()
        try:
            await rebuild_index(db)
        except InvoiceLedgerError as exc:
            logger.warning("Skipping startup vector index rebuild: %s", exc.message)
        except Exception:
            logger.exception("Startup vector index rebuild failed")
        finally:
            db.close()


if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

app.include_router(extraction_router, tags=["extraction"])
app.include_router(query_router, tags=["query"])
app.include_router(management_router, prefix="/api", tags=["management"])


@app.exception_handler(NotFoundError)
async def _not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": exc.message})


@app.exception_handler(ConflictError)
async def _conflict_handler(request: Request, exc: ConflictError):
    return JSONResponse(status_code=409, content={"detail": exc.message})


@app.exception_handler(InvalidMovementError)
async def _invalid_movement_handler(request: Request, exc: InvalidMovementError):
    return JSONResponse(status_code=422, content={"detail": exc.message})


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Hide internal details for 5xx unless explicitly enabled.
    if exc.status_code >= 500 and not settings.expose_error_details:
        return JSONResponse(status_code=exc.status_code, content={"detail": "Erro interno do servidor"})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception")
    if settings.expose_error_details:
        return JSONResponse(status_code=500, content={"detail": str(exc)})
    return JSONResponse(status_code=500, content={"detail": "Erro interno do servidor"})


@app.get("/health")
async def health_check():
    return {"status": "ok"}


@app.get("/test")
async def service_check():
    current = get_settings()
    return {
        "status": "ok",
        "service": "Invoice Ledger API",
        "gemini_key_configured": current.gemini_configured,
    }
