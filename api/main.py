"""
FastAPI application for OrderBridge.

Serves the order import endpoints (preview, upload, job status, cancel)
and the progress WebSocket; the imports themselves run in Celery workers.
"""

import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime

import redis
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from api.config import settings
from api.routers import import_router, websocket
from api.schemas.common import ErrorResponse, HealthCheckResponse
from backend.models.schema import Base
from services.errors import HeaderMappingError, OrderImportError

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT,
    handlers=[
        logging.FileHandler(settings.LOG_FILE),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)

engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.API_TITLE} v{settings.API_VERSION}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[-1]}")  # Hide credentials
    logger.info(
        f"Import batches: {settings.ORDER_BATCH_SIZE} orders, "
        f"{settings.LINE_BATCH_SIZE} lines; snapshot page size {settings.SNAPSHOT_PAGE_SIZE}"
    )

    try:
        # Job tables register on the same metadata when backend.models is imported
        import backend.models  # noqa: F401
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables verified")
    except SQLAlchemyError as e:
        logger.error(f"Database initialization failed: {e}")

    os.makedirs(settings.TEMP_UPLOAD_DIR, exist_ok=True)

    yield

    logger.info("Shutting down application")


app = FastAPI(
    title=settings.API_TITLE,
    description=settings.API_DESCRIPTION,
    version=settings.API_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS
)


def _error(request: Request, code: int, error: str, detail=None) -> JSONResponse:
    return JSONResponse(
        status_code=code,
        content=ErrorResponse(error=error, detail=detail, path=str(request.url)).model_dump(mode='json')
    )


@app.exception_handler(HeaderMappingError)
async def header_mapping_exception_handler(request: Request, exc: HeaderMappingError):
    """Reject unusable header mappings before any import work starts."""
    logger.warning(f"Rejected header mapping: {exc}")
    return _error(request, status.HTTP_400_BAD_REQUEST, "Invalid header mapping", {"message": str(exc)})


@app.exception_handler(OrderImportError)
async def order_import_exception_handler(request: Request, exc: OrderImportError):
    logger.warning(f"Import request rejected: {exc}")
    return _error(request, status.HTTP_422_UNPROCESSABLE_ENTITY, "Import error", {"message": str(exc)})


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return _error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error",
                  {"message": str(exc)} if settings.DEBUG else None)


app.include_router(import_router.router, prefix=settings.API_PREFIX)
app.include_router(websocket.router)


@app.get('/', include_in_schema=False)
async def root():
    return {
        'service': settings.API_TITLE,
        'version': settings.API_VERSION,
        'upload': f'{settings.API_PREFIX}/import/upload',
        'accepted_files': settings.ALLOWED_EXTENSIONS,
        'docs': '/docs'
    }


def _database_status() -> str:
    try:
        with SessionLocal() as session:
            session.execute(text('SELECT 1'))
        return 'connected'
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return 'disconnected'


def _redis_status() -> str:
    try:
        redis.Redis.from_url(settings.REDIS_URL).ping()
        return 'connected'
    except RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return 'disconnected'


def _worker_status() -> str:
    from tasks.celery_app import celery_app

    try:
        replies = celery_app.control.ping(timeout=1.0)
    except (OSError, RedisError) as e:
        logger.error(f"Celery health check failed: {e}")
        return 'unknown'
    return f'active ({len(replies)} workers)' if replies else 'no workers'


@app.get('/health', response_model=HealthCheckResponse, tags=['health'])
async def health_check():
    """
    Report database, Redis and import-worker connectivity.

    The database is required; Redis and workers only degrade the service,
    since imports queue until a worker picks them up.
    """
    database = _database_status()
    broker = _redis_status()
    workers = _worker_status()

    overall = 'healthy'
    if broker != 'connected' or not workers.startswith('active'):
        overall = 'degraded'
    if database != 'connected':
        overall = 'unhealthy'

    return HealthCheckResponse(
        status=overall,
        timestamp=datetime.utcnow(),
        version=settings.API_VERSION,
        database=database,
        redis=broker,
        celery=workers
    )


@app.get('/api/ping', tags=['health'])
async def ping():
    return {'ping': 'pong'}


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - started) * 1000
    logger.info(f"{request.method} {request.url.path} - {response.status_code} ({elapsed:.0f} ms)")
    return response


if __name__ == '__main__':
    import uvicorn

    uvicorn.run(
        'api.main:app',
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_level=settings.LOG_LEVEL.lower()
    )
