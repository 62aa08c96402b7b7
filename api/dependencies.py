"""
FastAPI dependencies: database sessions, caller identity and upload checks.
"""

import logging
from pathlib import Path
from typing import Generator

from fastapi import Header, HTTPException, status
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from api.config import settings

logger = logging.getLogger(__name__)

engine = create_engine(
    settings.DATABASE_URL,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_pre_ping=True,
    echo=settings.DEBUG
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    x_api_key: str = Header(None, alias=settings.API_KEY_HEADER)
) -> str:
    """
    Identify the caller by API key; "public" when key auth is disabled.

    The value is recorded on cancel requests so the job log shows who
    stopped an import.
    """
    if not settings.ENABLE_API_KEY_AUTH:
        return "public"
    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required",
            headers={"WWW-Authenticate": "ApiKey"}
        )
    return x_api_key


def verify_file_size(file_size: int) -> bool:
    limit = settings.MAX_FILE_SIZE_MB * 1024 * 1024
    if file_size > limit:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Export is {file_size / 1024 / 1024:.1f} MB; "
                   f"the limit is {settings.MAX_FILE_SIZE_MB} MB"
        )
    return True


def verify_file_extension(filename: str) -> bool:
    """Accept only the csv and workbook formats the row source can read."""
    ext = Path(filename or '').suffix.lower()
    allowed = [e.lower() for e in settings.ALLOWED_EXTENSIONS]
    if ext not in allowed:
        logger.info(f"Rejected upload {filename!r}: extension {ext or '(none)'}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot import '{ext or filename}' files. Upload one of: {', '.join(allowed)}"
        )
    return True
