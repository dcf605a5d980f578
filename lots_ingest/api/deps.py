"""
Dependencies for database sessions and access to the running pipeline.
"""
from typing import Generator
from fastapi import HTTPException, Request, status
from sqlalchemy.orm import Session
from lots_ingest.database import SessionLocal
from lots_ingest.runtime import ServiceContainer
from lots_ingest.utils import get_logger

logger = get_logger(__name__)

def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.
    Ensures proper session lifecycle management with automatic cleanup.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error("Database session error", error=str(e), exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()

def get_container(request: Request) -> ServiceContainer:
    """
    The service container built by the application lifespan.

    Raises:
        HTTPException: 503 when the pipeline has not been initialised
    """
    container = getattr(request.app.state, "container", None)
    if container is None:
        logger.error(
            "Pipeline container not initialized",
            request_id=request.headers.get("X-Request-ID", "unknown"),
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pipeline not initialized"
        )
    return container
