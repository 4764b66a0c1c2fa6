import logging
from typing import AsyncGenerator
from fastapi import HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from lifeline.database import async_session
from lifeline.exceptions import LifelineError
from lifeline.services.dispatch_worker import DispatchWorker

logger = logging.getLogger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database sessions.
    Properly manages session lifecycle to avoid connection conflicts.
    """
    session = None
    try:
        session = async_session()
        logger.debug("Database session created")

        yield session

        # Commit any pending transactions
        if session.in_transaction():
            await session.commit()
            logger.debug("Database transaction committed")

    except (HTTPException, LifelineError):
        if session and session.in_transaction():
            await session.rollback()
            logger.debug("Database transaction rolled back due to a handled error")
        raise

    except SQLAlchemyError as e:
        logger.error(f"Database error in get_db: {type(e).__name__}: {e}")
        if session and session.in_transaction():
            await session.rollback()
            logger.debug("Database transaction rolled back")
        raise

    except Exception as e:
        logger.error(f"Unexpected error in get_db: {type(e).__name__}: {e}")
        if session and session.in_transaction():
            await session.rollback()
        raise

    finally:
        if session:
            await session.close()
            logger.debug("Database session closed")


def get_dispatch_worker(request: Request) -> DispatchWorker:
    """Background worker that sends request batches off the HTTP path."""
    worker = getattr(request.app.state, "dispatch_worker", None)
    if worker is None:
        raise HTTPException(status_code=503, detail="Dispatch worker is not running")
    return worker
