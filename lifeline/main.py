from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from lifeline.config import settings
from lifeline.database import init_db, close_db
from lifeline.dependencies import get_db
from lifeline.exceptions import LifelineError
from lifeline.middlewares.logging_middleware import LoggingMiddleware
from lifeline.routes import router as api_router
from lifeline.services.dispatch_worker import DispatchWorker
from lifeline.services.dispatcher import NotificationDispatcher
from lifeline.services.event_sink import EventSink
from lifeline.services.scheduler import BatchScheduler
from lifeline.utils.logging_config import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application startup and shutdown events.
    """
    # Startup
    logger.info("Application starting up...")
    await init_db()

    events = EventSink()
    dispatcher = NotificationDispatcher(events=events)
    worker = DispatchWorker(dispatcher)
    worker.start()

    app.state.dispatcher = dispatcher
    app.state.dispatch_worker = worker
    app.state.batch_scheduler = None

    if settings.SCHEDULER_ENABLED:
        logger.info("Starting batch scheduler...")
        scheduler = BatchScheduler(dispatcher)
        scheduler.start()
        app.state.batch_scheduler = scheduler
    else:
        logger.info("Batch scheduler disabled")

    yield

    # Shutdown
    logger.info("Application shutting down...")

    if app.state.batch_scheduler is not None:
        app.state.batch_scheduler.stop()
    await worker.stop()

    await close_db()


async def lifeline_error_handler(request: Request, exc: LifelineError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message},
    )


def create_application() -> FastAPI:
    """Create the FastAPI application"""
    app = FastAPI(
        title=settings.PROJECT_NAME,
        description=settings.PROJECT_DESCRIPTION,
        version=settings.VERSION,
        docs_url=settings.DOCS_URL,
        redoc_url=None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Accept",
            "X-Requested-With",
            "X-Request-ID",
            "X-Hospital-ID",
            "Origin",
        ],
        expose_headers=["Content-Length", "Content-Type", "X-Request-ID"],
        max_age=600,
    )

    # Logging middleware
    app.add_middleware(LoggingMiddleware)

    app.add_exception_handler(LifelineError, lifeline_error_handler)

    # Include API routes
    app.include_router(api_router, prefix=settings.API_PREFIX)

    # Health check endpoint
    @app.get("/")
    def read_root():
        return {
            "status": "ok",
            "service": settings.PROJECT_NAME,
            "environment": settings.ENVIRONMENT,
        }

    @app.get("/health")
    async def health_check(db: AsyncSession = Depends(get_db)):
        """Health check with database connectivity test"""
        try:
            await db.execute(select(1))
            return {"status": "healthy", "database": "connected"}
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return {
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(e),
            }

    return app


# Create and expose the FastAPI app
app = create_application()
