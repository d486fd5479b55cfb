from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from contextlib import asynccontextmanager
import logging
import asyncio
from pathlib import Path

from streamwatch.config import settings
from streamwatch.api import streams, websocket, health
from streamwatch.services.event_emitter import event_emitter
from streamwatch.services.logger_service import log_service
from streamwatch.services.stream_monitor import stream_monitor
from streamwatch.services.stream_store import stream_store

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


async def log_rotation_worker():
    """Background worker for log rotation."""
    while True:
        try:
            await asyncio.sleep(3600)  # Check every hour
            await log_service.rotate_logs()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Log rotation error: {e}")


def handle_loop_exception(loop: asyncio.AbstractEventLoop, context: dict):
    """Last-resort handler for exceptions nothing else caught."""
    exception = context.get("exception")
    logger.error(f"[FATAL] Unhandled error: {context.get('message')}", exc_info=exception)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for startup and shutdown."""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    asyncio.get_running_loop().set_exception_handler(handle_loop_exception)

    # Load persisted streams before the first cycle
    await stream_store.load()

    await stream_monitor.start()

    rotation_task = asyncio.create_task(log_rotation_worker())

    logger.info("Application started successfully")

    yield

    # Shutdown
    logger.info("Shutting down application...")

    await stream_monitor.stop()
    await event_emitter.close()

    rotation_task.cancel()
    try:
        await rotation_task
    except asyncio.CancelledError:
        pass

    await stream_store.persist()
    logger.info("Application shut down")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Live HLS stream health monitoring",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount static files (for serving thumbnails)
data_dir = Path(settings.DATA_DIR)
data_dir.mkdir(parents=True, exist_ok=True)

app.mount("/data", StaticFiles(directory=str(data_dir)), name="data")

app.include_router(streams.router)
app.include_router(websocket.router)
app.include_router(health.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


def main():
    import uvicorn
    uvicorn.run(
        "streamwatch.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )


if __name__ == "__main__":
    main()
