from fastapi import APIRouter
from datetime import datetime, timezone
from pydantic import BaseModel
from typing import Optional

from streamwatch.config import settings
from streamwatch.services.event_emitter import event_emitter
from streamwatch.services.stream_monitor import stream_monitor

router = APIRouter(tags=["health"])


class HealthStatus(BaseModel):
    status: str
    timestamp: datetime
    monitor_running: bool
    stream_count: int
    cycle_count: int
    last_cycle_seconds: Optional[float] = None
    analysis_pending: int
    subscribers: int
    version: str


@router.get("/health", response_model=HealthStatus)
async def health_check():
    """System health check endpoint."""
    streams = await stream_monitor.store.list_streams()

    return HealthStatus(
        status="healthy" if stream_monitor.running else "degraded",
        timestamp=datetime.now(timezone.utc),
        monitor_running=stream_monitor.running,
        stream_count=len(streams),
        cycle_count=stream_monitor.cycle_count,
        last_cycle_seconds=stream_monitor.last_cycle_seconds,
        analysis_pending=stream_monitor.pipeline.pending,
        subscribers=event_emitter.subscriber_count,
        version=settings.APP_VERSION
    )
