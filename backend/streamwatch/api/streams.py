from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import PlainTextResponse
from typing import Any, Dict, List
from datetime import datetime
import logging
import re

from streamwatch.errors import DuplicateStreamError
from streamwatch.models import Stream, StreamCreate
from streamwatch.services.health_scorer import HealthScorer
from streamwatch.services.logger_service import log_service
from streamwatch.services.stream_monitor import stream_monitor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/streams", tags=["streams"])


def _with_scores(stream: Stream) -> Dict[str, Any]:
    document = stream.to_document()
    scores = HealthScorer.score(stream)
    document["scores"] = scores.model_dump(by_alias=True)
    document["scores"]["color"] = scores.color.value
    return document


async def _get_or_404(stream_id: str) -> Stream:
    stream = await stream_monitor.store.find_by_id(stream_id)
    if stream is None:
        raise HTTPException(status_code=404, detail="Stream not found")
    return stream


@router.get("")
async def list_streams() -> List[Dict[str, Any]]:
    """Get all monitored streams, newest first."""
    streams = await stream_monitor.store.list_streams()
    streams.sort(key=lambda s: s.created_at, reverse=True)
    return [_with_scores(s) for s in streams]


@router.get("/{stream_id}")
async def get_stream(stream_id: str) -> Dict[str, Any]:
    return _with_scores(await _get_or_404(stream_id))


@router.post("", status_code=201)
async def create_stream(payload: StreamCreate) -> Dict[str, Any]:
    """Add a new stream to monitor."""
    try:
        stream = await stream_monitor.add_stream(Stream(name=payload.name, url=payload.url))
    except DuplicateStreamError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return stream.to_document()


@router.delete("/{stream_id}")
async def delete_stream(stream_id: str):
    """Stop monitoring a stream."""
    if not await stream_monitor.remove_stream(stream_id):
        raise HTTPException(status_code=404, detail="Stream not found")
    return {"message": "Stream deleted"}


@router.get("/{stream_id}/metrics")
async def get_metrics(stream_id: str) -> List[Dict[str, Any]]:
    """Metrics history in ascending time order."""
    await _get_or_404(stream_id)
    snapshots = await stream_monitor.store.metrics_for(stream_id)
    return [s.model_dump(mode="json", by_alias=True) for s in snapshots]


@router.get("/{stream_id}/events")
async def get_stream_events(
    stream_id: str,
    limit: int = Query(500, le=1000)
):
    """Get the recorded event log for a stream."""
    await _get_or_404(stream_id)

    events = await log_service.read_stream_events(stream_id, limit=limit)

    return {
        "events": events,
        "count": len(events),
        "stream_id": stream_id
    }


def _fmt(value, suffix: str = "", scale: float = 1, digits: int = 0) -> str:
    if not value:
        return "N/A"
    return f"{value / scale:.{digits}f}{suffix}"


def render_log(stream: Stream) -> str:
    """Human-readable report of a stream's health, stats and error log."""
    health = stream.health
    stats = stream.stats
    video = stats.video
    audio = stats.audio
    container = stats.container
    rule = "-" * 69

    lines = [
        "HLS MONITOR - STREAM LOG",
        "=" * 69,
        "",
        "STREAM INFORMATION",
        rule,
        f"  Name:           {stream.name}",
        f"  URL:            {stream.url}",
        f"  Status:         {stream.status.value.upper()}",
        f"  Export Date:    {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        "",
        "HEALTH METRICS",
        rule,
        f"  Is Stale:           {'YES' if health.is_stale else 'NO'}",
        f"  Media Sequence:     {health.media_sequence}",
        f"  Segment Count:      {health.segment_count}",
        f"  Target Duration:    {_fmt(health.target_duration, 's')}",
        f"  Playlist Type:      {health.playlist_type or 'N/A'}",
        f"  Sequence Jumps:     {health.sequence_jumps}",
        f"  Sequence Resets:    {health.sequence_resets}",
        f"  Discontinuities:    {health.discontinuity_count}",
        f"  Total Errors:       {health.total_errors}",
        "",
        "VIDEO STREAM",
        rule,
        f"  Codec:          {(video and video.codec) or 'N/A'}",
        f"  Profile:        {(video and video.profile) or 'N/A'}",
        f"  Level:          {(video and video.level) or 'N/A'}",
        f"  Resolution:     {stats.resolution or 'N/A'}",
        f"  FPS:            {_fmt(stats.fps, digits=2)}",
        f"  Pixel Format:   {(video and video.pix_fmt) or 'N/A'}",
        f"  Color Space:    {(video and video.color_space) or 'N/A'}",
        f"  Video Bitrate:  {_fmt(video and video.bit_rate, ' kbps', 1000)}",
        "",
        "AUDIO STREAM",
        rule,
        f"  Codec:          {(audio and audio.codec) or 'N/A'}",
        f"  Channels:       {(audio and audio.channels) or 'N/A'}",
        f"  Sample Rate:    {_fmt(audio and audio.sample_rate, ' Hz')}",
        f"  Audio Bitrate:  {_fmt(audio and audio.bit_rate, ' kbps', 1000)}",
        "",
        "CONTAINER INFO",
        rule,
        f"  Format:         {(container and container.format_name) or 'N/A'}",
        f"  Duration:       {_fmt(container and container.duration, 's', digits=2)}",
        f"  Size:           {_fmt(container and container.size, ' KB', 1024, 1)}",
        f"  Total Bitrate:  {_fmt(container and container.bit_rate, ' kbps', 1000)}",
        f"  Bandwidth:      {_fmt(stats.bandwidth, ' Mbps', 1_000_000, 2)}",
        "",
        "TIMESTAMPS",
        rule,
        f"  Created:        {stream.created_at.isoformat()}",
        f"  Last Checked:   {stream.last_checked.isoformat() if stream.last_checked else 'N/A'}",
        "",
    ]

    if stream.error_log:
        lines += [f"ERROR LOG ({len(stream.error_log)} errors)", rule]
        for i, error in enumerate(stream.error_log, start=1):
            lines += [
                "",
                f"  [{i}] {error.error_type.value}",
                f"      Time:    {error.timestamp.isoformat()}",
                f"      Details: {error.details}",
                f"      Type:    {error.media_type}",
            ]
    else:
        lines += ["NO ERRORS RECORDED", rule, "  This stream has no recorded errors."]

    return "\n".join(lines) + "\n"


@router.get("/{stream_id}/log", response_class=PlainTextResponse)
async def download_log(stream_id: str):
    """Download a plain-text report for a stream."""
    stream = await _get_or_404(stream_id)
    safe_name = re.sub(r'[^a-z0-9]', '_', stream.name, flags=re.IGNORECASE)
    filename = f"{safe_name}_log_{datetime.now().strftime('%Y-%m-%d')}.txt"
    return PlainTextResponse(
        render_log(stream),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )
