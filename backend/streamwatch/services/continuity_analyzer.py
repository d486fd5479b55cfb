import logging
from datetime import datetime, timezone

from streamwatch.errors import ContinuityError, ParseError, StalenessError
from streamwatch.models import Manifest, Stream, StreamStatus
from streamwatch.services.error_ledger import ErrorLedger, error_ledger
from streamwatch.services.state_tracker import PollState

logger = logging.getLogger(__name__)


class ContinuityAnalyzer:
    """
    Compares the current media playlist against the previous cycle.

    Per stream the analyzer is either in the initial state (no sequence seen
    yet, last_media_sequence == -1) or tracking. Jumps and resets are only
    judged while tracking. Staleness is judged on every cycle.
    """

    def __init__(self, ledger: ErrorLedger = error_ledger):
        self.ledger = ledger

    def analyze(self, stream: Stream, manifest: Manifest, state: PollState, now: float) -> int:
        """
        Apply one cycle's observations to the stream record.

        Args:
            stream: Stream record, mutated in place
            manifest: Media-level manifest of this cycle
            state: Transient state left by the previous successful cycle
            now: Current time in epoch milliseconds

        Returns:
            The current media sequence

        Raises:
            ParseError: the playlist has no segments (already recorded)
        """
        health = stream.health

        if not manifest.segments:
            error = ParseError("Playlist has no segments")
            self.ledger.record(stream, error)
            stream.status = StreamStatus.ERROR
            raise error

        current = manifest.media_sequence
        previous = state.last_media_sequence

        # Staleness
        if current == previous:
            state.consecutive_stales += 1
            elapsed = int(now - state.last_poll_time)
            health.time_since_last_update = elapsed

            if elapsed > health.stale_threshold:
                health.is_stale = True
                stream.status = StreamStatus.STALE
                self.ledger.record(stream, StalenessError(f"Playlist stale for {elapsed}ms"))
        else:
            health.is_stale = False
            health.last_manifest_update = datetime.fromtimestamp(now / 1000, tz=timezone.utc)
            health.time_since_last_update = 0
            state.consecutive_stales = 0
            stream.status = StreamStatus.ONLINE

        # Sequence continuity
        if not state.is_initial:
            expected = previous + 1
            if current > expected:
                gap = current - expected
                health.sequence_jumps += 1
                self.ledger.record(stream, ContinuityError(
                    f"Sequence jumped from {previous} to {current} (gap: {gap})"))
            elif current < previous:
                health.sequence_resets += 1
                self.ledger.record(stream, ContinuityError(f"Sequence reset from {previous} to {current}"))

        # Discontinuities in this manifest only
        health.discontinuity_count = sum(1 for seg in manifest.segments if seg.discontinuity)
        if manifest.discontinuity_sequence is not None \
                and health.discontinuity_sequence != manifest.discontinuity_sequence:
            health.discontinuity_sequence = manifest.discontinuity_sequence

        health.previous_media_sequence = previous
        health.media_sequence = current
        health.segment_count = len(manifest.segments)
        health.target_duration = manifest.target_duration or 0
        health.playlist_type = manifest.playlist_type or "LIVE"

        return current


# Global instance
continuity_analyzer = ContinuityAnalyzer()
