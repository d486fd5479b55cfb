import logging
from dataclasses import dataclass
from typing import Dict

logger = logging.getLogger(__name__)


@dataclass
class PollState:
    """Transient per-stream cycle state. Never persisted."""
    last_poll_time: float = 0  # epoch milliseconds
    last_media_sequence: int = -1  # -1 until the first successful cycle
    consecutive_stales: int = 0

    @property
    def is_initial(self) -> bool:
        return self.last_media_sequence == -1


class PollStateStore:
    """
    Keyed store of PollState.

    Entries are created lazily on first sight of a stream and removed when the
    stream is deleted. Only the sequential poll loop writes here.
    """

    def __init__(self):
        self._states: Dict[str, PollState] = {}

    def get(self, stream_id: str) -> PollState:
        """Return the state for a stream, creating the initial state if needed."""
        state = self._states.get(stream_id)
        if state is None:
            state = PollState()
            self._states[stream_id] = state
        return state

    def commit(self, stream_id: str, media_sequence: int, poll_time: float):
        """Record a fully successful cycle."""
        state = self.get(stream_id)
        state.last_media_sequence = media_sequence
        state.last_poll_time = poll_time

    def discard(self, stream_id: str):
        if self._states.pop(stream_id, None) is not None:
            logger.debug(f"Dropped poll state for stream {stream_id}")

    def retain_only(self, stream_ids) -> None:
        """Drop state for streams that are no longer in the store."""
        for stream_id in list(self._states):
            if stream_id not in stream_ids:
                self.discard(stream_id)

    def __contains__(self, stream_id: str) -> bool:
        return stream_id in self._states

    def __len__(self) -> int:
        return len(self._states)
