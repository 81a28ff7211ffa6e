"""Models for the RTMP bridge domain."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from ._process import EncoderProcess


class BridgeState(str, Enum):
    """Bridge session lifecycle states.

    ABSENT → STARTING → RUNNING → STOPPING → ENDED
       any state → ERRORED (spawn failure, nonzero exit, broken pipe)

    A session is only kept in the registry while RUNNING.
    """

    ABSENT = "absent"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ENDED = "ended"
    ERRORED = "errored"

    def __str__(self) -> str:
        return self.value


@dataclass(eq=False)
class BridgeSession:
    """One live broadcast attempt bound to an owner and an encoder process.

    Compared by identity so the registry can tell a replaced entry from its
    successor under the same session id.
    """

    session_id: str
    owner_id: str
    ingest_url: str
    process: EncoderProcess | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    state: BridgeState = BridgeState.ABSENT
    state_reason: str | None = None

    def is_alive(self) -> bool:
        return self.process is not None and self.process.is_alive()


class EncoderSettings(BaseModel):
    """Fixed encoding parameters applied to every bridge process."""

    loglevel: str = "warning"
    input_format: str | None = None

    audio_codec: str = "aac"
    audio_bitrate: str = "128k"
    audio_sample_rate: int = 44100
    audio_channels: int = 2

    video_enabled: bool = True
    video_size: str = "1280x720"
    video_fps: int = 30
    video_color: str = "black"


class StreamStatus(BaseModel):
    running: bool
    started_at: datetime | None = None
    owned_by_you: bool | None = None
    active_streams: list[str] = Field(default_factory=list)


class StreamHealth(BaseModel):
    found: bool
    healthy: bool
    reason: str
