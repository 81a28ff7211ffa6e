from datetime import datetime
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.domain.live.bridge._launcher import is_rtmp_url, is_valid_stream_key
from app.shared.api.utils import ApiResponse


class BridgeAction(str, Enum):
    START = "start"
    STOP = "stop"
    STATUS = "status"
    HEALTH = "health"


class RtmpBridgeIn(BaseModel):
    """Control request; `action` defaults to start.

    Missing fields are reported by the router as 400 rather than rejected
    here, so every field is optional at the schema level.
    """

    action: str = Field(default=BridgeAction.START.value)
    session_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("sessionId", "session_id"),
    )
    ingest_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("ingestUrl", "rtmpUrl", "ingest_url"),
        description="RTMP ingest base URL, without the stream key.",
    )
    stream_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("streamKey", "stream_key"),
    )

    @field_validator("action", "session_id", "ingest_url", "stream_key", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("ingest_url")
    @classmethod
    def check_ingest_url(cls, v: str | None):
        if v is not None and not is_rtmp_url(v):
            raise ValueError("must be an rtmp:// or rtmps:// URL with a host")
        return v

    @field_validator("stream_key")
    @classmethod
    def check_stream_key(cls, v: str | None):
        if v is not None and not is_valid_stream_key(v):
            raise ValueError("must not contain '/' or whitespace")
        return v


class BridgeOut(ApiResponse):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True


class StartStreamOut(BridgeOut):
    pass


class StopStreamOut(BridgeOut):
    pass


class StreamStatusOut(BridgeOut):
    running: bool
    started_at: datetime | None = None
    owned_by_you: bool | None = None
    active_streams: list[str] = Field(default_factory=list)


class StreamHealthOut(BridgeOut):
    healthy: bool
    reason: str


class PushChunkOut(BridgeOut):
    accepted: bool
