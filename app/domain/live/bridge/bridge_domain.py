"""RTMP bridge domain service."""

from app.app_config import AppEnvironConfig

from ._ingest import AudioIngestChannel
from ._launcher import EncoderLauncher
from ._lifecycle import LifecycleController
from ._orphans import OrphanReaper
from ._registry import SessionRegistry
from .bridge_models import BridgeSession, EncoderSettings, StreamHealth, StreamStatus


class BridgeService:
    """Entry point used by the API layer.

    Built once per application and injected into request handlers; holds the
    only session registry of this server instance.
    """

    def __init__(
        self,
        launcher: EncoderLauncher,
        *,
        registry: SessionRegistry | None = None,
        reaper: OrphanReaper | None = None,
        write_timeout: float = 10.0,
        shutdown_grace: float = 5.0,
    ):
        self.registry = registry if registry is not None else SessionRegistry()
        self.reaper = reaper
        self._lifecycle = LifecycleController(self.registry, launcher, shutdown_grace=shutdown_grace)
        self._ingest = AudioIngestChannel(self.registry, write_timeout=write_timeout)

    @classmethod
    def from_config(cls, cfg: AppEnvironConfig) -> "BridgeService":
        settings = EncoderSettings(
            loglevel=cfg.FFMPEG_LOGLEVEL,
            input_format=cfg.FFMPEG_INPUT_FORMAT,
            audio_codec=cfg.ENCODER_AUDIO_CODEC,
            audio_bitrate=cfg.ENCODER_AUDIO_BITRATE,
            audio_sample_rate=cfg.ENCODER_AUDIO_SAMPLE_RATE,
            audio_channels=cfg.ENCODER_AUDIO_CHANNELS,
            video_enabled=cfg.ENCODER_VIDEO_ENABLED,
            video_size=cfg.ENCODER_VIDEO_SIZE,
            video_fps=cfg.ENCODER_VIDEO_FPS,
            video_color=cfg.ENCODER_VIDEO_COLOR,
        )
        reaper = OrphanReaper(cfg.BRIDGE_RUNTIME_DIR)
        launcher = EncoderLauncher(
            cfg.FFMPEG_PATH,
            settings,
            fallback_paths=cfg.FFMPEG_FALLBACK_PATHS,
            reaper=reaper,
        )
        return cls(
            launcher,
            reaper=reaper,
            write_timeout=cfg.CHUNK_WRITE_TIMEOUT_SECONDS,
            shutdown_grace=cfg.ENCODER_SHUTDOWN_GRACE_SECONDS,
        )

    # ==================== LIFECYCLE ====================

    async def start_stream(
        self,
        session_id: str,
        ingest_url: str,
        stream_key: str,
        owner_id: str,
    ) -> BridgeSession:
        """Start streaming a session to `{ingest_url}/{stream_key}`.

        Raises SpawnError if the encoder cannot be started.
        """
        return await self._lifecycle.start(session_id, ingest_url, stream_key, owner_id)

    async def stop_stream(self, session_id: str, caller_id: str) -> bool:
        return await self._lifecycle.stop(session_id, caller_id)

    async def get_status(self, session_id: str, caller_id: str) -> StreamStatus:
        return await self._lifecycle.status(session_id, caller_id)

    async def get_health(self, session_id: str) -> StreamHealth:
        return await self._lifecycle.health(session_id)

    # ==================== INGEST ====================

    async def push_chunk(self, session_id: str, payload: bytes, caller_id: str) -> bool:
        """Forward one audio chunk; see AudioIngestChannel.push for errors."""
        return await self._ingest.push(session_id, payload, caller_id)

    # ==================== PROCESS HOUSEKEEPING ====================

    def reap_orphans(self) -> int:
        if self.reaper is None:
            return 0
        return self.reaper.reap()

    async def shutdown(self) -> None:
        await self._lifecycle.shutdown()
