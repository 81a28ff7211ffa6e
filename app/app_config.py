import tempfile
from pathlib import Path

from pydantic import BaseModel

from app.shared.config import config


class AppEnvironConfig(BaseModel):
    DEBUG: bool = config.get_bool("DEBUG")

    # Server configuration
    API_HOST: str = config.get("API_HOST", "0.0.0.0").strip()  # type: ignore
    API_PORT: int = int((config.get("API_PORT") or "").strip() or 8000)
    API_WORKERS: int = int((config.get("API_WORKERS") or "").strip() or 1)
    API_CORS_ORIGINS: list[str] = config.get_list("API_CORS_ORIGINS") or ["*"]

    # Observability
    LOGFIRE_ENABLE: bool = config.get_bool("LOGFIRE_ENABLE")
    LOGFIRE_TOKEN: str | None = (config.get("LOGFIRE_TOKEN") or "").strip() or None

    # Auth service used to verify the x-app-auth token
    CORE_API_URL: str | None = (config.get("CORE_API_URL") or "").strip() or None
    # Development only: trust the decoded token payload when CORE_API_URL is not set
    AUTH_TRUST_TOKEN_PAYLOAD: bool = config.get_bool("AUTH_TRUST_TOKEN_PAYLOAD")

    # Encoder executable: one configured path, optionally followed by explicit fallbacks
    FFMPEG_PATH: str = config.get("FFMPEG_PATH", "ffmpeg").strip()  # type: ignore
    FFMPEG_FALLBACK_PATHS: list[str] = config.get_list("FFMPEG_FALLBACK_PATHS")
    FFMPEG_LOGLEVEL: str = config.get("FFMPEG_LOGLEVEL", "warning").strip()  # type: ignore
    # Container hint for the recorder output (e.g. "webm"); empty lets ffmpeg probe
    FFMPEG_INPUT_FORMAT: str | None = (config.get("FFMPEG_INPUT_FORMAT") or "").strip() or None

    # Audio encoding
    ENCODER_AUDIO_CODEC: str = config.get("ENCODER_AUDIO_CODEC", "aac").strip()  # type: ignore
    ENCODER_AUDIO_BITRATE: str = config.get("ENCODER_AUDIO_BITRATE", "128k").strip()  # type: ignore
    ENCODER_AUDIO_SAMPLE_RATE: int = int((config.get("ENCODER_AUDIO_SAMPLE_RATE") or "").strip() or 44100)
    ENCODER_AUDIO_CHANNELS: int = int((config.get("ENCODER_AUDIO_CHANNELS") or "").strip() or 2)

    # Synthetic video track, required by ingest endpoints that reject audio-only streams
    ENCODER_VIDEO_ENABLED: bool = config.get_bool("ENCODER_VIDEO_ENABLED", True)
    ENCODER_VIDEO_SIZE: str = config.get("ENCODER_VIDEO_SIZE", "1280x720").strip()  # type: ignore
    ENCODER_VIDEO_FPS: int = int((config.get("ENCODER_VIDEO_FPS") or "").strip() or 30)
    ENCODER_VIDEO_COLOR: str = config.get("ENCODER_VIDEO_COLOR", "black").strip()  # type: ignore

    # Upper bound for a single chunk waiting on a full encoder pipe
    CHUNK_WRITE_TIMEOUT_SECONDS: float = float(
        (config.get("CHUNK_WRITE_TIMEOUT_SECONDS") or "").strip() or 10
    )
    # How long encoders get to flush after their input closes on server shutdown
    ENCODER_SHUTDOWN_GRACE_SECONDS: float = float(
        (config.get("ENCODER_SHUTDOWN_GRACE_SECONDS") or "").strip() or 5
    )
    # Where per-process records are kept so a restarted server can reap orphans
    BRIDGE_RUNTIME_DIR: Path = Path(
        (config.get("BRIDGE_RUNTIME_DIR") or "").strip()
        or Path(tempfile.gettempdir()) / "rtmp_bridge"
    )


_app_environ_config = AppEnvironConfig()


def get_app_environ_config() -> AppEnvironConfig:
    return _app_environ_config
