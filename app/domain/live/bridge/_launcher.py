"""Encoder process launcher."""

import shutil
from urllib.parse import urlsplit, urlunsplit

from loguru import logger

from ._orphans import OrphanReaper
from ._process import EncoderProcess, spawn_encoder
from .bridge_errors import BadRequestError, SpawnError
from .bridge_models import EncoderSettings

RTMP_SCHEMES = ("rtmp", "rtmps")


def is_rtmp_url(url: str) -> bool:
    """True for rtmp:// and rtmps:// URLs with a host."""
    try:
        parts = urlsplit(url)
        parts.port
    except ValueError:
        return False
    return parts.scheme.lower() in RTMP_SCHEMES and bool(parts.hostname)


def is_valid_stream_key(stream_key: str) -> bool:
    return bool(stream_key) and not any(c == "/" or c.isspace() for c in stream_key)


def join_ingest_url(ingest_url: str, stream_key: str) -> str:
    return f"{ingest_url.rstrip('/')}/{stream_key}"


def mask_ingest_url(ingest_url: str) -> str:
    """Ingest URL safe for logs: drops userinfo and query strings."""
    parts = urlsplit(ingest_url)
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, host, parts.path, "", ""))


def build_ffmpeg_args(ingest_url: str, stream_key: str, settings: EncoderSettings) -> list[str]:
    """ffmpeg arguments (without the executable) for one bridge session.

    Input 0 is the synthetic video track when enabled, the recorder audio
    always comes from stdin. Output is FLV over RTMP.
    """
    args = ["-hide_banner", "-nostats", "-loglevel", settings.loglevel]

    if settings.video_enabled:
        args += [
            "-f", "lavfi",
            "-i", f"color=size={settings.video_size}:rate={settings.video_fps}:color={settings.video_color}",
        ]

    if settings.input_format:
        args += ["-f", settings.input_format]
    args += ["-i", "pipe:0"]

    if settings.video_enabled:
        args += [
            "-map", "0:v:0",
            "-map", "1:a:0",
            "-c:v", "libx264",
            "-preset", "veryfast",
            "-tune", "zerolatency",
        ]
    else:
        args += ["-map", "0:a:0"]

    args += [
        "-c:a", settings.audio_codec,
        "-b:a", settings.audio_bitrate,
        "-ar", str(settings.audio_sample_rate),
        "-ac", str(settings.audio_channels),
        "-f", "flv",
        join_ingest_url(ingest_url, stream_key),
    ]
    return args


class EncoderLauncher:
    """Starts one ffmpeg process per bridge session.

    Candidates are the configured ffmpeg path followed by any explicitly
    configured fallbacks, tried in order.
    """

    def __init__(
        self,
        ffmpeg_path: str,
        settings: EncoderSettings,
        *,
        fallback_paths: list[str] | None = None,
        reaper: OrphanReaper | None = None,
    ):
        self.candidates = [ffmpeg_path, *(fallback_paths or [])]
        self.settings = settings
        self.reaper = reaper

    def resolve_candidates(self) -> list[str]:
        resolved = []
        for candidate in self.candidates:
            path = shutil.which(candidate)
            if path is None:
                logger.warning("FFmpeg candidate not found: {}", candidate)
                continue
            if path not in resolved:
                resolved.append(path)
        return resolved

    async def launch(self, session_id: str, ingest_url: str, stream_key: str) -> EncoderProcess:
        """Spawn the encoder for a session.

        Raises:
            BadRequestError: the ingest URL is not an RTMP endpoint or the key is malformed.
            SpawnError: no candidate executable could be started.
        """
        if not is_rtmp_url(ingest_url):
            raise BadRequestError("Invalid ingest URL: rtmp:// or rtmps:// URL with a host required")
        if not is_valid_stream_key(stream_key):
            raise BadRequestError("Invalid stream key")

        args = build_ffmpeg_args(ingest_url, stream_key, self.settings)
        logger.info(
            "Starting encoder for session {} -> {}/<stream-key>",
            session_id,
            mask_ingest_url(ingest_url).rstrip("/"),
        )

        candidates = self.resolve_candidates()
        if not candidates:
            raise SpawnError(f"FFmpeg executable not found (tried: {', '.join(self.candidates)})")

        last_error: OSError | None = None
        for path in candidates:
            try:
                logger.debug("Trying FFmpeg path: {}", path)
                process = await spawn_encoder([path, *args], label=session_id, secrets=[stream_key])
            except OSError as e:
                logger.warning("Failed to spawn FFmpeg with path {}: {}", path, e)
                last_error = e
                continue

            logger.info("Encoder for session {} spawned with {} pid={}", session_id, path, process.pid)
            reaper = self.reaper
            if reaper is not None:
                reaper.record(session_id, process.pid, path)
                pid = process.pid
                process.add_exit_listener(lambda _code: reaper.forget(pid))
            return process

        logger.error("Failed to spawn FFmpeg with any path: {}", last_error)
        raise SpawnError()
