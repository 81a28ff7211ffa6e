"""
Live audio RTMP bridge.

Forwards recorder audio chunks into a per-session ffmpeg process that
publishes an RTMP stream.

Includes:
- registry: Session id -> live encoder process table.
- launcher: ffmpeg command line and process spawning.
- lifecycle: start/stop/status/health and process exit handling.
- ingest: Chunk forwarding with backpressure.
"""
