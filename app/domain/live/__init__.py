"""
Live streaming domain logic.

Includes:
- bridge: Recorder audio -> ffmpeg -> RTMP relay per session.
"""
