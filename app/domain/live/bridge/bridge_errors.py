"""Error taxonomy of the RTMP bridge.

Every failure coming from the encoder process or its pipes is translated
into one of these before it leaves the domain layer.
"""

from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode


class BridgeError(AppError):
    """Base class for RTMP bridge errors."""


class AuthorizationError(BridgeError):
    def __init__(self, errmesg: str = "Not authorized for this stream", *, authenticated: bool = True):
        super().__init__(
            errcode=AppErrorCode.E_STREAM_FORBIDDEN if authenticated else AppErrorCode.E_BAD_TOKEN,
            errmesg=errmesg,
            status_code=HttpStatusCode.FORBIDDEN if authenticated else HttpStatusCode.UNAUTHORIZED,
        )


class NotFoundError(BridgeError):
    def __init__(self, errmesg: str = "No active stream found"):
        super().__init__(
            errcode=AppErrorCode.E_STREAM_NOT_FOUND,
            errmesg=errmesg,
            status_code=HttpStatusCode.NOT_FOUND,
        )


class StreamEndedError(BridgeError):
    """The encoder died between calls or its input pipe failed.

    Callers must start a new session.
    """

    def __init__(self, errmesg: str = "Stream ended"):
        super().__init__(
            errcode=AppErrorCode.E_STREAM_ENDED,
            errmesg=errmesg,
            status_code=HttpStatusCode.GONE,
        )


class SpawnError(BridgeError):
    def __init__(self, errmesg: str = "Failed to start FFmpeg process"):
        super().__init__(
            errcode=AppErrorCode.E_SPAWN_FAILED,
            errmesg=errmesg,
            status_code=HttpStatusCode.INTERNAL_SERVER_ERROR,
        )


class BadRequestError(BridgeError):
    def __init__(self, errmesg: str):
        super().__init__(
            errcode=AppErrorCode.E_INVALID_PARAMS,
            errmesg=errmesg,
            status_code=HttpStatusCode.BAD_REQUEST,
        )
