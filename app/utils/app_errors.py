import inspect
from enum import Enum, IntEnum
from uuid import uuid4


class AppErrorCode(str, Enum):
    E_INTERNAL_ERROR = "E_INTERNAL_ERROR"
    E_INVALID_PARAMS = "E_INVALID_PARAMS"
    E_BAD_TOKEN = "E_BAD_TOKEN"

    # RTMP bridge
    E_STREAM_FORBIDDEN = "E_STREAM_FORBIDDEN"
    E_STREAM_NOT_FOUND = "E_STREAM_NOT_FOUND"
    E_STREAM_ENDED = "E_STREAM_ENDED"
    E_SPAWN_FAILED = "E_SPAWN_FAILED"

    def __str__(self) -> str:
        return self.value


class HttpStatusCode(IntEnum):
    OK = 200
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    GONE = 410
    INTERNAL_SERVER_ERROR = 500


class AppError(Exception):
    """Application error rendered by the API error handler.

    Records the call site that raised it so the handler can log where the
    failure originated rather than where it was caught.
    """

    def __init__(
        self,
        errcode: AppErrorCode | str = AppErrorCode.E_INTERNAL_ERROR,
        errmesg: str = "We are sorry, an error occurred.",
        status_code: int = HttpStatusCode.INTERNAL_SERVER_ERROR,
    ):
        super().__init__(errmesg)
        self.errcode = errcode.value if isinstance(errcode, AppErrorCode) else errcode
        self.errmesg = errmesg
        self.status_code = int(status_code)
        self.erresid = uuid4().hex[:10]
        self.caller_info = self._caller_info()

    def _caller_info(self) -> str:
        # Skip frames belonging to AppError and its subclasses' constructors
        for frame_info in inspect.stack()[2:]:
            if frame_info.function != "__init__":
                module = inspect.getmodule(frame_info.frame)
                module_name = module.__name__ if module else frame_info.filename
                return f"{module_name}:{frame_info.function}:{frame_info.lineno}"
        return "unknown"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.errcode!r}, {self.errmesg!r}, {self.status_code})"
