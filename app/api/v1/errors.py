from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from loguru import logger

from app.shared.api.errors import E_INVALID_PARAMS
from app.shared.api.utils import ApiFailure, api_failure, make_response
from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode


async def app_error_handler(request: Request, exc: AppError) -> ORJSONResponse:
    """
    Custom exception handler for AppError.
    Converts AppError to ApiFailure and returns via make_response.
    """
    # Log with the caller info captured when AppError was raised
    log_msg = f"{exc.errcode} {exc.erresid} msg={exc.errmesg} caller={exc.caller_info}"
    if exc.status_code >= HttpStatusCode.INTERNAL_SERVER_ERROR:
        logger.error(log_msg)
    else:
        logger.warning(log_msg)

    failure = ApiFailure(errcode=exc.errcode, errmesg=exc.errmesg, erresid=exc.erresid)

    extra = None
    if exc.errcode == AppErrorCode.E_STREAM_ENDED.value:
        extra = {"streamEnded": True}

    return make_response(failure, status_code=exc.status_code, extra=extra)


async def app_validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed requests are 400 E_INVALID_PARAMS, like the checks done in handlers.

    Only field locations and reasons are reported; inputs may hold stream keys.
    """
    errors = [
        f"{'.'.join(str(part) for part in e.get('loc', ()))}: {e.get('msg', 'invalid')}"
        for e in exc.errors()
    ]

    logger.warning(
        "Validation error: path={} method={} errors={}",
        request.url.path,
        request.method,
        errors,
    )

    failure = api_failure(E_INVALID_PARAMS, errmesg="; ".join(errors) or "Invalid request")

    return ORJSONResponse(status_code=HttpStatusCode.BAD_REQUEST, content=failure.model_dump())
