from fastapi import APIRouter, Header, Request
from fastapi.responses import ORJSONResponse
from loguru import logger

from app.api.v1.dependency import Bridge, CurrentUser
from app.api.v1.schemas.rtmp_bridge import (
    BridgeAction,
    BridgeOut,
    PushChunkOut,
    RtmpBridgeIn,
    StartStreamOut,
    StopStreamOut,
    StreamHealthOut,
    StreamStatusOut,
)
from app.domain.live.bridge.bridge_errors import BadRequestError

router = APIRouter(prefix="/live/rtmp-bridge", tags=["RTMP Bridge"])


def bridge_response(out: BridgeOut) -> ORJSONResponse:
    return ORJSONResponse(status_code=200, content=out.model_dump(mode="json", by_alias=True))


@router.post("")
async def control_stream(body: RtmpBridgeIn, user: CurrentUser, service: Bridge) -> ORJSONResponse:
    """Start, stop or inspect the RTMP bridge of a session.

    - start: spawns the encoder; replaces a running one with the same session id
    - stop: always succeeds, even for unknown sessions
    - status / health: read only
    """
    if not body.session_id:
        raise BadRequestError("Missing required field: sessionId")

    match body.action:
        case BridgeAction.START.value:
            if not body.ingest_url or not body.stream_key:
                raise BadRequestError("Missing RTMP parameters: ingestUrl, streamKey")

            await service.start_stream(
                session_id=body.session_id,
                ingest_url=body.ingest_url,
                stream_key=body.stream_key,
                owner_id=user.user_id,
            )
            return bridge_response(StartStreamOut())

        case BridgeAction.STOP.value:
            await service.stop_stream(body.session_id, user.user_id)
            return bridge_response(StopStreamOut())

        case BridgeAction.STATUS.value:
            status = await service.get_status(body.session_id, user.user_id)
            return bridge_response(StreamStatusOut(**status.model_dump()))

        case BridgeAction.HEALTH.value:
            health = await service.get_health(body.session_id)
            return bridge_response(
                StreamHealthOut(success=health.found, healthy=health.healthy, reason=health.reason)
            )

    raise BadRequestError(f"Invalid action: {body.action}")


@router.put("")
async def push_chunk(
    request: Request,
    user: CurrentUser,
    service: Bridge,
    x_session_id: str | None = Header(default=None),
) -> ORJSONResponse:
    """Forward one raw audio chunk to the session's encoder.

    Responds only after the encoder pipe accepted the bytes. 410 means the
    encoder is gone and the session must be started again.
    """
    session_id = (x_session_id or "").strip()
    if not session_id:
        raise BadRequestError("Missing session id")

    payload = await request.body()
    accepted = await service.push_chunk(session_id, payload, user.user_id)
    logger.trace("Chunk of {} bytes forwarded for session {}", len(payload), session_id)

    return bridge_response(PushChunkOut(accepted=accepted))
