from typing import Annotated

from fastapi import Depends, Request
from loguru import logger
from pydantic import BaseModel

from app.domain.live.bridge.bridge_domain import BridgeService
from app.domain.live.bridge.bridge_errors import AuthorizationError
from app.shared.domain.core_api.auth.verify_token import verify_token


class User(BaseModel):
    user_id: str


async def get_current_user(request: Request) -> User:
    # Do not log request headers here (may include secrets like x-app-auth).
    user_info = await verify_token(request)
    if not user_info or not user_info.get("user_id"):
        raise AuthorizationError("Unauthorized", authenticated=False)

    user_id = str(user_info["user_id"])
    logger.debug("Authenticated user_id: {}", user_id)

    return User(user_id=user_id)


def get_bridge_service(request: Request) -> BridgeService:
    """BridgeService constructed in the application lifespan."""
    return request.app.state.bridge_service


CurrentUser = Annotated[User, Depends(get_current_user)]
Bridge = Annotated[BridgeService, Depends(get_bridge_service)]
