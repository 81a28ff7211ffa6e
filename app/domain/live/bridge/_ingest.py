"""Audio chunk forwarding into a session's encoder."""

from loguru import logger

from ._registry import SessionRegistry
from .bridge_errors import AuthorizationError, BadRequestError, NotFoundError, StreamEndedError
from .bridge_models import BridgeState
from .bridge_state_machine import BridgeStateMachine


class AudioIngestChannel:
    """Accepts one chunk per call and forwards it with backpressure.

    A push only completes once the encoder pipe has accepted the bytes, so a
    client that awaits each push before sending the next one gets in-order,
    lossless delivery and is slowed down to the encoder's pace.
    """

    def __init__(self, registry: SessionRegistry, *, write_timeout: float = 10.0):
        self.registry = registry
        self.write_timeout = write_timeout

    async def push(self, session_id: str, payload: bytes, caller_id: str) -> bool:
        """Forward `payload` into the encoder of `session_id`.

        Returns whether the pipe accepted the chunk without filling up.

        Raises:
            NotFoundError: no session registered under `session_id`.
            AuthorizationError: `caller_id` does not own the session.
            BadRequestError: empty payload.
            StreamEndedError: the encoder is gone; the entry has been evicted.
        """
        session = await self.registry.lookup(session_id)
        if session is None:
            raise NotFoundError()

        if session.owner_id != caller_id:
            raise AuthorizationError()

        if not payload:
            raise BadRequestError("Empty audio data")

        process = session.process
        if process is None or not process.is_alive():
            BridgeStateMachine.apply(session, BridgeState.ERRORED, "process not alive")
            await self.registry.remove(session_id, expected=session)
            raise StreamEndedError()

        try:
            accepted = await process.write(payload, self.write_timeout)
        except StreamEndedError as e:
            logger.warning("Stream ended for session {} while writing: {}", session_id, e.errmesg)
            if session.state == BridgeState.RUNNING:
                BridgeStateMachine.apply(session, BridgeState.ERRORED, e.errmesg)
            await self.registry.remove(session_id, expected=session)
            raise

        if not accepted:
            logger.debug("Encoder input for session {} was full, waited for drain", session_id)
        return accepted
