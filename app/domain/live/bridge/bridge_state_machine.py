"""Bridge state machine for managing state transitions."""

from loguru import logger

from .bridge_models import BridgeSession, BridgeState


class BridgeStateMachine:
    """State machine for bridge session transitions.

    State flow with triggers:
    - ABSENT -> STARTING (start requested) | ERRORED
    - STARTING -> RUNNING (encoder spawned and registered) | ERRORED (spawn failed)
    - RUNNING -> STOPPING (stop requested) | ENDED (clean exit) | ERRORED (nonzero exit, pipe failure)
    - STOPPING -> ENDED (encoder exited after stop) | ERRORED
    - ENDED/ERRORED are terminal for a session object; a new start creates a new session
    """

    TRANSITIONS: dict[BridgeState, set[BridgeState]] = {
        BridgeState.ABSENT: {BridgeState.STARTING, BridgeState.ERRORED},
        BridgeState.STARTING: {BridgeState.RUNNING, BridgeState.ERRORED},
        BridgeState.RUNNING: {BridgeState.STOPPING, BridgeState.ENDED, BridgeState.ERRORED},
        BridgeState.STOPPING: {BridgeState.ENDED, BridgeState.ERRORED},
        BridgeState.ENDED: set(),
        BridgeState.ERRORED: set(),
    }

    TERMINAL_STATES: set[BridgeState] = {BridgeState.ENDED, BridgeState.ERRORED}

    @classmethod
    def can_transition(cls, current: BridgeState, new: BridgeState) -> bool:
        return new in cls.TRANSITIONS.get(current, set())

    @classmethod
    def is_terminal(cls, state: BridgeState) -> bool:
        return state in cls.TERMINAL_STATES

    @classmethod
    def get_valid_transitions(cls, state: BridgeState) -> set[BridgeState]:
        return cls.TRANSITIONS.get(state, set())

    @classmethod
    def apply(cls, session: BridgeSession, new: BridgeState, reason: str | None = None) -> bool:
        """Move a session to a new state if the transition is valid.

        Several paths race to end a session (stop, exit event, failed write);
        only the first one to observe the transition wins, later ones are no-ops.
        """
        if session.state == new:
            return False
        if not cls.can_transition(session.state, new):
            logger.debug(
                "Ignoring transition {} -> {} for session {}", session.state, new, session.session_id
            )
            return False

        logger.info(
            "Session {} state {} -> {}{}",
            session.session_id,
            session.state,
            new,
            f" ({reason})" if reason else "",
        )
        session.state = new
        session.state_reason = reason
        return True
