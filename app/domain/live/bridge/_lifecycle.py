"""Start/stop/status/health operations for bridge sessions."""

import asyncio

from loguru import logger

from ._launcher import EncoderLauncher
from ._registry import SessionRegistry
from .bridge_errors import BadRequestError, SpawnError
from .bridge_models import BridgeSession, BridgeState, StreamHealth, StreamStatus
from .bridge_state_machine import BridgeStateMachine


class LifecycleController:
    def __init__(
        self,
        registry: SessionRegistry,
        launcher: EncoderLauncher,
        *,
        shutdown_grace: float = 5.0,
    ):
        self.registry = registry
        self.launcher = launcher
        self.shutdown_grace = shutdown_grace

    async def start(self, session_id: str, ingest_url: str, stream_key: str, owner_id: str) -> BridgeSession:
        """Spawn an encoder and register it under `session_id`.

        A running session with the same id is replaced and its encoder terminated.

        Raises:
            BadRequestError: invalid ingest URL or stream key; nothing is registered.
            SpawnError: the encoder could not be started; nothing is registered.
        """
        session = BridgeSession(session_id=session_id, owner_id=owner_id, ingest_url=ingest_url)
        BridgeStateMachine.apply(session, BridgeState.STARTING)

        try:
            process = await self.launcher.launch(session_id, ingest_url, stream_key)
        except (BadRequestError, SpawnError) as e:
            BridgeStateMachine.apply(session, BridgeState.ERRORED, e.errmesg)
            raise

        session.process = process
        session.started_at = process.started_at
        BridgeStateMachine.apply(session, BridgeState.RUNNING)
        process.add_exit_listener(lambda code: self._on_exit(session, code))

        await self.registry.register(session)
        if process.returncode is not None:
            # Died before it was registered; the exit listener may have missed the entry
            await self.registry.remove(session_id, expected=session)

        logger.info(
            "Stream started for session {} by user {}; active streams: {}",
            session_id,
            owner_id,
            self.registry.session_ids(),
        )
        return session

    async def _on_exit(self, session: BridgeSession, returncode: int) -> None:
        if session.state == BridgeState.STOPPING or returncode == 0:
            BridgeStateMachine.apply(session, BridgeState.ENDED, f"exit code {returncode}")
        else:
            BridgeStateMachine.apply(session, BridgeState.ERRORED, f"exit code {returncode}")
        await self.registry.remove(session.session_id, expected=session)

    async def stop(self, session_id: str, caller_id: str) -> bool:
        """Terminate a session's encoder without waiting for it to exit.

        Always succeeds. Returns whether a session was actually stopped; absent
        sessions and sessions owned by someone else are left untouched.
        """
        session = await self.registry.lookup(session_id)
        if session is None:
            logger.debug("Stop requested for absent session {}", session_id)
            return False

        if session.owner_id != caller_id:
            logger.warning("User {} may not stop session {} owned by {}", caller_id, session_id, session.owner_id)
            return False

        BridgeStateMachine.apply(session, BridgeState.STOPPING, "stop requested")
        removed = await self.registry.remove(session_id, expected=session)
        return removed is not None

    async def status(self, session_id: str, caller_id: str) -> StreamStatus:
        session = await self.registry.lookup(session_id)
        return StreamStatus(
            running=session is not None and session.is_alive(),
            started_at=session.started_at if session else None,
            owned_by_you=(session.owner_id == caller_id) if session else None,
            active_streams=self.registry.session_ids(),
        )

    async def health(self, session_id: str) -> StreamHealth:
        session = await self.registry.lookup(session_id)
        if session is None:
            return StreamHealth(found=False, healthy=False, reason="No stream found")

        healthy = session.is_alive()
        return StreamHealth(
            found=True,
            healthy=healthy,
            reason="Stream active" if healthy else "Process terminated",
        )

    async def shutdown(self) -> None:
        """Stop every encoder on server shutdown.

        Inputs are closed first so encoders can flush, stragglers are
        terminated and finally killed.
        """
        sessions = await self.registry.clear()
        processes = [s.process for s in sessions if s.process is not None and s.process.returncode is None]
        if not processes:
            return

        logger.info("Shutting down {} encoder(s)", len(processes))
        for session in sessions:
            BridgeStateMachine.apply(session, BridgeState.STOPPING, "server shutdown")

        await asyncio.gather(*(p.close_input() for p in processes))
        codes = await asyncio.gather(*(p.wait(self.shutdown_grace) for p in processes))

        remaining = [p for p, code in zip(processes, codes) if code is None]
        for p in remaining:
            p.terminate()
        codes = await asyncio.gather(*(p.wait(self.shutdown_grace) for p in remaining))

        for p, code in zip(remaining, codes):
            if code is None:
                p.kill()
                await p.wait(self.shutdown_grace)
