"""Startup reconciliation of encoder processes left behind by a crashed server.

Every spawned encoder gets a small JSON record in the runtime directory. The
record is removed when the encoder exits; records that survive a server
restart point at processes nobody owns anymore.
"""

import contextlib
import os
import signal
from datetime import datetime, timezone
from pathlib import Path

import orjson
from loguru import logger


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to someone else: not ours to signal
        return False
    return True


def _looks_like(pid: int, executable: str) -> bool:
    """Guard against pid reuse: compare the running command with the recorded executable."""
    cmdline_path = Path(f"/proc/{pid}/cmdline")
    if not cmdline_path.exists():
        # No procfs; the record is the best information available
        return True
    try:
        argv0 = cmdline_path.read_bytes().split(b"\0", 1)[0].decode(errors="replace")
    except OSError:
        return False
    if not argv0:
        # Not exec'd yet or already a zombie; the record is the best information available
        return True
    return Path(argv0).name == Path(executable).name


class OrphanReaper:
    def __init__(self, runtime_dir: Path):
        self.runtime_dir = Path(runtime_dir)

    def _record_path(self, pid: int) -> Path:
        return self.runtime_dir / f"encoder-{pid}.json"

    def record(self, session_id: str, pid: int, executable: str) -> None:
        try:
            self.runtime_dir.mkdir(parents=True, exist_ok=True)
            self._record_path(pid).write_bytes(
                orjson.dumps(
                    {
                        "session_id": session_id,
                        "pid": pid,
                        "executable": executable,
                        "started_at": datetime.now(timezone.utc),
                    }
                )
            )
        except OSError as e:
            logger.warning("Could not write encoder record for pid={}: {}", pid, e)

    def forget(self, pid: int) -> None:
        with contextlib.suppress(FileNotFoundError):
            self._record_path(pid).unlink()

    def reap(self) -> int:
        """Terminate encoders recorded by a previous server run.

        Returns the number of processes signalled. All records are removed.
        """
        if not self.runtime_dir.exists():
            logger.debug("No encoder records found in {}", self.runtime_dir)
            return 0

        reaped = 0
        for path in sorted(self.runtime_dir.glob("encoder-*.json")):
            try:
                data = orjson.loads(path.read_bytes())
                pid = int(data["pid"])
                executable = str(data.get("executable") or "")
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning("Discarding unreadable encoder record {}: {}", path, e)
                path.unlink(missing_ok=True)
                continue

            if pid != os.getpid() and _pid_alive(pid) and _looks_like(pid, executable):
                logger.warning(
                    "Reaping orphaned encoder pid={} session_id={}", pid, data.get("session_id")
                )
                with contextlib.suppress(ProcessLookupError):
                    os.kill(pid, signal.SIGTERM)
                    reaped += 1

            path.unlink(missing_ok=True)

        if reaped:
            logger.info("Reaped {} orphaned encoder(s)", reaped)
        return reaped
