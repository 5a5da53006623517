# CCB Desktop: Service Supervisor
# Starts/stops the bridge process, drains its stdout/stderr into a bounded
# in-memory log, and reconciles the tracked state with reality (the child
# may die on its own, or the bridge may have been started elsewhere).
# Created: 2026-03-02

from __future__ import annotations

import asyncio
import logging
import os
import threading
from collections import deque
from collections.abc import Callable, Sequence
from enum import Enum

from ccb_desktop.common import (
    BRIDGE_PROCESS_PATTERN,
    INSTALL_HINT,
    StatusCallback,
    noop_status,
)
from ccb_desktop.control_api import ControlApiClient
from ccb_desktop.launch import LaunchStrategy, launch_bridge
from ccb_desktop.paths import build_search_path

logger = logging.getLogger(__name__)

LOG_LIMIT = 50
# Accessors give up on the state lock after this long and return a default
LOCK_TIMEOUT = 1.0
KILL_TIMEOUT = 5.0

MSG_STARTING = "Starting CCB bridge..."
MSG_ALREADY_RUNNING = "Bridge is already running"
MSG_PREVIOUS_EXITED = "Previous process had stopped, starting fresh..."
MSG_STALE_STATE = "Resetting stale state..."
MSG_STOPPED = "Bridge stopped."
MSG_MAY_STILL_RUN = "Warning: Bridge may still be running"


class Phase(str, Enum):
    """Supervisor lifecycle phase."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class BridgeNotFoundError(Exception):
    """Every launch strategy was tried and none could spawn the bridge."""


class ServiceState:
    """Mutable state shared by command handlers and the log readers.

    Every field is guarded by ``lock``. Hold it only to read or mutate
    fields, never across an await or blocking I/O.
    """

    def __init__(self, log_limit: int = LOG_LIMIT) -> None:
        self.lock = threading.Lock()
        self.process: asyncio.subprocess.Process | None = None
        self.is_running = False
        self.phase = Phase.STOPPED
        self.logs: deque[str] = deque(maxlen=log_limit)

    def reset_process(self) -> None:
        """Forget the tracked child (caller holds ``lock``)."""
        self.process = None
        self.is_running = False
        self.phase = Phase.STOPPED


class ServiceSupervisor:
    """Owns the bridge child process and its log buffer."""

    def __init__(
        self,
        client: ControlApiClient,
        state: ServiceState | None = None,
        *,
        strategies: Sequence[LaunchStrategy] | None = None,
        search_path: Callable[[], str] = build_search_path,
        start_grace: float = 2.0,
        stop_grace: float = 0.5,
        probe_timeout: float = 2.0,
        on_status: StatusCallback | None = None,
    ) -> None:
        self.client = client
        self.state = state or ServiceState()
        self.strategies = strategies
        self.search_path = search_path
        self.start_grace = start_grace
        self.stop_grace = stop_grace
        self.probe_timeout = probe_timeout
        self.on_status = on_status or noop_status
        self._lifecycle = asyncio.Lock()
        self._readers: list[asyncio.Task] = []

    # ── Public API ─────────────────────────────────────────────────────

    async def start(self) -> bool:
        """Start the bridge. Returns True once it is (or already was) running.

        Raises:
            BridgeNotFoundError: no launch strategy could spawn the bridge.
        """
        async with self._lifecycle:
            return await self._start_locked()

    async def _start_locked(self) -> bool:
        notes: list[str] = []
        already_running = False
        with self.state.lock:
            self.state.logs.clear()
            self.state.logs.append(MSG_STARTING)

            if self.state.is_running:
                proc = self.state.process
                if proc is None:
                    self.state.reset_process()
                    notes.append(MSG_STALE_STATE)
                elif proc.returncode is not None:
                    self.state.reset_process()
                    notes.append(MSG_PREVIOUS_EXITED)
                else:
                    already_running = True
                    notes.append(MSG_ALREADY_RUNNING)
                self.state.logs.extend(notes)

            if not already_running:
                self.state.phase = Phase.STARTING

        self._notify(MSG_STARTING)
        for note in notes:
            self._notify(note)
        if already_running:
            return True

        launched = await launch_bridge(self.search_path(), self.strategies)
        if launched is None:
            self._record(INSTALL_HINT, logging.ERROR)
            with self.state.lock:
                self.state.phase = Phase.STOPPED
            raise BridgeNotFoundError(INSTALL_HINT)

        proc = launched.process
        self._readers = [
            asyncio.create_task(self._drain(proc.stderr), name="ccb-stderr"),
            asyncio.create_task(self._drain(proc.stdout), name="ccb-stdout"),
        ]
        with self.state.lock:
            self.state.process = proc
            self.state.is_running = True
            self.state.phase = Phase.RUNNING
        self._notify(f"Bridge process started (pid {proc.pid}, via {launched.strategy})")

        # Give the control API a moment to start listening
        if self.start_grace:
            await asyncio.sleep(self.start_grace)
        return True

    async def stop(self) -> bool:
        """Stop the bridge, whoever started it.

        Returns False if the control API still answers afterwards. That is
        a warning, not an error: the bridge may just be slow to exit.
        """
        async with self._lifecycle:
            with self.state.lock:
                self.state.phase = Phase.STOPPING

            # Graceful first; also reaches bridges we didn't spawn
            await self.client.request_stop()

            with self.state.lock:
                proc = self.state.process
                self.state.process = None
                self.state.is_running = False
            if proc is not None:
                await self._kill(proc)
            self._record(MSG_STOPPED)

            if os.name == "posix":
                await self._kill_by_name()

            if self.stop_grace:
                await asyncio.sleep(self.stop_grace)

            still_running = await self.client.is_reachable(timeout=self.probe_timeout)
            with self.state.lock:
                self.state.phase = Phase.STOPPED
            if still_running:
                self._record(MSG_MAY_STILL_RUN, logging.WARNING)
            return not still_running

    async def restart(self) -> bool:
        """Restart the bridge."""
        await self.stop()
        await asyncio.sleep(1)
        return await self.start()

    def is_running(self) -> bool:
        """Whether the tracked bridge is alive.

        Repairs the state first if the child exited behind our back.
        """
        if not self.state.lock.acquire(timeout=LOCK_TIMEOUT):
            return False
        exit_code = None
        try:
            proc = self.state.process
            if self.state.is_running and proc is not None and proc.returncode is not None:
                exit_code = proc.returncode
                self.state.reset_process()
                self.state.logs.append(f"Bridge process exited with code {exit_code}")
            running = self.state.is_running
        finally:
            self.state.lock.release()
        if exit_code is not None:
            logger.warning("Bridge process exited with code %s", exit_code)
        return running

    @property
    def phase(self) -> Phase:
        if not self.state.lock.acquire(timeout=LOCK_TIMEOUT):
            return Phase.STOPPED
        try:
            return self.state.phase
        finally:
            self.state.lock.release()

    def get_logs(self) -> list[str]:
        """Snapshot of the retained bridge output, oldest first."""
        if not self.state.lock.acquire(timeout=LOCK_TIMEOUT):
            return []
        try:
            return list(self.state.logs)
        finally:
            self.state.lock.release()

    def clear_logs(self) -> None:
        if not self.state.lock.acquire(timeout=LOCK_TIMEOUT):
            return
        try:
            self.state.logs.clear()
        finally:
            self.state.lock.release()

    async def wait_for_log_readers(self, timeout: float | None = None) -> bool:
        """Wait until both output drains hit end-of-stream.

        Returns False if they are still reading when ``timeout`` expires.
        """
        pending = [t for t in self._readers if not t.done()]
        if not pending:
            return True
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        return not still_pending

    # ── Internal ───────────────────────────────────────────────────────

    def _notify(self, msg: str, level: int = logging.INFO) -> None:
        logger.log(level, msg)
        self.on_status(msg)

    def _record(self, msg: str, level: int = logging.INFO) -> None:
        """Append a controller message to the log buffer and report it."""
        self._append(msg)
        self._notify(msg, level)

    def _append(self, line: str) -> None:
        with self.state.lock:
            self.state.logs.append(line)

    async def _drain(self, stream: asyncio.StreamReader | None) -> None:
        """Copy one output stream into the log buffer until EOF."""
        if stream is None:
            return
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                # Line longer than the stream limit; the reader dropped it
                logger.debug("[bridge] overlong output line discarded")
                continue
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            logger.debug("[bridge] %s", line)
            self._append(line)

    async def _kill(self, proc: asyncio.subprocess.Process) -> None:
        """Kill and reap the tracked child."""
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        try:
            await asyncio.wait_for(proc.wait(), timeout=KILL_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("Bridge process %s did not exit after kill", proc.pid)

    async def _kill_by_name(self) -> None:
        """pkill fallback for bridges started outside this controller."""
        try:
            pkill = await asyncio.create_subprocess_exec(
                "pkill",
                "-f",
                BRIDGE_PROCESS_PATTERN,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await asyncio.wait_for(pkill.wait(), timeout=KILL_TIMEOUT)
        except (OSError, asyncio.TimeoutError) as exc:
            logger.debug("pkill fallback failed: %s", exc)
