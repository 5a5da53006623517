# Tests for src/ccb_desktop/supervisor.py
# Created: 2026-03-02
#
# Real child processes (the running interpreter) stand in for the bridge;
# the control API client is mocked.

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from unittest.mock import AsyncMock, MagicMock

import pytest

from ccb_desktop.common import INSTALL_HINT
from ccb_desktop.supervisor import (
    MSG_ALREADY_RUNNING,
    MSG_MAY_STILL_RUN,
    MSG_PREVIOUS_EXITED,
    MSG_STALE_STATE,
    MSG_STARTING,
    MSG_STOPPED,
    BridgeNotFoundError,
    Phase,
    ServiceState,
    ServiceSupervisor,
)

SLEEPER = "import time; time.sleep(30)"


@dataclass
class FakeStrategy:
    name: str
    argvs: list[list[str]]
    calls: int = 0
    paths: list[str] = field(default_factory=list)

    def commands(self, search_path: str) -> list[list[str]]:
        self.calls += 1
        self.paths.append(search_path)
        return self.argvs


def python_strategy(code: str) -> FakeStrategy:
    return FakeStrategy("python", [[sys.executable, "-c", code]])


@pytest.fixture
def client():
    c = MagicMock()
    c.request_stop = AsyncMock(return_value=True)
    c.is_reachable = AsyncMock(return_value=False)
    return c


def make_supervisor(client, *strategies, state=None, on_status=None):
    sup = ServiceSupervisor(
        client,
        state,
        strategies=list(strategies),
        search_path=lambda: os.environ.get("PATH", ""),
        start_grace=0,
        stop_grace=0,
        on_status=on_status,
    )
    # Never pkill real processes on the test machine
    sup._kill_by_name = AsyncMock()
    return sup


# ── start ───────────────────────────────────────────────────────────────


class TestStart:
    async def test_start_spawns_and_tracks(self, client):
        sup = make_supervisor(client, python_strategy(SLEEPER))

        assert await sup.start() is True

        assert sup.is_running() is True
        assert sup.phase == Phase.RUNNING
        assert sup.state.process is not None
        assert sup.get_logs()[0] == MSG_STARTING
        await sup.stop()
        await sup.wait_for_log_readers(timeout=5)

    async def test_start_uses_search_path(self, client):
        strategy = python_strategy("pass")
        sup = ServiceSupervisor(
            client, strategies=[strategy], search_path=lambda: "/only/here", start_grace=0
        )
        await sup.start()
        assert strategy.paths == ["/only/here"]
        await sup.state.process.wait()
        await sup.wait_for_log_readers(timeout=5)

    async def test_already_running_does_not_spawn_again(self, client):
        strategy = python_strategy(SLEEPER)
        sup = make_supervisor(client, strategy)
        await sup.start()
        first = sup.state.process

        assert await sup.start() is True

        assert strategy.calls == 1
        assert sup.state.process is first
        assert sup.get_logs() == [MSG_STARTING, MSG_ALREADY_RUNNING]
        await sup.stop()
        await sup.wait_for_log_readers(timeout=5)

    async def test_exited_process_is_replaced(self, client):
        strategy = python_strategy("pass")
        sup = make_supervisor(client, strategy)
        await sup.start()
        first = sup.state.process
        await first.wait()
        await sup.wait_for_log_readers(timeout=5)

        assert await sup.start() is True

        assert strategy.calls == 2
        assert sup.state.process is not first
        logs = sup.get_logs()
        assert logs[:2] == [MSG_STARTING, MSG_PREVIOUS_EXITED]
        await sup.stop()
        await sup.wait_for_log_readers(timeout=5)

    async def test_stale_flag_without_process_is_reset(self, client):
        strategy = python_strategy("pass")
        sup = make_supervisor(client, strategy)
        sup.state.is_running = True

        await sup.start()

        assert strategy.calls == 1
        assert sup.get_logs()[:2] == [MSG_STARTING, MSG_STALE_STATE]
        await sup.state.process.wait()
        await sup.wait_for_log_readers(timeout=5)

    async def test_start_clears_previous_logs(self, client):
        sup = make_supervisor(client, python_strategy("pass"))
        sup.state.logs.extend(["old line 1", "old line 2"])

        await sup.start()
        await sup.state.process.wait()
        await sup.wait_for_log_readers(timeout=5)

        assert "old line 1" not in sup.get_logs()

    async def test_bridge_not_found(self, client):
        sup = make_supervisor(client, FakeStrategy("none", []))

        with pytest.raises(BridgeNotFoundError) as exc_info:
            await sup.start()

        assert str(exc_info.value) == INSTALL_HINT
        assert sup.get_logs() == [MSG_STARTING, INSTALL_HINT]
        assert sup.is_running() is False
        assert sup.phase == Phase.STOPPED

    async def test_status_callback(self, client):
        messages = []
        sup = make_supervisor(client, FakeStrategy("none", []), on_status=messages.append)

        with pytest.raises(BridgeNotFoundError):
            await sup.start()

        assert messages == [MSG_STARTING, INSTALL_HINT]


# ── Output capture ──────────────────────────────────────────────────────


class TestLogCapture:
    async def test_stdout_and_stderr_are_captured(self, client):
        code = "import sys; print('hello out', flush=True); print('hello err', file=sys.stderr)"
        sup = make_supervisor(client, python_strategy(code))

        await sup.start()
        await sup.state.process.wait()
        assert await sup.wait_for_log_readers(timeout=5)

        logs = sup.get_logs()
        assert "hello out" in logs
        assert "hello err" in logs

    async def test_buffer_keeps_last_50_lines(self, client):
        code = "for i in range(200): print(f'line {i}', flush=True)"
        sup = make_supervisor(client, python_strategy(code))

        await sup.start()
        await sup.state.process.wait()
        assert await sup.wait_for_log_readers(timeout=5)

        logs = sup.get_logs()
        assert len(logs) == 50
        assert logs[0] == "line 150"
        assert logs[-1] == "line 199"

    async def test_custom_buffer_size(self, client):
        code = "for i in range(20): print(i, flush=True)"
        sup = make_supervisor(client, python_strategy(code), state=ServiceState(log_limit=5))

        await sup.start()
        await sup.state.process.wait()
        await sup.wait_for_log_readers(timeout=5)

        assert sup.get_logs() == ["15", "16", "17", "18", "19"]

    async def test_invalid_utf8_is_replaced(self, client):
        code = "import sys; sys.stdout.buffer.write(b'bad \\xff byte\\n'); sys.stdout.flush()"
        sup = make_supervisor(client, python_strategy(code))

        await sup.start()
        await sup.state.process.wait()
        await sup.wait_for_log_readers(timeout=5)

        assert "bad \ufffd byte" in sup.get_logs()

    async def test_clear_logs(self, client):
        sup = make_supervisor(client)
        sup.state.logs.extend(["a", "b"])
        sup.clear_logs()
        assert sup.get_logs() == []

    async def test_no_readers_means_done(self, client):
        sup = make_supervisor(client)
        assert await sup.wait_for_log_readers(timeout=0.1) is True


# ── stop ────────────────────────────────────────────────────────────────


class TestStop:
    async def test_stop_kills_tracked_child(self, client):
        sup = make_supervisor(client, python_strategy(SLEEPER))
        await sup.start()
        proc = sup.state.process

        assert await sup.stop() is True

        assert proc.returncode is not None
        assert sup.state.process is None
        assert sup.is_running() is False
        assert sup.phase == Phase.STOPPED
        assert MSG_STOPPED in sup.get_logs()
        client.request_stop.assert_awaited_once()
        await sup.wait_for_log_readers(timeout=5)

    async def test_stop_when_nothing_tracked(self, client):
        sup = make_supervisor(client)

        assert await sup.stop() is True
        assert await sup.stop() is True

        assert sup.is_running() is False
        assert sup.get_logs() == [MSG_STOPPED, MSG_STOPPED]
        assert client.request_stop.await_count == 2

    @pytest.mark.skipif(os.name != "posix", reason="name-based cleanup is POSIX-only")
    async def test_stop_cleans_up_by_name(self, client):
        sup = make_supervisor(client)
        await sup.stop()
        sup._kill_by_name.assert_awaited_once()

    async def test_warns_when_bridge_still_answers(self, client):
        client.is_reachable.return_value = True
        sup = make_supervisor(client)

        assert await sup.stop() is False

        assert sup.get_logs() == [MSG_STOPPED, MSG_MAY_STILL_RUN]
        assert sup.phase == Phase.STOPPED

    async def test_probe_uses_configured_timeout(self, client):
        sup = make_supervisor(client)
        sup.probe_timeout = 0.25
        await sup.stop()
        client.is_reachable.assert_awaited_once_with(timeout=0.25)

    async def test_restart(self, client):
        strategy = python_strategy(SLEEPER)
        sup = make_supervisor(client, strategy)
        await sup.start()
        first = sup.state.process

        assert await sup.restart() is True

        assert strategy.calls == 2
        assert first.returncode is not None
        assert sup.state.process is not first
        assert sup.is_running() is True
        await sup.stop()
        await sup.wait_for_log_readers(timeout=5)


# ── is_running / accessors ──────────────────────────────────────────────


class TestIsRunning:
    async def test_reconciles_exited_child(self, client):
        sup = make_supervisor(client, python_strategy("import sys; sys.exit(3)"))
        await sup.start()
        await sup.state.process.wait()
        await sup.wait_for_log_readers(timeout=5)

        assert sup.is_running() is False

        assert sup.state.process is None
        assert sup.phase == Phase.STOPPED
        assert sup.get_logs()[-1] == "Bridge process exited with code 3"

    def test_initially_stopped(self, client):
        sup = make_supervisor(client)
        assert sup.is_running() is False
        assert sup.phase == Phase.STOPPED

    def test_accessors_fall_back_when_lock_is_busy(self, client, monkeypatch):
        monkeypatch.setattr("ccb_desktop.supervisor.LOCK_TIMEOUT", 0.01)
        sup = make_supervisor(client)
        sup.state.is_running = True
        sup.state.logs.append("kept")

        sup.state.lock.acquire()
        try:
            assert sup.get_logs() == []
            assert sup.is_running() is False
            assert sup.phase == Phase.STOPPED
            sup.clear_logs()
        finally:
            sup.state.lock.release()

        assert sup.get_logs() == ["kept"]
