"""Tests for the PreforkServer supervisor."""

import os
import signal
import time

import pytest
from unittest.mock import Mock, patch
from pubsub import pub

from conftest import MockListener, MockTransport
from gemini_prefork.config import Config
from gemini_prefork.core.errors import ForkFailed
from gemini_prefork.prefork import (
    PreforkServer,
    TOPIC_WORKER_EXITED,
    TOPIC_WORKER_SPAWNED,
)

PIDS = [101, 102, 103, 104]


class FakeChildren:
    """Simulated children for os.waitpid(-1, WNOHANG).

    Tests mark PIDs dead with kill(); waitpid reports each dead PID once.
    """

    def __init__(self, pids):
        self.alive = list(pids)
        self.dead = []

    def kill(self, pid):
        self.alive.remove(pid)
        self.dead.append(pid)

    def waitpid(self, pid, options):
        if not self.alive and not self.dead:
            raise ChildProcessError("no children")
        if self.dead:
            return self.dead.pop(0), signal.SIGTERM
        return 0, 0


@pytest.fixture
def supervisor():
    return PreforkServer(Mock(), Config(workers=4, poll_interval=0.1), MockTransport())


class TestSpawnWorkers:
    """Tests for spawning workers."""

    @patch("gemini_prefork.prefork.os.fork")
    def test_registry_records_pids(self, mock_fork, supervisor):
        """Each successful fork adds its PID in order."""
        mock_fork.side_effect = PIDS

        count = supervisor.spawn_workers()

        assert count == 4
        assert supervisor.workers == PIDS
        assert mock_fork.call_count == 4

    @patch("gemini_prefork.prefork.os.fork")
    def test_fork_failure_skips_one_worker(self, mock_fork, supervisor):
        """A failed fork aborts only that worker and is not retried."""
        mock_fork.side_effect = [101, OSError("EAGAIN"), 103, 104]

        supervisor.spawn_workers()

        assert supervisor.workers == [101, 103, 104]
        assert mock_fork.call_count == 4

    @patch("gemini_prefork.prefork.os.fork")
    def test_spawn_worker_raises_fork_failed(self, mock_fork, supervisor):
        """spawn_worker reports fork failures as ForkFailed."""
        mock_fork.side_effect = OSError("EAGAIN")
        with pytest.raises(ForkFailed):
            supervisor.spawn_worker(0)
        assert supervisor.workers == []

    @patch("gemini_prefork.prefork.os.fork")
    def test_child_runs_worker(self, mock_fork, supervisor):
        """In the child (fork returns 0) the worker body runs."""
        mock_fork.return_value = 0
        with patch.object(supervisor, "_run_worker", side_effect=SystemExit(0)) as run:
            with pytest.raises(SystemExit):
                supervisor.spawn_worker(2)
        run.assert_called_once_with(2)

    @patch("gemini_prefork.prefork.os.fork")
    def test_spawn_publishes_event(self, mock_fork, supervisor):
        """Spawning publishes the PID and index."""
        mock_fork.side_effect = [101, 102]
        events = []

        def on_spawned(pid, index):
            events.append((pid, index))

        pub.subscribe(on_spawned, TOPIC_WORKER_SPAWNED)
        try:
            supervisor.spawn_worker(0)
            supervisor.spawn_worker(1)
        finally:
            pub.unsubscribe(on_spawned, TOPIC_WORKER_SPAWNED)

        assert events == [(101, 0), (102, 1)]


class TestReap:
    """Tests for reaping terminated workers."""

    @patch("gemini_prefork.prefork.os.waitpid")
    def test_reap_removes_dead_workers(self, mock_waitpid, supervisor):
        """Each terminated child is removed from the registry."""
        supervisor.workers = list(PIDS)
        children = FakeChildren(PIDS)
        mock_waitpid.side_effect = children.waitpid

        for expected_size, pid in zip([3, 2, 1], PIDS[:3]):
            children.kill(pid)
            assert supervisor.reap() == [pid]
            assert len(supervisor.workers) == expected_size

        assert supervisor.workers == [104]

    @patch("gemini_prefork.prefork.os.waitpid")
    def test_reap_without_deaths(self, mock_waitpid, supervisor):
        """Nothing is removed while all children run."""
        supervisor.workers = list(PIDS)
        mock_waitpid.return_value = (0, 0)
        assert supervisor.reap() == []
        assert supervisor.workers == PIDS
        mock_waitpid.assert_called_once()

    @patch("gemini_prefork.prefork.os.waitpid")
    def test_no_children_clears_registry(self, mock_waitpid, supervisor):
        """ECHILD means every registered worker is gone."""
        supervisor.workers = [101, 102]
        mock_waitpid.side_effect = ChildProcessError("no children")
        assert supervisor.reap() == [101, 102]
        assert supervisor.workers == []

    @patch("gemini_prefork.prefork.os.waitpid")
    def test_reap_publishes_exit_code(self, mock_waitpid, supervisor):
        """Exit events carry the decoded exit code."""
        supervisor.workers = [101]
        mock_waitpid.side_effect = [(101, signal.SIGKILL)]
        events = []

        def on_exited(pid, status):
            events.append((pid, status))

        pub.subscribe(on_exited, TOPIC_WORKER_EXITED)
        try:
            supervisor.reap()
        finally:
            pub.unsubscribe(on_exited, TOPIC_WORKER_EXITED)

        assert events == [(101, -signal.SIGKILL)]


class TestMonitor:
    """Tests for the monitor loop."""

    @patch("gemini_prefork.prefork.signal.signal")
    @patch("gemini_prefork.prefork.time.sleep")
    @patch("gemini_prefork.prefork.os.waitpid")
    def test_loop_ends_when_registry_empties(self, mock_waitpid, mock_sleep, mock_signal, supervisor):
        """Terminating workers one per poll shrinks the registry until the loop ends."""
        supervisor.workers = list(PIDS)
        children = FakeChildren(PIDS)
        mock_waitpid.side_effect = children.waitpid
        sizes = []

        def sleep(interval):
            assert interval == 0.1
            sizes.append(len(supervisor.workers))
            children.kill(children.alive[0])

        mock_sleep.side_effect = sleep

        supervisor.monitor()

        assert sizes == [4, 3, 2, 1]
        assert supervisor.workers == []
        mock_signal.assert_called_once_with(signal.SIGCHLD, signal.SIG_DFL)

    @patch("gemini_prefork.prefork.signal.signal")
    @patch("gemini_prefork.prefork.time.sleep")
    @patch("gemini_prefork.prefork.os.waitpid")
    def test_stop_ends_loop(self, mock_waitpid, mock_sleep, mock_signal, supervisor):
        """stop() ends the loop with workers still registered."""
        supervisor.workers = list(PIDS)
        mock_waitpid.return_value = (0, 0)
        mock_sleep.side_effect = lambda interval: supervisor.stop()

        supervisor.monitor()

        assert supervisor.workers == PIDS
        assert mock_sleep.call_count == 1


class TestShutdown:
    """Tests for shutdown propagation."""

    @patch("gemini_prefork.prefork.os.waitpid")
    @patch("gemini_prefork.prefork.os.kill")
    def test_terminates_remaining_workers(self, mock_kill, mock_waitpid, supervisor):
        """Remaining workers get SIGTERM and are reaped."""
        supervisor.workers = [101, 102]
        mock_kill.side_effect = [None, ProcessLookupError()]
        mock_waitpid.side_effect = [(101, signal.SIGTERM), ChildProcessError()]

        supervisor.shutdown()

        assert [c.args for c in mock_kill.call_args_list] == [
            (101, signal.SIGTERM),
            (102, signal.SIGTERM),
        ]
        assert supervisor.workers == []

    @patch("gemini_prefork.prefork.os.kill")
    def test_propagation_disabled(self, mock_kill):
        """With propagate_shutdown off, workers are left alone."""
        supervisor = PreforkServer(Mock(), Config(propagate_shutdown=False), MockTransport())
        supervisor.workers = [101]

        supervisor.shutdown()

        mock_kill.assert_not_called()
        assert supervisor.workers == [101]


class TestRun:
    """Tests for PreforkServer.run."""

    @patch("gemini_prefork.prefork.os.fork")
    def test_no_workers_started(self, mock_fork, supervisor):
        """run fails when every fork fails."""
        mock_fork.side_effect = OSError("EAGAIN")
        assert supervisor.run() == 1

    @patch("gemini_prefork.prefork.signal.signal")
    @patch("gemini_prefork.prefork.os.waitpid")
    @patch("gemini_prefork.prefork.os.fork")
    def test_run_until_workers_exit(self, mock_fork, mock_waitpid, mock_signal, supervisor):
        """run returns once every worker has exited."""
        mock_fork.side_effect = PIDS
        mock_waitpid.side_effect = [(pid, 0) for pid in PIDS]

        assert supervisor.run() == 0
        assert supervisor.workers == []


class TestRunWorker:
    """Tests for the worker process body."""

    @patch("gemini_prefork.prefork.os._exit")
    @patch("gemini_prefork.prefork.signal.signal")
    @patch("gemini_prefork.prefork.GeminiServer")
    def test_worker_binds_with_reuse_port(self, mock_server_cls, mock_signal, mock_exit, supervisor):
        """Workers serve with reuse_port forced on."""
        supervisor._run_worker(0)

        config = mock_server_cls.call_args[0][1]
        assert config.reuse_port is True
        mock_server_cls.return_value.serve_forever.assert_called_once()
        mock_exit.assert_called_once_with(0)

    @patch("gemini_prefork.prefork.os._exit")
    @patch("gemini_prefork.prefork.signal.signal")
    @patch("gemini_prefork.prefork.GeminiServer")
    def test_worker_failure_exits_nonzero(self, mock_server_cls, mock_signal, mock_exit, supervisor):
        """A crashing worker exits with status 1."""
        mock_server_cls.return_value.serve_forever.side_effect = OSError("address in use")

        supervisor._run_worker(0)

        mock_exit.assert_called_once_with(1)


class IdleListener(MockListener):
    """Listener whose accept waits for a connection that never arrives."""

    def __init__(self):
        super().__init__([])

    def accept(self):
        time.sleep(3600)
        raise OSError("no connection")


@pytest.mark.skipif(not hasattr(os, "fork"), reason="requires os.fork")
class TestForkedWorkers:
    """Tests with real worker processes."""

    def test_killed_worker_is_reaped(self):
        """A worker killed from outside leaves the registry; the other survives."""
        transport = MockTransport()
        transport.listener = IdleListener()
        supervisor = PreforkServer(Mock(), Config(workers=2, poll_interval=0.05), transport)
        exits = []

        def on_exited(pid, status):
            exits.append((pid, status))

        pub.subscribe(on_exited, TOPIC_WORKER_EXITED)
        try:
            assert supervisor.spawn_workers() == 2
            first, second = supervisor.workers

            os.kill(first, signal.SIGKILL)
            deadline = time.monotonic() + 10
            while first in supervisor.workers and time.monotonic() < deadline:
                supervisor.reap()
                time.sleep(0.05)

            assert supervisor.workers == [second]
            assert exits == [(first, -signal.SIGKILL)]
        finally:
            supervisor.shutdown()
            pub.unsubscribe(on_exited, TOPIC_WORKER_EXITED)

        assert supervisor.workers == []
        assert exits[-1] == (second, -signal.SIGTERM)
