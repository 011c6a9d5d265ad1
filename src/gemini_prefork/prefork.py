"""PreforkServer - master process supervising a fixed pool of server workers."""

import logging
import os
import signal
import time
from dataclasses import replace
from typing import Callable

from pubsub import pub

from .config import Config
from .core import ForkFailed
from .interfaces import Transport
from .server import GeminiServer, Request

logger = logging.getLogger(__name__)

TOPIC_WORKER_SPAWNED = "gemini_worker_spawned"
TOPIC_WORKER_EXITED = "gemini_worker_exited"


def _worker_spawned(pid: int, index: int) -> None:
    """Message data of TOPIC_WORKER_SPAWNED."""


def _worker_exited(pid: int, status: int | None) -> None:
    """Message data of TOPIC_WORKER_EXITED; status is None if unknown."""


_topics = pub.getDefaultTopicMgr()
_topics.getOrCreateTopic(TOPIC_WORKER_SPAWNED, _worker_spawned)
_topics.getOrCreateTopic(TOPIC_WORKER_EXITED, _worker_exited)


class PreforkServer:
    """Master process that forks worker processes sharing one port.

    Each worker binds its own listener with SO_REUSEPORT and serves
    connections one at a time. The master only watches for dead workers
    by polling; it never restarts them. The worker registry is touched
    by the master's control loop alone.

    Lifecycle events are published on the default pubsub bus in the
    master process, for callers that want to log or count workers:
    TOPIC_WORKER_SPAWNED(pid, index) after each fork and
    TOPIC_WORKER_EXITED(pid, status) when a worker is reaped, with status
    the exit code (negative signal number when killed, None if unknown).
    The serve command subscribes to TOPIC_WORKER_EXITED to report crashes.
    """

    def __init__(
        self,
        handler: Callable[[Request], None],
        config: Config | None = None,
        transport: Transport | None = None,
    ):
        """
        Initialize the supervisor.

        Args:
            handler: Request handler run by every worker.
            config: Configuration (uses defaults if None).
            transport: Transport for the workers' servers (TLS by default).
        """
        self.handler = handler
        self.config = config or Config()
        self.transport = transport
        self.workers: list[int] = []
        self._stopping = False
        self._original_handlers: dict = {}

    def run(self) -> int:
        """
        Spawn the workers and supervise them until they are all gone.

        Returns:
            0 if at least one worker was started, 1 otherwise.
        """
        logger.info(
            f"Starting {self.config.workers} worker(s) on "
            f"{self.config.host}:{self.config.port}"
        )
        self.spawn_workers()
        if not self.workers:
            logger.error("No worker could be started")
            return 1

        self._setup_signals()
        try:
            self.monitor()
        finally:
            self.shutdown()
            self._restore_signals()
        return 0

    def spawn_workers(self) -> int:
        """
        Fork config.workers workers. A failed fork is logged and skipped.

        Returns:
            Number of workers in the registry.
        """
        for index in range(self.config.workers):
            try:
                self.spawn_worker(index)
            except ForkFailed as e:
                logger.error(str(e))
        return len(self.workers)

    def spawn_worker(self, index: int) -> int:
        """
        Fork one worker and record its PID.

        Raises:
            ForkFailed: If os.fork() fails.
        """
        try:
            pid = os.fork()
        except OSError as e:
            raise ForkFailed(f"Failed to fork worker {index}: {e}") from e

        if pid == 0:
            self._run_worker(index)

        self.workers.append(pid)
        logger.info(f"Spawned worker {index} (pid {pid})")
        pub.sendMessage(TOPIC_WORKER_SPAWNED, pid=pid, index=index)
        return pid

    def monitor(self) -> None:
        """Poll for dead workers until none remain or stop() is called."""
        # No SIGCHLD handler: polling is the only way exits are noticed.
        signal.signal(signal.SIGCHLD, signal.SIG_DFL)

        while self.workers and not self._stopping:
            self.reap()
            if self.workers and not self._stopping:
                time.sleep(self.config.poll_interval)

        logger.info("Monitor loop finished")

    def reap(self) -> list[int]:
        """
        Collect every terminated worker without blocking.

        Returns:
            PIDs removed from the registry.
        """
        reaped = []
        while self.workers:
            try:
                pid, status = os.waitpid(-1, os.WNOHANG)
            except ChildProcessError:
                logger.warning("No child processes left; clearing worker registry")
                for pid in list(self.workers):
                    self._forget(pid, None)
                    reaped.append(pid)
                break

            if pid == 0:
                break

            self._forget(pid, status)
            reaped.append(pid)
        return reaped

    def stop(self) -> None:
        """Ask the monitor loop to exit."""
        self._stopping = True

    def shutdown(self) -> None:
        """Terminate and reap the remaining workers if configured to."""
        if not self.workers:
            logger.info("All workers have exited")
            return

        if not self.config.propagate_shutdown:
            logger.warning(f"Leaving {len(self.workers)} worker(s) running")
            return

        logger.info(f"Terminating {len(self.workers)} worker(s)...")
        for pid in list(self.workers):
            try:
                os.kill(pid, signal.SIGTERM)
            except ProcessLookupError:
                logger.debug(f"Worker {pid} already gone")

        for pid in list(self.workers):
            try:
                _, status = os.waitpid(pid, 0)
            except ChildProcessError:
                status = None
            self._forget(pid, status)

    def _forget(self, pid: int, status: int | None) -> None:
        if pid not in self.workers:
            logger.debug(f"Reaped unknown child {pid}")
            return

        self.workers.remove(pid)
        code = os.waitstatus_to_exitcode(status) if status is not None else None
        logger.warning(
            f"Worker {pid} exited (code {code}); {len(self.workers)} remaining"
        )
        pub.sendMessage(TOPIC_WORKER_EXITED, pid=pid, status=code)

    def _run_worker(self, index: int) -> None:
        """Body of a worker process. Never returns."""
        exit_code = 0
        try:
            for sig in (signal.SIGTERM, signal.SIGINT, signal.SIGCHLD):
                signal.signal(sig, signal.SIG_DFL)

            config = replace(self.config, reuse_port=True)
            server = GeminiServer(self.handler, config, self.transport)
            logger.info(f"Worker {index} (pid {os.getpid()}) started")
            server.serve_forever()
        except Exception as e:
            logger.exception(f"Worker {index} (pid {os.getpid()}) failed: {e}")
            exit_code = 1
        finally:
            for handler in logging.getLogger().handlers:
                handler.flush()
            os._exit(exit_code)

    def _setup_signals(self) -> None:
        def shutdown_handler(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, shutting down...")
            self.stop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            self._original_handlers[sig] = signal.signal(sig, shutdown_handler)

    def _restore_signals(self) -> None:
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()
