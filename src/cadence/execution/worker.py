"""Worker invocation — runs the worker binary once as a local subprocess.

Architecture:

    .. code-block:: text

        WorkerInvocation.run(tick)
        ┌──────────────────────────────────────────────────────────────┐
        │                                                              │
        │  ScheduleConfig field        │ Subprocess equivalent         │
        │  ────────────────────────────┼───────────────────────────────│
        │  worker_path + worker_args   │ argv                          │
        │  worker_env                  │ os.environ overlay            │
        │  worker_cwd                  │ cwd                           │
        │  run_timeout_seconds         │ wait_for(process.wait())      │
        │  kill_grace_seconds          │ SIGTERM → SIGKILL window      │
        │  output_tail_bytes           │ RunRecord.stdout/stderr_tail  │
        │                                                              │
        └──────────────────────────────────────────────────────────────┘

        spawn ──► pump stdout/stderr ──► race(exit, timeout)
          │                                   │
          │ OSError                 exit 0 ──► SUCCESS
          ▼                         exit n ──► NON_ZERO_EXIT
        LAUNCH_FAILED               timeout ─► TERM ─(grace)─► KILL ─► TIMED_OUT

The child gets its own session so escalation signals reach the whole
process group, and stdin is closed. Every exit path reaps the child and
drains the pipe readers before the record is returned.

Example:
    >>> invocation = WorkerInvocation(load_config(worker_path="/bin/true"))
    >>> record = await invocation.run()
    >>> record.outcome
    <RunOutcome.SUCCESS: 'SUCCESS'>

Tags:
    cadence, execution, subprocess, timeout, worker
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import signal

from cadence.core.errors import WorkerLaunchError
from cadence.core.logging import LogContext, get_logger
from cadence.core.settings import ScheduleConfig
from cadence.execution.models import RunOutcome, RunRecord

logger = get_logger(__name__)

_READ_CHUNK = 4096
# Seconds to wait for the kernel to reap the child after SIGKILL.
_REAP_TIMEOUT = 1.0
# Seconds to wait for pipe EOF once the child has exited.
_DRAIN_TIMEOUT = 1.0


class OutputTail:
    """Bounded tail of one output stream; logs every complete line."""

    def __init__(self, stream: str, limit: int) -> None:
        self.stream = stream
        self.limit = limit
        self.total_bytes = 0
        self.truncated = False
        self._tail = bytearray()
        self._partial = b""

    def feed(self, chunk: bytes) -> None:
        self.total_bytes += len(chunk)
        self._tail += chunk
        overflow = len(self._tail) - self.limit
        if overflow > 0:
            del self._tail[:overflow]
            self.truncated = True

        lines = (self._partial + chunk).split(b"\n")
        self._partial = lines.pop()
        for line in lines:
            self._emit(line)
        # a stream with no newlines must not grow without bound
        if len(self._partial) > max(self.limit, _READ_CHUNK):
            self._emit(self._partial)
            self._partial = b""

    def flush(self) -> None:
        if self._partial:
            self._emit(self._partial)
            self._partial = b""

    def _emit(self, line: bytes) -> None:
        logger.info(
            "worker.output",
            stream=self.stream,
            line=line.decode(errors="replace").rstrip("\r"),
        )

    @property
    def text(self) -> str:
        return bytes(self._tail).decode(errors="replace")


async def _pump(reader: asyncio.StreamReader | None, sink: OutputTail) -> None:
    if reader is None:
        return
    while True:
        chunk = await reader.read(_READ_CHUNK)
        if not chunk:
            break
        sink.feed(chunk)
    sink.flush()


class WorkerInvocation:
    """Launches the configured worker and turns its exit into a RunRecord.

    One instance is owned by the scheduler loop and reused for every run;
    at most one child is tracked at a time.

    Args:
        config: Supervisor configuration (command, env, timeouts).
    """

    def __init__(self, config: ScheduleConfig) -> None:
        self._config = config
        self._process: asyncio.subprocess.Process | None = None
        self._record: RunRecord | None = None
        # set by terminate(); a child spawned afterwards is stopped at once
        self._shutdown_grace: float | None = None
        self._unreaped = False

    @property
    def current(self) -> RunRecord | None:
        """The in-flight record, if a child is running."""
        return self._record

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def unreaped(self) -> bool:
        """True if the last run left a child that survived SIGKILL."""
        return self._unreaped

    def prepare(self, tick: int = 0) -> RunRecord:
        """Create the record for the next run without launching it."""
        return RunRecord(tick=tick, command=self._config.command)

    async def run(self, tick: int = 0, record: RunRecord | None = None) -> RunRecord:
        """Run the worker once and return its terminal record.

        Never raises for worker failures: launch errors, non-zero exits and
        timeouts are all reported through ``RunRecord.outcome``.
        """
        record = record or self.prepare(tick)
        self._record = record
        self._unreaped = False
        try:
            async with LogContext(run_id=record.run_id, tick=tick):
                return await self._run(record)
        finally:
            self._process = None
            self._record = None

    async def terminate(self, grace_seconds: float) -> bool:
        """Stop the in-flight child for shutdown.

        Sends SIGTERM at once and SIGKILL after ``grace_seconds``. A run
        that is still launching is stopped as soon as its child exists, and
        no later run is allowed to keep its child.

        Returns:
            True if no child is left running, False if it could not be reaped.
        """
        self._shutdown_grace = grace_seconds
        if self._record is not None:
            self._record.interrupted_by_shutdown = True
        process = self._process
        if process is None or process.returncode is not None:
            return True
        logger.info("worker.terminating", pid=process.pid, grace_seconds=grace_seconds)
        return await self._escalate(process, grace_seconds)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run(self, record: RunRecord) -> RunRecord:
        config = self._config
        try:
            process = await self._spawn(record)
        except WorkerLaunchError as exc:
            logger.error(
                "worker.launch_failed",
                worker_path=exc.worker_path,
                error=str(exc.cause),
            )
            return record.finish(RunOutcome.LAUNCH_FAILED, error=str(exc))

        self._process = process
        record.pid = process.pid
        logger.info("worker.started", pid=process.pid, command=record.command)

        stdout = OutputTail("stdout", config.output_tail_bytes)
        stderr = OutputTail("stderr", config.output_tail_bytes)
        readers = [
            asyncio.create_task(_pump(process.stdout, stdout)),
            asyncio.create_task(_pump(process.stderr, stderr)),
        ]

        timed_out = False
        try:
            if self._shutdown_grace is not None:
                # shutdown arrived while the child was being spawned
                record.interrupted_by_shutdown = True
                logger.info("worker.terminating", pid=process.pid, grace_seconds=self._shutdown_grace)
                await self._escalate(process, self._shutdown_grace)
            else:
                try:
                    await asyncio.wait_for(process.wait(), timeout=config.run_timeout_seconds)
                except TimeoutError:
                    timed_out = True
                    logger.warning(
                        "worker.timeout",
                        pid=process.pid,
                        timeout_seconds=config.run_timeout_seconds,
                    )
                    await self._escalate(process, config.kill_grace_seconds)
        finally:
            if process.returncode is None:
                await self._escalate(process, config.kill_grace_seconds)
            await self._drain(process, readers)

        record.stdout_tail = stdout.text
        record.stderr_tail = stderr.text
        returncode = process.returncode

        if timed_out:
            return record.finish(
                RunOutcome.TIMED_OUT,
                exit_status=returncode,
                error=f"exceeded run timeout of {config.run_timeout_seconds}s",
            )
        if returncode == 0:
            return record.finish(RunOutcome.SUCCESS, exit_status=0)
        return record.finish(RunOutcome.NON_ZERO_EXIT, exit_status=returncode)

    async def _spawn(self, record: RunRecord) -> asyncio.subprocess.Process:
        env = dict(os.environ)
        env.update(self._config.worker_env)
        env["CADENCE_RUN_ID"] = record.run_id

        command = record.command
        try:
            return await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=self._config.worker_cwd,
                start_new_session=True,
            )
        except (OSError, ValueError) as exc:
            raise WorkerLaunchError(command[0], cause=exc) from exc

    async def _escalate(self, process: asyncio.subprocess.Process, grace_seconds: float) -> bool:
        """SIGTERM the process group, SIGKILL it after the grace window."""
        if process.returncode is None:
            _signal_group(process, signal.SIGTERM)
            try:
                await asyncio.wait_for(process.wait(), timeout=grace_seconds)
            except TimeoutError:
                logger.warning("worker.kill", pid=process.pid, grace_seconds=grace_seconds)
                _signal_group(process, signal.SIGKILL)
                try:
                    await asyncio.wait_for(process.wait(), timeout=_REAP_TIMEOUT)
                except TimeoutError:
                    logger.error("worker.unreaped", pid=process.pid)
                    self._unreaped = True
                    return False
        # descendants left in the group
        _signal_group(process, signal.SIGKILL)
        return True

    async def _drain(self, process: asyncio.subprocess.Process, readers: list[asyncio.Task]) -> None:
        _, pending = await asyncio.wait(readers, timeout=_DRAIN_TIMEOUT)
        if not pending:
            return
        # a descendant is still holding the pipes open
        logger.warning("worker.output_unclosed", pid=process.pid)
        _signal_group(process, signal.SIGKILL)
        _, pending = await asyncio.wait(pending, timeout=_DRAIN_TIMEOUT)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)


def _signal_group(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        pass
    except PermissionError:
        # group already gone and the id was reused; fall back to the child itself
        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.send_signal(sig)


__all__ = ["OutputTail", "WorkerInvocation"]
