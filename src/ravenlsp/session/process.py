"""Remote endpoint spawn and teardown."""

from __future__ import annotations

import asyncio
import logging
import os
import platform
import signal
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from ravenlsp.config import ServerConfig, ShutdownConfig
from ravenlsp.transport.loopback import create_pipe
from ravenlsp.transport.stdio import StdioTransport

_log = logging.getLogger("ravenlsp.process")

# Windows-specific subprocess creation flags
_WINDOWS = platform.system() == "Windows"
_CREATE_NEW_PROCESS_GROUP = 0x00000200 if _WINDOWS else 0


@dataclass
class Endpoint:
    """The remote side of a session: its channel plus what runs it."""

    transport: StdioTransport
    process: asyncio.subprocess.Process | None = None
    task: asyncio.Task[int] | None = None

    async def release(self, shutdown: ShutdownConfig | None = None) -> None:
        """Close the channel and stop the process or task. Safe to call twice."""
        shutdown = shutdown or ShutdownConfig()
        try:
            await self.transport.close()
        finally:
            if self.process is not None:
                await graceful_shutdown(
                    self.process,
                    interrupt_timeout=shutdown.interrupt_timeout,
                    terminate_timeout=shutdown.terminate_timeout,
                )
            if self.task is not None and not self.task.done():
                # The server sees EOF once the channel closes; give it a chance to finish
                done, _ = await asyncio.wait({self.task}, timeout=shutdown.interrupt_timeout)
                if not done:
                    self.task.cancel()
                    await asyncio.wait({self.task})


Connector = Callable[[], Awaitable[Endpoint]]


async def spawn_endpoint(config: ServerConfig) -> Endpoint:
    """Spawn the configured server command with stdio pipes.

    Raises:
        ValueError: If the command is empty.
        OSError: If the process cannot be started.
    """
    if not config.command:
        raise ValueError("Server command is empty")

    env = dict(os.environ)
    env.update(config.env)

    _log.info("Spawning language server: %s", " ".join(config.command))
    # On Windows, create in new process group to enable Ctrl+Break signaling
    process = await asyncio.create_subprocess_exec(
        config.command[0],
        *config.command[1:],
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=sys.stderr,
        cwd=config.cwd,
        env=env,
        creationflags=_CREATE_NEW_PROCESS_GROUP,  # type: ignore[arg-type]
    )
    return Endpoint(transport=StdioTransport.from_process(process), process=process)


async def connect_in_process() -> Endpoint:
    """Run the reference server in this event loop over a loopback pipe."""
    from ravenlsp.server import serve

    client_side, server_side = create_pipe()
    task = asyncio.get_running_loop().create_task(serve(server_side), name="ravenlsp-in-process-server")
    return Endpoint(transport=client_side, task=task)


def _send_interrupt(process: asyncio.subprocess.Process) -> None:
    """Send interrupt signal to process (Ctrl-C on Windows, SIGINT on Unix)."""
    if _WINDOWS:
        # CTRL_C_EVENT doesn't work reliably for subprocesses
        try:
            os.kill(process.pid, signal.CTRL_BREAK_EVENT)  # type: ignore[attr-defined]
        except OSError:
            process.terminate()
    else:
        try:
            os.kill(process.pid, signal.SIGINT)
        except OSError:
            process.terminate()


async def graceful_shutdown(
    process: asyncio.subprocess.Process,
    interrupt_timeout: float = 2.0,
    terminate_timeout: float = 3.0,
) -> None:
    """Stop a process: wait for exit, then interrupt, terminate, kill.

    A server that received ``exit`` normally ends by itself, so the first
    step only waits.
    """
    if process.returncode is not None:
        return

    try:
        await asyncio.wait_for(process.wait(), timeout=interrupt_timeout)
        return
    except asyncio.TimeoutError:
        pass

    _log.warning("Language server (pid %s) did not exit, interrupting", process.pid)
    _send_interrupt(process)
    try:
        await asyncio.wait_for(process.wait(), timeout=interrupt_timeout)
        return
    except asyncio.TimeoutError:
        pass

    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=terminate_timeout)
        return
    except asyncio.TimeoutError:
        pass

    _log.error("Language server (pid %s) ignored SIGTERM, killing", process.pid)
    try:
        process.kill()
    except ProcessLookupError:
        return
    await process.wait()
