"""Supervision of the child process backing each tunnel."""

import asyncio
from collections.abc import Callable

from notarybridge.shared.errors import ProcessFailure
from notarybridge.shared.logging import get_logger

logger = get_logger(__name__)

ExitCallback = Callable[["BridgeProcess", int | None], None]


class BridgeProcess:
    """
    A bridge child process with an exit observer.

    The observer fires exactly once when the process ends, whether it was
    stopped on purpose or died on its own; ``stopping`` tells the two apart.
    """

    def __init__(
        self,
        tunnel_id: str,
        argv: list[str],
        on_exit: ExitCallback | None = None,
        stop_timeout: float = 5.0,
    ) -> None:
        self.tunnel_id = tunnel_id
        self.argv = argv
        self.stopping = False
        self._on_exit = on_exit
        self._stop_timeout = stop_timeout
        self._process: asyncio.subprocess.Process | None = None
        self._watcher: asyncio.Task[None] | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def start(self) -> None:
        """Spawn the process and begin watching for its exit."""
        logger.info(f"Starting bridge {self.tunnel_id}: {' '.join(self.argv)}")
        try:
            self._process = await asyncio.create_subprocess_exec(*self.argv)
        except (OSError, ValueError) as exc:
            logger.error(f"Failed to start bridge for {self.tunnel_id}: {exc}")
            raise ProcessFailure(f"Failed to start tunnel: {exc}") from exc

        self._watcher = asyncio.create_task(self._watch(), name=f"bridge-watch-{self.tunnel_id}")

    async def _watch(self) -> None:
        process = self._process
        if process is None:
            return
        code = await process.wait()

        if self.stopping:
            logger.info(f"Bridge process stopped. PID: {process.pid}, Code: {code}")
        else:
            logger.warning(f"Bridge process exited. PID: {process.pid}, Code: {code}")

        if self._on_exit is not None:
            try:
                self._on_exit(self, code)
            except Exception:
                logger.exception(f"Exit observer failed for bridge {self.tunnel_id}")

    async def stop(self) -> None:
        """Terminate the process, escalating to kill after the stop timeout."""
        self.stopping = True
        process = self._process
        if process is None or process.returncode is not None:
            await self._join_watcher()
            return

        try:
            process.terminate()
        except ProcessLookupError:
            pass

        try:
            await asyncio.wait_for(process.wait(), timeout=self._stop_timeout)
        except TimeoutError:
            logger.warning(f"Bridge {self.tunnel_id} ignored SIGTERM, killing PID {process.pid}")
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()

        await self._join_watcher()

    async def _join_watcher(self) -> None:
        if self._watcher is not None and not self._watcher.done():
            await self._watcher
