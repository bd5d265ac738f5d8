"""Lifecycle of a single helper process."""

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path

from ..common.exceptions import SpawnError
from ..common.logging import get_logger
from ..common.utils import split_output_lines
from .models import ProcessRole

logger = get_logger(__name__)

READ_CHUNK_SIZE = 4096


class ManagedProcess:
    """A spawned kubectl/socat process plus its output reader.

    Owned exclusively by the ProcessSupervisor; identity is
    ``(connection_id, role)``.
    """

    def __init__(
        self,
        connection_id: str,
        role: ProcessRole,
        process: asyncio.subprocess.Process,
        script_path: Path | None = None,
    ):
        self.connection_id = connection_id
        self.role = role
        self.process = process
        self.script_path = script_path
        self.reader_task: asyncio.Task[None] | None = None

    @classmethod
    async def spawn(
        cls,
        connection_id: str,
        role: ProcessRole,
        argv: list[str],
        script_path: Path | None = None,
    ) -> "ManagedProcess":
        """Start ``argv`` with stdout and stderr merged into one pipe.

        Raises:
            SpawnError: If the OS refuses to create the process
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as e:
            logger.error(
                "Failed to spawn helper process",
                connection_id=connection_id,
                role=role.value,
                binary=argv[0],
                error=str(e),
            )
            raise SpawnError(f"Failed to start {argv[0]}: {e}") from e

        logger.info(
            "Helper process started",
            connection_id=connection_id,
            role=role.value,
            pid=process.pid,
        )
        return cls(connection_id, role, process, script_path)

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.is_running() else None

    def is_running(self) -> bool:
        """Check if the process has not exited yet."""
        return self.process.returncode is None

    async def read_lines(self) -> AsyncIterator[str]:
        """Yield non-empty output lines until EOF.

        Reads whatever is available in bounded chunks rather than waiting
        for the process to exit, so a chatty helper never fills its pipe.
        """
        stream = self.process.stdout
        if stream is None:
            return

        buffer = ""
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            buffer += chunk.decode("utf-8", errors="replace")
            lines, buffer = split_output_lines(buffer)
            for line in lines:
                yield line

        if buffer.strip():
            yield buffer.strip()

    async def stop(self, timeout: float = 5.0) -> bool:
        """Cancel the reader, terminate the process, and remove its script.

        Escalates to SIGKILL when the process ignores SIGTERM for ``timeout``
        seconds. Safe to call more than once.

        Returns:
            True if the process is known to have exited
        """
        if self.reader_task is not None and not self.reader_task.done():
            self.reader_task.cancel()
            await asyncio.wait([self.reader_task], timeout=1.0)

        exited = True
        if self.is_running():
            logger.debug(
                "Terminating helper process",
                connection_id=self.connection_id,
                role=self.role.value,
                pid=self.process.pid,
            )
            try:
                self.process.terminate()
                await asyncio.wait_for(self.process.wait(), timeout=timeout)
            except ProcessLookupError:
                pass
            except TimeoutError:
                logger.warning(
                    "Helper did not terminate gracefully, force killing",
                    connection_id=self.connection_id,
                    role=self.role.value,
                    pid=self.process.pid,
                )
                try:
                    self.process.kill()
                    await asyncio.wait_for(self.process.wait(), timeout=timeout)
                except ProcessLookupError:
                    pass
                except TimeoutError:
                    logger.error("Failed to kill helper process", pid=self.process.pid)
                    exited = False

        if self.script_path is not None:
            self.script_path.unlink(missing_ok=True)

        return exited
