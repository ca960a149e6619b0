import asyncio
import codecs
import enum
import logging
import os
from asyncio import create_subprocess_exec
from enum import Enum
from pathlib import Path
from subprocess import DEVNULL, PIPE, STDOUT

import httpx

from smokecore.exceptions import HealthCheckTimeout

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 2.0


class SupervisorState(Enum):
    not_started = enum.auto()
    starting = enum.auto()
    healthy = enum.auto()
    timed_out = enum.auto()


class BackendSupervisor:
    client: httpx.AsyncClient
    command: list[str]
    cwd: Path
    port: int
    probe_interval: float
    max_attempts: int
    shutdown_timeout: float

    state: SupervisorState
    process: asyncio.subprocess.Process | None
    _log_chunks: list[str]
    _reader: asyncio.Task | None
    _is_shutdown: bool

    def __init__(
        self,
        client: httpx.AsyncClient,
        command: list[str],
        *,
        cwd: Path,
        port: int,
        probe_interval: float = 0.5,
        max_attempts: int = 60,
        shutdown_timeout: float = 1.5,
    ):
        if not command:
            raise ValueError('Backend command must not be empty')
        self.client = client
        self.command = command
        self.cwd = cwd
        self.port = port
        self.probe_interval = probe_interval
        self.max_attempts = max_attempts
        self.shutdown_timeout = shutdown_timeout

        self.state = SupervisorState.not_started
        self.process = None
        self._log_chunks = []
        self._reader = None
        self._is_shutdown = False

    @property
    def owned(self) -> bool:
        return self.process is not None

    @property
    def logs(self) -> str:
        return ''.join(self._log_chunks)

    async def is_healthy(self) -> bool:
        try:
            resp = await self.client.get('/health', timeout=PROBE_TIMEOUT)
        except httpx.HTTPError as e:
            logger.debug(f'Health probe failed: {e!r}')
            return False
        return resp.is_success

    async def _read_output(self, stream: asyncio.StreamReader):
        decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        while chunk := await stream.read(4096):
            self._log_chunks.append(decoder.decode(chunk))
        self._log_chunks.append(decoder.decode(b'', final=True))

    async def _spawn(self):
        logger.info(f'Starting backend: {self.command} (port {self.port})')
        self.process = await create_subprocess_exec(
            *self.command,
            cwd=self.cwd,
            stdin=DEVNULL,
            stdout=PIPE,
            stderr=STDOUT,
            env={**os.environ, 'PORT': str(self.port)},
        )
        self._reader = asyncio.create_task(self._read_output(self.process.stdout))

    async def ensure_healthy(self):
        if await self.is_healthy():
            logger.info(f'Backend already healthy on port {self.port}')
            self.state = SupervisorState.healthy
            return

        self.state = SupervisorState.starting
        await self._spawn()
        for attempt in range(1, self.max_attempts + 1):
            if await self.is_healthy():
                logger.info(f'Backend healthy after {attempt} probe(s)')
                self.state = SupervisorState.healthy
                return
            await asyncio.sleep(self.probe_interval)

        self.state = SupervisorState.timed_out
        raise HealthCheckTimeout(self.port)

    async def shutdown(self):
        if self.process is None or self._is_shutdown:
            return
        self._is_shutdown = True

        try:
            self.process.terminate()
        except ProcessLookupError:
            pass
        try:
            await asyncio.wait_for(self.process.wait(), self.shutdown_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f'Backend did not exit within {self.shutdown_timeout}s of SIGTERM'
            )
        else:
            logger.info(f'Backend exited with code {self.process.returncode}')

        if self._reader is not None:
            if self.process.returncode is None:
                self._reader.cancel()
            else:
                # a grandchild may still hold the pipe open
                try:
                    await asyncio.wait_for(self._reader, self.shutdown_timeout)
                except asyncio.TimeoutError:
                    pass
            await asyncio.gather(self._reader, return_exceptions=True)

    async def __aenter__(self) -> 'BackendSupervisor':
        await self.ensure_healthy()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
