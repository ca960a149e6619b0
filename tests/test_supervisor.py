"""Tests for smokecore/supervisor.py: health probing, spawning, bounded waits, shutdown."""
import sys
import time

import httpx
import pytest

from smokecore.exceptions import HealthCheckTimeout
from smokecore.supervisor import BackendSupervisor, SupervisorState
from tests.conftest import BASE_URL

SLEEPER = [sys.executable, '-c', 'import time; time.sleep(30)']
BOOTING = [
    sys.executable,
    '-u',
    '-c',
    'import os, time\n'
    'print("listening on " + os.environ["PORT"])\n'
    'time.sleep(30)',
]


def make_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))


class TestIsHealthy:
    @pytest.mark.asyncio
    async def test_success_status(self, tmp_path):
        async with make_client(lambda request: httpx.Response(200, json={})) as client:
            supervisor = BackendSupervisor(client, SLEEPER, cwd=tmp_path, port=1)
            assert await supervisor.is_healthy() is True

    @pytest.mark.asyncio
    async def test_error_status(self, tmp_path):
        async with make_client(lambda request: httpx.Response(503)) as client:
            supervisor = BackendSupervisor(client, SLEEPER, cwd=tmp_path, port=1)
            assert await supervisor.is_healthy() is False

    @pytest.mark.asyncio
    async def test_transport_error(self, tmp_path):
        def handler(request):
            raise httpx.ConnectError('connection refused', request=request)

        async with make_client(handler) as client:
            supervisor = BackendSupervisor(client, SLEEPER, cwd=tmp_path, port=1)
            assert await supervisor.is_healthy() is False


class TestEnsureHealthy:
    @pytest.mark.asyncio
    async def test_existing_backend_is_not_spawned(self, tmp_path):
        probes = []

        def handler(request):
            probes.append(request.url.path)
            return httpx.Response(200, json={'status': 'ok'})

        async with make_client(handler) as client:
            supervisor = BackendSupervisor(
                client,
                ['definitely-not-a-real-binary'],
                cwd=tmp_path,
                port=1,
                probe_interval=5.0,
            )
            started = time.monotonic()
            await supervisor.ensure_healthy()
            assert time.monotonic() - started < 5.0
            assert supervisor.state == SupervisorState.healthy
            assert supervisor.owned is False
            assert supervisor.process is None
            assert probes == ['/api/health']
            await supervisor.shutdown()
            assert supervisor.logs == ''

    @pytest.mark.asyncio
    async def test_times_out_after_full_budget(self, tmp_path):
        async with make_client(lambda request: httpx.Response(503)) as client:
            supervisor = BackendSupervisor(
                client,
                SLEEPER,
                cwd=tmp_path,
                port=18099,
                probe_interval=0.02,
                max_attempts=5,
            )
            started = time.monotonic()
            try:
                with pytest.raises(HealthCheckTimeout) as exc_info:
                    await supervisor.ensure_healthy()
                assert time.monotonic() - started >= 5 * 0.02
                assert exc_info.value.port == 18099
                assert '18099' in str(exc_info.value)
                assert supervisor.state == SupervisorState.timed_out
                assert supervisor.owned is True
            finally:
                await supervisor.shutdown()
            assert supervisor.process.returncode is not None

    @pytest.mark.asyncio
    async def test_spawns_and_stops_polling_on_first_success(self, tmp_path):
        probes = []

        def handler(request):
            probes.append(request.url.path)
            ready = 'listening' in supervisor.logs
            return httpx.Response(200 if ready else 503)

        async with make_client(handler) as client:
            supervisor = BackendSupervisor(
                client,
                BOOTING,
                cwd=tmp_path,
                port=18123,
                probe_interval=0.01,
                max_attempts=1000,
            )
            try:
                await supervisor.ensure_healthy()
                assert supervisor.state == SupervisorState.healthy
                assert supervisor.owned is True
                probes_at_ready = len(probes)
            finally:
                await supervisor.shutdown()
            assert len(probes) == probes_at_ready
            assert 'listening on 18123' in supervisor.logs


class TestShutdown:
    @pytest.mark.asyncio
    async def test_runs_once(self, tmp_path):
        async with make_client(lambda request: httpx.Response(503)) as client:
            supervisor = BackendSupervisor(
                client, SLEEPER, cwd=tmp_path, port=1, probe_interval=0.01, max_attempts=2
            )
            with pytest.raises(HealthCheckTimeout):
                await supervisor.ensure_healthy()
            await supervisor.shutdown()
            returncode = supervisor.process.returncode
            await supervisor.shutdown()
            assert supervisor.process.returncode == returncode

    @pytest.mark.asyncio
    async def test_context_manager(self, tmp_path):
        async with make_client(lambda request: httpx.Response(200)) as client:
            async with BackendSupervisor(
                client, SLEEPER, cwd=tmp_path, port=1
            ) as supervisor:
                assert supervisor.state == SupervisorState.healthy
            assert supervisor.owned is False

    def test_empty_command_is_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            BackendSupervisor(httpx.AsyncClient(), [], cwd=tmp_path, port=1)
