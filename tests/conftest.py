"""Shared fixtures: configs pointing at temp dirs, ZIP builders, stream helpers."""
import base64
import struct
from pathlib import Path

import httpx
import pytest

from smokecore.config import Config, settings_values
from smokecore.mock_api import MockTemplateStore, create_mock_app

BASE_URL = 'http://backend.test/api'


def build_central_directory(names: list[str], declared: int | None = None) -> bytes:
    headers = []
    for name in names:
        file_name = name.encode('utf-8')
        header = struct.pack(
            '<IHHHHHHIIIHHHHHII',
            0x02014B50,  # central directory signature
            20,  # version made by
            20,  # version needed
            0x0800,  # UTF-8 flag
            0,  # compression method
            0,  # mod time
            0,  # mod date
            0,  # CRC-32
            0,  # compressed size
            0,  # uncompressed size
            len(file_name),
            0,  # extra length
            0,  # comment length
            0,  # disk number start
            0,  # internal attrs
            0,  # external attrs
            0,  # local header offset
        )
        headers.append(header + file_name)
    central_directory = b''.join(headers)
    count = len(names) if declared is None else declared
    eocd = struct.pack(
        '<IHHHHIIH', 0x06054B50, 0, 0, count, count, len(central_directory), 0, 0
    )
    return central_directory + eocd


def build_central_directory_base64(names: list[str]) -> str:
    return base64.b64encode(build_central_directory(names)).decode()


async def iter_chunks(*parts: str):
    for part in parts:
        yield part


@pytest.fixture
def make_config(tmp_path: Path):
    def factory(**overrides) -> Config:
        values = {
            'backend_port': 18081,
            'freecad_root': None,
            'mock': True,
            'sample_config': 'configs/examples/ks_flange.toml',
            'output': tmp_path / 'artifacts' / 'smoke.json',
            'backend_cwd': tmp_path,
            'probe_interval': 0.01,
            'max_attempts': 5,
            'shutdown_timeout': 1.5,
        }
        values.update(overrides)
        return Config(**settings_values(values))

    return factory


@pytest.fixture
def template_store() -> MockTemplateStore:
    return MockTemplateStore()


@pytest.fixture
def mock_transport(template_store: MockTemplateStore) -> httpx.ASGITransport:
    return httpx.ASGITransport(app=create_mock_app(template_store))
