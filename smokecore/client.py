import logging
from typing import Any

import httpx

from smokecore.exceptions import StageHTTPError
from smokecore.sse import read_complete

logger = logging.getLogger(__name__)


def response_json(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return {}


def error_message(resp: httpx.Response) -> str:
    data = response_json(resp)
    if isinstance(data, dict) and data.get('error'):
        return str(data['error'])
    return f'HTTP {resp.status_code}'


class BackendClient:
    http: httpx.AsyncClient

    def __init__(self, http: httpx.AsyncClient):
        self.http = http

    async def send(
        self, stage: str, path: str, *, method: str = 'GET', body: dict | None = None
    ) -> httpx.Response:
        logger.debug(f'{method} {path}')
        try:
            return await self.http.request(method, path, json=body)
        except httpx.HTTPError as e:
            raise StageHTTPError(stage, f'{path} failed: {e!r}')

    async def request(
        self, stage: str, path: str, *, method: str = 'GET', body: dict | None = None
    ) -> Any:
        resp = await self.send(stage, path, method=method, body=body)
        if resp.is_error:
            raise StageHTTPError(stage, f'{path} failed: {error_message(resp)}')
        return response_json(resp)

    async def health(self) -> dict:
        data = await self.request('health', '/health')
        return data if isinstance(data, dict) else {}

    async def analyze(self, stage: str, body: dict) -> Any:
        path = '/analyze'
        try:
            async with self.http.stream('POST', path, json=body) as resp:
                if resp.is_error:
                    await resp.aread()
                    raise StageHTTPError(stage, f'{path} failed: {error_message(resp)}')
                return await read_complete(resp.aiter_text(), source=path)
        except httpx.HTTPError as e:
            raise StageHTTPError(stage, f'{path} failed: {e!r}')

    async def aclose(self):
        await self.http.aclose()
