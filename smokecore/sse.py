import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterable

from smokecore.exceptions import StreamProtocolError

logger = logging.getLogger(__name__)

EVENT_PREFIX = 'event: '
DATA_PREFIX = 'data: '


@dataclass(frozen=True)
class SSEEvent:
    type: str
    payload: Any


class EventStreamDecoder:
    buffer: str
    pending_type: str | None

    def __init__(self):
        self.buffer = ''
        self.pending_type = None

    def _handle_line(self, line: str) -> SSEEvent | None:
        line = line.removesuffix('\r')
        if line.startswith(EVENT_PREFIX):
            self.pending_type = line[len(EVENT_PREFIX):].strip()
        elif line.startswith(DATA_PREFIX) and self.pending_type:
            raw = line[len(DATA_PREFIX):]
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError as e:
                raise StreamProtocolError(
                    f'invalid data for {self.pending_type} event: {e}'
                )
            event = SSEEvent(self.pending_type, payload)
            self.pending_type = None
            return event
        elif line == '':
            self.pending_type = None
        return None

    def feed(self, chunk: str) -> list[SSEEvent]:
        self.buffer += chunk
        *lines, self.buffer = self.buffer.split('\n')
        events = []
        for line in lines:
            if (event := self._handle_line(line)) is not None:
                events.append(event)
        return events

    def finish(self) -> list[SSEEvent]:
        tail, self.buffer = self.buffer, ''
        if not tail:
            return []
        event = self._handle_line(tail)
        return [event] if event is not None else []


async def read_complete(chunks: AsyncIterable[str], source: str = 'stream') -> Any:
    decoder = EventStreamDecoder()
    completed = None
    seen_complete = False

    def consume(events: list[SSEEvent]):
        nonlocal completed, seen_complete
        for event in events:
            if event.type == 'error':
                message = None
                if isinstance(event.payload, dict):
                    message = event.payload.get('error')
                raise StreamProtocolError(f'{source} stream error: {message or "unknown"}')
            if event.type == 'complete':
                completed = event.payload
                seen_complete = True
            else:
                logger.debug(f'{source} event {event.type}: {event.payload}')

    async for chunk in chunks:
        consume(decoder.feed(chunk))
    consume(decoder.finish())

    if not seen_complete:
        raise StreamProtocolError(f'{source} did not emit a complete event')
    return completed
