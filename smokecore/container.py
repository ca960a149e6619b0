import base64
import binascii
import logging
import struct
from dataclasses import dataclass

from smokecore.const import (
    CENTRAL_HEADER_SIGNATURE,
    CENTRAL_HEADER_SIZE,
    DXF_SUFFIX,
    EOCD_SIGNATURE,
    EOCD_SIZE,
    MAX_COMMENT_LENGTH,
    UTF8_NAME_FLAG,
)

logger = logging.getLogger(__name__)

Buffer = bytes | bytearray | memoryview


@dataclass(frozen=True)
class ContainerReport:
    entries: list[str]
    has_dxf: bool
    used_fallback: bool
    size: int


def to_bytes(data: str | Buffer) -> bytes | bytearray | memoryview:
    if isinstance(data, str):
        try:
            return base64.b64decode(data)
        except (binascii.Error, ValueError):
            return b''
    return data


def find_end_of_central_directory(buffer: Buffer) -> int:
    view = memoryview(buffer)
    if len(view) < EOCD_SIZE:
        return -1
    lowest = max(0, len(view) - EOCD_SIZE - MAX_COMMENT_LENGTH)
    for offset in range(len(view) - EOCD_SIZE, lowest - 1, -1):
        if view[offset:offset + 4] == EOCD_SIGNATURE:
            return offset
    return -1


def _decode_name(raw: memoryview, flags: int) -> str:
    encoding = 'utf-8' if flags & UTF8_NAME_FLAG else 'cp437'
    return str(raw, encoding, errors='replace')


def list_zip_entries(data: str | Buffer) -> list[str]:
    view = memoryview(to_bytes(data))
    eocd = find_end_of_central_directory(view)
    if eocd < 0:
        return []

    total, cd_size, cd_offset = struct.unpack_from('<HII', view, eocd + 10)
    limit = len(view)
    if cd_size:
        limit = min(limit, cd_offset + cd_size)

    entries = []
    pos = cd_offset
    while len(entries) < total and pos + CENTRAL_HEADER_SIZE <= limit:
        (signature,) = struct.unpack_from('<I', view, pos)
        if signature != CENTRAL_HEADER_SIGNATURE:
            logger.debug(f'Unexpected central header signature at {pos}')
            break
        (flags,) = struct.unpack_from('<H', view, pos + 8)
        name_len, extra_len, comment_len = struct.unpack_from('<HHH', view, pos + 28)
        name_start = pos + CENTRAL_HEADER_SIZE
        name_end = name_start + name_len
        if name_end > limit:
            break
        entries.append(_decode_name(view[name_start:name_end], flags))
        pos = name_end + extra_len + comment_len
    return entries


def _raw_scan(buffer: Buffer) -> bool:
    return DXF_SUFFIX.encode('latin-1') in bytes(buffer)


def has_dxf_entry(data: str | Buffer) -> bool:
    buffer = to_bytes(data)
    entries = list_zip_entries(buffer)
    if entries:
        return any(name.endswith(DXF_SUFFIX) for name in entries)
    return _raw_scan(buffer)


def inspect_container(data: str | Buffer) -> ContainerReport:
    buffer = to_bytes(data)
    entries = list_zip_entries(buffer)
    if entries:
        return ContainerReport(
            entries=entries,
            has_dxf=any(name.endswith(DXF_SUFFIX) for name in entries),
            used_fallback=False,
            size=len(buffer),
        )
    has_dxf = _raw_scan(buffer)
    logger.warning(
        f'No ZIP central directory found in {len(buffer)} bytes, '
        f'raw scan for {DXF_SUFFIX}: {"found" if has_dxf else "not found"}'
    )
    return ContainerReport(
        entries=[], has_dxf=has_dxf, used_fallback=True, size=len(buffer)
    )
